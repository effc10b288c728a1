"""Declarative base for ORM models."""
from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

# Configure naming convention for constraints
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}

metadata = MetaData(naming_convention=convention)

class Base(DeclarativeBase):
    """Base class for all database models."""
    metadata = metadata
    __abstract__ = True

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.id}>"
