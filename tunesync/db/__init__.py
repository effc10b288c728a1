"""Database package initialization."""

from .base import Base
from .async_session import get_async_engine, get_session_factory
from .repository import ListeningRepository

__all__ = [
    'Base',
    'get_async_engine',
    'get_session_factory',
    'ListeningRepository'
]
