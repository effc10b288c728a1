from setuptools import setup, find_packages

setup(
    name="tunesync_backend",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "sqlalchemy[asyncio]>=2.0",
        "asyncpg",
        "alembic",
        "pydantic>=2.0",
        "pydantic-settings",
        "python-dotenv",
        "aiohttp<3.14",
        "numpy",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "aioresponses",
            "aiosqlite",
        ],
    },
    python_requires=">=3.9",
)
