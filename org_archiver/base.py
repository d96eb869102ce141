"""SQLAlchemy declarative base for archive metadata and live record tables."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base for all archiver models."""

    pass
