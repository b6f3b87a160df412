"""SQLAlchemy declarative base. Models: unit, alert, unit_history."""
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for the fleet store tables."""
    pass
