"""
coursegrade/orm/base.py
Declarative base and shared column helpers for the course tree tables
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Column, Integer, DateTime, Numeric
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Percentage points with up to 9 fractional digits (rounding precision <= 9)
WEIGHT_PRECISION = 12
WEIGHT_SCALE = 9


def weight_column(comment: str, default: str = "0") -> Column:
    """Derived weight column. Written only by the weight engine."""
    return Column(
        Numeric(WEIGHT_PRECISION, WEIGHT_SCALE, asdecimal=True),
        nullable=False,
        default=Decimal(default),
        comment=comment
    )


class BaseModel(Base):
    """
    Abstract base model: integer id plus created/updated timestamps.
    All course tree models inherit from this.
    """
    __abstract__ = True

    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        index=True
    )

    created_at = Column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
        comment="Timestamp when record was created"
    )

    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
        comment="Timestamp when record was last updated"
    )

    def __repr__(self):
        return f"<{self.__class__.__name__}(id={self.id})>"
