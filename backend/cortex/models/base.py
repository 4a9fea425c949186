"""
Common model mixins and helpers.
"""

import uuid

from sqlalchemy import Column, DateTime, func


def generate_uuid() -> str:
    """Primary key default for string UUID columns."""
    return str(uuid.uuid4())


class TimestampMixin:
    """Adds created_at / updated_at columns maintained by the database."""

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="Row creation time"
    )

    updated_at = Column(
        DateTime(timezone=True),
        nullable=True,
        onupdate=func.now(),
        comment="Last update time"
    )
