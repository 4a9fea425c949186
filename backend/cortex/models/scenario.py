"""
Scenario model - a saved calculator configuration.

Quota-governed: free tier owners may keep at most one scenario per tool.
Scenarios can be shared publicly through an unguessable share token.
"""

import secrets

from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, Index, JSON, func

from cortex.db_base import Base
from cortex.models.base import generate_uuid


def generate_share_token() -> str:
    return secrets.token_urlsafe(16)


class Scenario(Base):
    """
    Saved inputs for one calculator tool.

    Attributes:
        id: Unique identifier (UUID)
        user_id: Owning profile id (from the verified token)
        tool_id: Calculator tool slug, e.g. "debt-paydown"
        tool_name: Human readable tool name
        inputs: Calculator inputs (JSON)
        key_result: Headline result shown in lists
        is_public: Whether the share token resolves for anonymous readers
        share_token: Token used in public share URLs
        created_at: Creation time
    """
    __tablename__ = "scenarios"

    id = Column(String(255), primary_key=True, default=generate_uuid)

    user_id = Column(
        String(255),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        comment="Owning profile id"
    )

    tool_id = Column(String(100), nullable=False, comment="Calculator tool slug")
    tool_name = Column(String(255), nullable=False)
    inputs = Column(JSON, nullable=False)
    key_result = Column(Text, nullable=False, default="")

    is_public = Column(Boolean, nullable=False, default=False)
    share_token = Column(String(64), nullable=False, unique=True, default=generate_share_token)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        # Count query for the free-tier quota is scoped to (owner, tool)
        Index("ix_scenarios_user_tool", "user_id", "tool_id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "tool_id": self.tool_id,
            "tool_name": self.tool_name,
            "inputs": self.inputs,
            "key_result": self.key_result,
            "is_public": self.is_public,
            "share_token": self.share_token,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<Scenario(id={self.id}, tool_id={self.tool_id})>"
