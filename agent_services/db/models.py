"""
Database models for the instance orchestrator.

Two tables form the database of record:
- instance_infra: one row per compute-backed agent instance
- instance_services: per-tool provisioned resources and the env var each one
  injects into its instance (at most one row per instance/tool pair)
"""

from datetime import datetime
from typing import Optional, List
from enum import Enum

from sqlalchemy import (
    String, Text, DateTime, Integer, ForeignKey, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship, Mapped, mapped_column

Base = declarative_base()


class ToolId(str, Enum):
    """Externally provisioned tools that can be attached to an instance"""
    OPENROUTER = "openrouter"   # Key issuance: per-instance LLM API key
    AGENTMAIL = "agentmail"     # Mailbox: per-instance email inbox
    TELNYX = "telnyx"           # Telephony: per-instance SMS phone number


class ResourceStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class InstanceInfra(Base):
    """A compute service backing one agent instance."""
    __tablename__ = "instance_infra"

    instance_id: Mapped[str] = mapped_column(String(64), primary_key=True)  # Caller-assigned
    provider: Mapped[str] = mapped_column(String(20), nullable=False, default="railway")
    provider_service_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    provider_env_id: Mapped[str] = mapped_column(String(64), nullable=False)
    provider_project_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    url: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)  # Null until a domain is attached
    deploy_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # Last raw status seen
    runtime_image: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    volume_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    # Secrets generated at creation, opaque to the orchestrator
    gateway_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    setup_password: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    wallet_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    services: Mapped[List["InstanceService"]] = relationship(
        "InstanceService",
        back_populates="instance",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class InstanceService(Base):
    """A tool resource provisioned for an instance."""
    __tablename__ = "instance_services"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    instance_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("instance_infra.instance_id", ondelete="CASCADE"), nullable=False
    )
    tool_id: Mapped[str] = mapped_column(String(20), nullable=False)  # openrouter | agentmail | telnyx
    resource_id: Mapped[str] = mapped_column(String(255), nullable=False)  # Key hash, inbox id, phone number
    resource_meta: Mapped[dict] = mapped_column(JSON, default=dict)
    env_key: Mapped[str] = mapped_column(String(100), nullable=False)
    env_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ResourceStatus.ACTIVE.value)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    instance: Mapped["InstanceInfra"] = relationship("InstanceInfra", back_populates="services")

    __table_args__ = (
        UniqueConstraint("instance_id", "tool_id", name="uq_instance_services_instance_tool"),
        Index("ix_instance_services_tool_status", "tool_id", "status"),
    )
