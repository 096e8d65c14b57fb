"""
Plugin job record model.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from plugin_jobs.infra.database import Base


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)


def utcnow() -> datetime:
    return datetime.now(UTC)


class PluginJob(Base):
    """
    Durable background job owned by a plugin.

    Worker coordination happens entirely through conditional updates on
    ``status`` and ``locked_by``; a non-null ``locked_by`` means the row is
    leased and ``running``.
    """

    __tablename__ = "plugin_jobs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    plugin_id: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Owning plugin"
    )
    type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Handler key within the plugin"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, comment="Handler input"
    )

    # Job state
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.PENDING.value,
        server_default=JobStatus.PENDING.value,
        comment="Job status: pending|running|completed|failed",
    )
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSON(none_as_null=True), nullable=True, comment="Last outcome payload"
    )
    priority: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=100,
        server_default="100",
        comment="Lower value is serviced first",
    )
    run_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        comment="Earliest time the job may be acquired",
    )
    attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=3, server_default="3"
    )

    # Lease
    lock_timeout: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=300,
        server_default="300",
        comment="Lease duration in seconds",
    )
    locked_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Worker id holding the lease"
    )
    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, comment="Lease start"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed')",
            name="plugin_jobs_status_check",
        ),
        CheckConstraint("attempts <= max_attempts", name="plugin_jobs_attempts_check"),
        Index("ix_plugin_jobs_status_run_at_locked_at", "status", "run_at", "locked_at"),
        Index("ix_plugin_jobs_plugin_id", "plugin_id"),
        Index("ix_plugin_jobs_priority_created_at", "priority", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<PluginJob id={self.id} plugin={self.plugin_id} type={self.type} "
            f"status={self.status} attempts={self.attempts}/{self.max_attempts}>"
        )
