from sqlalchemy import Column, String, DateTime, ForeignKey, Enum as SQLEnum, Text, Boolean, Integer, Uuid, Index, UniqueConstraint
from sqlalchemy.orm import declarative_base
from datetime import datetime, timedelta, timezone
from typing import Optional
import uuid
import enum

Base = declarative_base()


class DeploymentStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    DeploymentStatus.SUCCEEDED,
    DeploymentStatus.FAILED,
    DeploymentStatus.CANCELLED,
})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_timestamp(previous: Optional[datetime] = None) -> datetime:
    """Current UTC time, bumped past `previous` so updated_at strictly increases."""
    now = utcnow()
    if previous is None:
        return now
    if previous.tzinfo is None:
        # sqlite drops the offset; stored values are always UTC
        previous = previous.replace(tzinfo=timezone.utc)
    else:
        previous = previous.astimezone(timezone.utc)
    if now <= previous:
        now = previous + timedelta(microseconds=1)
    return now


class Deployment(Base):
    __tablename__ = "deployments"
    __table_args__ = (
        Index("ix_deployments_user_created", "user_id", "created_at"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Integer, nullable=False, index=True)
    # Weak reference: servers live in the provider account, not in this database
    server_id = Column(Integer, nullable=True, index=True)
    repository = Column(String(255), nullable=False)
    branch = Column(String(255), nullable=False)
    status = Column(SQLEnum(DeploymentStatus), nullable=False, default=DeploymentStatus.PENDING, index=True)
    commit_hash = Column(String(40), nullable=True)
    auto_deploy = Column(Boolean, nullable=False, default=False)
    webhook_id = Column(String(255), nullable=True, unique=True)
    retry_of_id = Column(Uuid, ForeignKey("deployments.id", ondelete="SET NULL"), nullable=True)
    log = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Deployment {self.id} {self.repository}@{self.branch} status={self.status.value}>"


class AutoDeployRule(Base):
    """A repository/branch pair opted into push-triggered deployments."""
    __tablename__ = "auto_deploy_rules"
    __table_args__ = (
        UniqueConstraint("repository", "branch", name="uq_auto_deploy_rules_repository_branch"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Integer, nullable=False, index=True)
    server_id = Column(Integer, nullable=True)
    repository = Column(String(255), nullable=False)
    branch = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
