from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, JSON, ForeignKey, Float, Index, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from relay_worker.infrastructure.db import Base
from relay_worker.utils import utcnow


class Project(Base):
    __tablename__ = "projects"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(128), default=None)
    # aiEnabled flag, retention overrides, ...
    settings: Mapped[dict | None] = mapped_column(JSON, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)


class Interaction(Base):
    """A user report (bug, feedback, chat turn).

    The ai_* columns are owned by the classification stages; everything else is written by the API.
    """
    __tablename__ = "interactions"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    project_id: Mapped[str] = mapped_column(String(64), ForeignKey("projects.id"), index=True)
    session_id: Mapped[str | None] = mapped_column(String(64), index=True, default=None)
    type: Mapped[str] = mapped_column(String(32), index=True)
    status: Mapped[str] = mapped_column(String(32), default="new", index=True)
    severity: Mapped[str | None] = mapped_column(String(16), default=None)
    content_text: Mapped[str | None] = mapped_column(Text, default=None)
    content_json: Mapped[dict | None] = mapped_column(JSON, default=None)
    technical_context: Mapped[dict | None] = mapped_column(JSON, default=None)
    linked_issue_id: Mapped[str | None] = mapped_column(String(128), index=True, default=None)
    ai_labels: Mapped[list | None] = mapped_column(JSON, default=None)
    ai_label_confidence: Mapped[float | None] = mapped_column(Float, default=None)
    ai_duplicate_group_id: Mapped[str | None] = mapped_column(String(64), index=True, default=None)
    ai_confidence: Mapped[float | None] = mapped_column(Float, default=None)
    ai_group_primary: Mapped[int] = mapped_column(Integer, default=0)
    ai_summary: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)

    logs: Mapped[list["InteractionLog"]] = relationship(
        back_populates="interaction", order_by=lambda: InteractionLog.created_at.desc()
    )

    __table_args__ = (
        Index("ix_interaction_project_type_created", "project_id", "type", "created_at"),
    )


class InteractionLog(Base):
    __tablename__ = "interaction_logs"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    interaction_id: Mapped[str] = mapped_column(String(64), ForeignKey("interactions.id"), index=True)
    console: Mapped[list | None] = mapped_column(JSON, default=None)
    network: Mapped[list | None] = mapped_column(JSON, default=None)
    errors: Mapped[list | None] = mapped_column(JSON, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    interaction: Mapped[Interaction] = relationship(back_populates="logs")


class Media(Base):
    __tablename__ = "media"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    interaction_id: Mapped[str] = mapped_column(String(64), ForeignKey("interactions.id"), index=True)
    kind: Mapped[str] = mapped_column(String(32), default="screenshot")
    storage_key: Mapped[str] = mapped_column(String(512))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class FeedbackLink(Base):
    __tablename__ = "feedback_links"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    interaction_id: Mapped[str] = mapped_column(String(64), ForeignKey("interactions.id"), index=True)
    feedback_item_id: Mapped[str] = mapped_column(String(64), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class UserSession(Base):
    __tablename__ = "sessions"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    project_id: Mapped[str] = mapped_column(String(64), ForeignKey("projects.id"), index=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)


class Replay(Base):
    """Recorded session; chunks is a list of {index, storageKey, eventCount, startTime, endTime}.

    After sanitization chunks point at the sanitized keys and raw_chunks keeps the original list.
    """
    __tablename__ = "replays"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    project_id: Mapped[str] = mapped_column(String(64), ForeignKey("projects.id"), index=True)
    session_id: Mapped[str | None] = mapped_column(String(64), index=True, default=None)
    status: Mapped[str] = mapped_column(String(16), default="pending", index=True)
    chunks: Mapped[list | None] = mapped_column(JSON, default=None)
    raw_chunks: Mapped[list | None] = mapped_column(JSON, default=None)
    event_count: Mapped[int] = mapped_column(Integer, default=0)
    duration: Mapped[int] = mapped_column(Integer, default=0)  # milliseconds
    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    processing_started_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String(64), index=True)
    action: Mapped[str] = mapped_column(String(64))
    details: Mapped[dict | None] = mapped_column(JSON, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)


class JobDeadLetter(Base):
    """Jobs that exhausted their retries (or failed permanently), kept for manual inspection."""
    __tablename__ = "job_dead_letters"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[str] = mapped_column(String(64), index=True)
    task_name: Mapped[str] = mapped_column(String(128), index=True)
    queue_name: Mapped[str | None] = mapped_column(String(64), index=True, default=None)
    payload: Mapped[dict | None] = mapped_column(JSON, default=None)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    error_type: Mapped[str] = mapped_column(String(128))
    error_message: Mapped[str | None] = mapped_column(Text, default=None)
    failed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
