"""Database models."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import declarative_base

from .tasks import TaskImage, TaskNote, TaskStatus, TaskVersion

Base = declarative_base()


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskVersionRecord(Base):
    __tablename__ = "task_versions"
    __table_args__ = (
        # revision 1 collides when two creators allocate the same key
        UniqueConstraint("chat_id", "key", "revision", name="uq_task_versions_chat_key_revision"),
        Index("ix_task_versions_chat_key", "chat_id", "key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(String, nullable=False, index=True)
    key = Column(String, nullable=False)
    revision = Column(Integer, nullable=False, default=1)
    content = Column(Text, nullable=False, default="")
    priority = Column(String(1), nullable=True)
    status = Column(String, nullable=False, default=TaskStatus.NEW.value)
    tags = Column(JSON, nullable=False, default=list)
    contexts = Column(JSON, nullable=False, default=list)
    projects = Column(JSON, nullable=False, default=list)
    due_date = Column(DateTime(timezone=True), nullable=True)
    snoozed_until = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)

    @classmethod
    def from_version(cls, version: TaskVersion) -> "TaskVersionRecord":
        return cls(
            chat_id=version.chat_id,
            key=version.key,
            revision=version.revision,
            content=version.content,
            priority=version.priority,
            status=version.status.value,
            tags=list(version.tags),
            contexts=list(version.contexts),
            projects=list(version.projects),
            due_date=to_utc(version.due_date),
            snoozed_until=to_utc(version.snoozed_until),
            completed_at=to_utc(version.completed_at),
            created_at=to_utc(version.created_at),
        )

    def to_version(self) -> TaskVersion:
        return TaskVersion(
            key=self.key,
            chat_id=self.chat_id,
            content=self.content or "",
            created_at=to_utc(self.created_at),
            status=TaskStatus(self.status),
            priority=self.priority,
            tags=tuple(self.tags or ()),
            contexts=tuple(self.contexts or ()),
            projects=tuple(self.projects or ()),
            due_date=to_utc(self.due_date),
            snoozed_until=to_utc(self.snoozed_until),
            completed_at=to_utc(self.completed_at),
            revision=self.revision,
        )


class TaskNoteRecord(Base):
    __tablename__ = "task_notes"

    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(String, nullable=False, index=True)
    key = Column(String, nullable=False, index=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def to_note(self) -> TaskNote:
        return TaskNote(
            key=self.key,
            chat_id=self.chat_id,
            content=self.content,
            created_at=to_utc(self.created_at),
        )


class TaskImageRecord(Base):
    __tablename__ = "task_images"

    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(String, nullable=False, index=True)
    key = Column(String, nullable=False, index=True)
    url = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def to_image(self) -> TaskImage:
        return TaskImage(
            key=self.key,
            chat_id=self.chat_id,
            url=self.url,
            description=self.description,
            created_at=to_utc(self.created_at),
        )
