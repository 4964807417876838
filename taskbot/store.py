"""SQLAlchemy-backed, append-only storage for task versions, notes and images."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from .database import session_scope
from .history import group_versions
from .models import TaskImageRecord, TaskNoteRecord, TaskVersionRecord, to_utc
from .tasks import TaskImage, TaskNote, TaskVersion

logger = logging.getLogger(__name__)


class DuplicateKeyError(Exception):
    """Raised when a version with the same (chat, key, revision) already exists."""

    def __init__(self, key: str, revision: int) -> None:
        super().__init__(f"Task {key} revision {revision} already exists")
        self.key = key
        self.revision = revision


class TaskStore:
    """Versions are only ever inserted, never updated or deleted."""

    def __init__(self, session_factory: Optional[sessionmaker] = None) -> None:
        self._factory = session_factory

    def count_created_within(self, chat_id: str, start: datetime, end: datetime) -> int:
        """Count tasks whose first version falls in ``[start, end)``."""
        with session_scope(self._factory) as session:
            return (
                session.query(func.count(TaskVersionRecord.id))
                .filter(
                    TaskVersionRecord.chat_id == chat_id,
                    TaskVersionRecord.revision == 1,
                    TaskVersionRecord.created_at >= to_utc(start),
                    TaskVersionRecord.created_at < to_utc(end),
                )
                .scalar()
            )

    def create_version(self, version: TaskVersion) -> None:
        try:
            with session_scope(self._factory) as session:
                session.add(TaskVersionRecord.from_version(version))
                session.flush()
        except IntegrityError as exc:
            raise DuplicateKeyError(version.key, version.revision) from exc
        logger.info(f"Stored {version.key} revision {version.revision} for chat {version.chat_id}")

    def find_latest(self, chat_id: str, key: str) -> Optional[TaskVersion]:
        with session_scope(self._factory) as session:
            record = (
                session.query(TaskVersionRecord)
                .filter(TaskVersionRecord.chat_id == chat_id, TaskVersionRecord.key == key)
                .order_by(TaskVersionRecord.created_at.desc(), TaskVersionRecord.id.desc())
                .first()
            )
            return record.to_version() if record else None

    def list_history(self, chat_id: str, key: str) -> List[TaskVersion]:
        with session_scope(self._factory) as session:
            records = (
                session.query(TaskVersionRecord)
                .filter(TaskVersionRecord.chat_id == chat_id, TaskVersionRecord.key == key)
                .order_by(TaskVersionRecord.created_at.asc(), TaskVersionRecord.id.asc())
                .all()
            )
            return [record.to_version() for record in records]

    def list_history_for_keys(self, chat_id: str, keys: Iterable[str]) -> Dict[str, List[TaskVersion]]:
        keys = list(keys)
        if not keys:
            return {}
        with session_scope(self._factory) as session:
            records = (
                session.query(TaskVersionRecord)
                .filter(TaskVersionRecord.chat_id == chat_id, TaskVersionRecord.key.in_(keys))
                .order_by(TaskVersionRecord.created_at.asc(), TaskVersionRecord.id.asc())
                .all()
            )
            return group_versions(record.to_version() for record in records)

    def list_all_histories(self, chat_id: str) -> Dict[str, List[TaskVersion]]:
        with session_scope(self._factory) as session:
            records = (
                session.query(TaskVersionRecord)
                .filter(TaskVersionRecord.chat_id == chat_id)
                .order_by(TaskVersionRecord.created_at.asc(), TaskVersionRecord.id.asc())
                .all()
            )
            return group_versions(record.to_version() for record in records)

    def list_chat_ids(self) -> List[str]:
        with session_scope(self._factory) as session:
            return [row[0] for row in session.query(TaskVersionRecord.chat_id).distinct().all()]

    def add_note(self, note: TaskNote) -> None:
        with session_scope(self._factory) as session:
            session.add(
                TaskNoteRecord(
                    chat_id=note.chat_id,
                    key=note.key,
                    content=note.content,
                    created_at=to_utc(note.created_at),
                )
            )

    def list_notes(self, chat_id: str, key: str) -> List[TaskNote]:
        with session_scope(self._factory) as session:
            records = (
                session.query(TaskNoteRecord)
                .filter(TaskNoteRecord.chat_id == chat_id, TaskNoteRecord.key == key)
                .order_by(TaskNoteRecord.created_at.asc(), TaskNoteRecord.id.asc())
                .all()
            )
            return [record.to_note() for record in records]

    def add_image(self, image: TaskImage) -> None:
        with session_scope(self._factory) as session:
            session.add(
                TaskImageRecord(
                    chat_id=image.chat_id,
                    key=image.key,
                    url=image.url,
                    description=image.description,
                    created_at=to_utc(image.created_at),
                )
            )

    def list_images(self, chat_id: str, key: str) -> List[TaskImage]:
        with session_scope(self._factory) as session:
            records = (
                session.query(TaskImageRecord)
                .filter(TaskImageRecord.chat_id == chat_id, TaskImageRecord.key == key)
                .order_by(TaskImageRecord.created_at.asc(), TaskImageRecord.id.asc())
                .all()
            )
            return [record.to_image() for record in records]
