"""Task operations behind the chat commands: create, edit, annotate, list."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from dateutil.relativedelta import relativedelta

from .history import Buckets, bucket_and_sort
from .keys import KeyAllocationError, allocate_key, day_bounds
from .merge import merge_edit
from .store import DuplicateKeyError, TaskStore
from .tasks import (
    FINISHED_STATUSES,
    PartialTaskFields,
    TaskFilters,
    TaskImage,
    TaskNote,
    TaskStatus,
    TaskVersion,
)

logger = logging.getLogger(__name__)


class TaskNotFoundError(Exception):
    """Raised when a key has no versions in the chat."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Task with key {key} not found in this chat")
        self.key = key


class EmptyTaskError(ValueError):
    """Raised when a new task has no text."""


class EditConflictError(Exception):
    """Raised when concurrent edits keep taking the next revision of a key."""


class TaskService:
    def __init__(self, store: TaskStore, max_attempts: int = 5) -> None:
        self.store = store
        self.max_attempts = max_attempts

    def create_task(self, chat_id: str, fields: PartialTaskFields, now: datetime) -> TaskVersion:
        """Store the first version of a new task under a freshly allocated key.

        The count read and the insert are not atomic; a concurrent insert
        of the same key fails the unique constraint and the count is read
        again, up to ``max_attempts`` times.
        """
        if not fields.content:
            raise EmptyTaskError("Task text cannot be empty")
        start, end = day_bounds(now)
        for attempt in range(1, self.max_attempts + 1):
            count = self.store.count_created_within(chat_id, start, end)
            key = allocate_key(now, count)
            version = merge_edit(None, fields, now, key=key, chat_id=chat_id)
            try:
                self.store.create_version(version)
            except DuplicateKeyError:
                logger.warning(f"Key {key} already taken in chat {chat_id} (attempt {attempt})")
                continue
            logger.info(f"Created task {key} in chat {chat_id}")
            return version
        raise KeyAllocationError(
            f"Could not allocate a task key for chat {chat_id} after {self.max_attempts} attempts"
        )

    def edit_task(self, chat_id: str, key: str, fields: PartialTaskFields, now: datetime) -> TaskVersion:
        """Append the next version of ``key``; retried if another edit lands first."""
        for attempt in range(1, self.max_attempts + 1):
            latest = self.store.find_latest(chat_id, key)
            if latest is None:
                raise TaskNotFoundError(key)
            version = merge_edit(latest, fields, now)
            try:
                self.store.create_version(version)
            except DuplicateKeyError:
                logger.warning(f"Concurrent edit of {key} in chat {chat_id} (attempt {attempt})")
                continue
            logger.info(f"Updated task {key} to revision {version.revision}")
            return version
        raise EditConflictError(f"Could not store an edit of {key} after {self.max_attempts} attempts")

    def set_status(self, chat_id: str, key: str, status: TaskStatus, now: datetime) -> TaskVersion:
        return self.edit_task(chat_id, key, PartialTaskFields(status=status), now)

    def snooze(self, chat_id: str, key: str, days: int, now: datetime) -> TaskVersion:
        fields = PartialTaskFields(
            status=TaskStatus.SNOOZED,
            snoozed_until=now + relativedelta(days=+days),
        )
        return self.edit_task(chat_id, key, fields, now)

    def get_latest(self, chat_id: str, key: str) -> TaskVersion:
        latest = self.store.find_latest(chat_id, key)
        if latest is None:
            raise TaskNotFoundError(key)
        return latest

    def add_note(self, chat_id: str, key: str, content: str, now: datetime) -> TaskNote:
        self.get_latest(chat_id, key)
        note = TaskNote(key=key, chat_id=chat_id, content=content, created_at=now)
        self.store.add_note(note)
        return note

    def attach_image(
        self, chat_id: str, key: str, url: str, now: datetime, description: Optional[str] = None
    ) -> TaskImage:
        self.get_latest(chat_id, key)
        image = TaskImage(key=key, chat_id=chat_id, url=url, description=description, created_at=now)
        self.store.add_image(image)
        return image

    def list_open_tasks(self, chat_id: str, filters: TaskFilters, now: datetime) -> List[TaskVersion]:
        """Latest versions that still need attention, matching ``filters``.

        Finished tasks and tasks snoozed into the future are left out.
        Order: due date (undated last), newest first, then key.
        """
        result = []
        for versions in self.store.list_all_histories(chat_id).values():
            latest = versions[-1]
            if latest.status in FINISHED_STATUSES:
                continue
            if (
                latest.status is TaskStatus.SNOOZED
                and latest.snoozed_until is not None
                and latest.snoozed_until > now
            ):
                continue
            if filters.matches(latest):
                result.append(latest)
        result.sort(key=lambda v: v.key)
        result.sort(key=lambda v: v.created_at, reverse=True)
        result.sort(key=lambda v: (v.due_date is None, v.due_date if v.due_date is not None else 0))
        return result

    def history(self, chat_id: str) -> Buckets:
        return bucket_and_sort(self.store.list_all_histories(chat_id))
