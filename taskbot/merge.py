"""Fold a parsed edit into the next version of a task."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from .tasks import FINISHED_STATUSES, PartialTaskFields, TaskStatus, TaskVersion

_TICK = timedelta(microseconds=1)


def _next_created_at(latest: TaskVersion, now: datetime) -> datetime:
    # created_at orders the chain, it must strictly increase
    if now <= latest.created_at:
        return latest.created_at + _TICK
    return now


def _completed_at(
    latest: Optional[TaskVersion], status: TaskStatus, now: datetime
) -> Optional[datetime]:
    if status not in FINISHED_STATUSES:
        return None
    if latest is not None and latest.is_finished:
        return latest.completed_at
    return now


def merge_edit(
    latest: Optional[TaskVersion],
    edit: PartialTaskFields,
    now: datetime,
    key: Optional[str] = None,
    chat_id: Optional[str] = None,
) -> TaskVersion:
    """Return the version that follows ``latest`` after applying ``edit``.

    With no ``latest`` this builds the first version and ``key`` and
    ``chat_id`` are required. Tags and contexts are appended to the
    previous lists (duplicates kept); projects are replaced whenever the
    edit names any. ``latest`` itself is never modified.
    """
    if latest is None:
        if not key or not chat_id:
            raise ValueError("key and chat_id are required to create a task")
        status = edit.status or TaskStatus.NEW
        return TaskVersion(
            key=key,
            chat_id=chat_id,
            content=edit.content,
            created_at=now,
            status=status,
            priority=edit.priority,
            tags=tuple(edit.tags),
            contexts=tuple(edit.contexts),
            projects=tuple(edit.projects),
            due_date=edit.due_date,
            snoozed_until=edit.snoozed_until,
            completed_at=_completed_at(None, status, now),
            revision=1,
        )

    status = edit.status or latest.status
    if edit.snoozed_until is not None:
        snoozed_until = edit.snoozed_until
    elif edit.status is not None and edit.status is not TaskStatus.SNOOZED:
        snoozed_until = None
    else:
        snoozed_until = latest.snoozed_until

    created_at = _next_created_at(latest, now)
    return TaskVersion(
        key=latest.key,
        chat_id=latest.chat_id,
        content=edit.content or latest.content,
        created_at=created_at,
        status=status,
        priority=edit.priority if edit.priority is not None else latest.priority,
        tags=latest.tags + tuple(edit.tags),
        contexts=latest.contexts + tuple(edit.contexts),
        projects=tuple(edit.projects) if edit.projects else latest.projects,
        due_date=edit.due_date if edit.due_date is not None else latest.due_date,
        snoozed_until=snoozed_until,
        completed_at=_completed_at(latest, status, created_at),
        revision=latest.revision + 1,
    )
