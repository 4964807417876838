"""Task value types shared by the parser, merge and history code."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


class TaskStatus(str, Enum):
    NEW = "new"
    DONE = "done"
    CANCELED = "canceled"
    SNOOZED = "snoozed"


FINISHED_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.CANCELED})


@dataclass(frozen=True)
class TaskVersion:
    """One immutable row in a task's version chain."""

    key: str
    chat_id: str
    content: str
    created_at: datetime
    status: TaskStatus = TaskStatus.NEW
    priority: Optional[str] = None
    tags: Tuple[str, ...] = ()
    contexts: Tuple[str, ...] = ()
    projects: Tuple[str, ...] = ()
    due_date: Optional[datetime] = None
    snoozed_until: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    revision: int = 1

    @property
    def is_finished(self) -> bool:
        return self.status in FINISHED_STATUSES


@dataclass(frozen=True)
class PartialTaskFields:
    """Fields parsed from one command.

    ``None`` (or an empty tuple for list fields) means "not specified",
    so the previous version's value is carried forward on merge.
    """

    content: str = ""
    priority: Optional[str] = None
    tags: Tuple[str, ...] = ()
    contexts: Tuple[str, ...] = ()
    projects: Tuple[str, ...] = ()
    status: Optional[TaskStatus] = None
    due_date: Optional[datetime] = None
    snoozed_until: Optional[datetime] = None


@dataclass(frozen=True)
class TaskFilters:
    tags: Tuple[str, ...] = ()
    contexts: Tuple[str, ...] = ()
    projects: Tuple[str, ...] = ()
    remaining: Tuple[str, ...] = ()

    def matches(self, version: TaskVersion) -> bool:
        """Return True when every requested tag, context and project is present."""
        return (
            all(tag in version.tags for tag in self.tags)
            and all(context in version.contexts for context in self.contexts)
            and all(project in version.projects for project in self.projects)
        )


@dataclass(frozen=True)
class TaskNote:
    key: str
    chat_id: str
    content: str
    created_at: datetime


@dataclass(frozen=True)
class TaskImage:
    key: str
    chat_id: str
    url: str
    created_at: datetime
    description: Optional[str] = None
