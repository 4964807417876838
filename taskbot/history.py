"""Change narratives and bucketed views over task version chains."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .tasks import FINISHED_STATUSES, TaskStatus, TaskVersion

TRACKED_FIELDS = (
    "content",
    "priority",
    "status",
    "due_date",
    "snoozed_until",
    "tags",
    "contexts",
    "projects",
)

FIELD_LABELS = {
    "content": "content",
    "priority": "priority",
    "status": "status",
    "due_date": "due",
    "snoozed_until": "snoozed until",
    "tags": "tags",
    "contexts": "contexts",
    "projects": "projects",
}

DATETIME_FORMAT = "%Y-%m-%d %H:%M"


def format_datetime(value: Optional[datetime], tz: Optional[tzinfo] = None) -> str:
    if value is None:
        return "none"
    if tz is not None and value.tzinfo is not None:
        value = value.astimezone(tz)
    return value.strftime(DATETIME_FORMAT)


@dataclass(frozen=True)
class ChangeDescriptor:
    """A field that changed, with the value it changed to."""

    field: str
    value: Any

    def render(self, tz: Optional[tzinfo] = None) -> str:
        label = FIELD_LABELS[self.field]
        value = self.value
        if isinstance(value, tuple):
            text = ", ".join(value)
        elif self.field in ("due_date", "snoozed_until"):
            text = format_datetime(value, tz)
        elif isinstance(value, TaskStatus):
            text = value.value
        elif value is None:
            text = "none"
        else:
            text = str(value)
        return f"{label}: {text}"


def diff_version(prev: TaskVersion, curr: TaskVersion) -> List[ChangeDescriptor]:
    """List the tracked fields whose value differs between two versions.

    List fields compare element by element, so a reorder counts as a change.
    """
    changes = []
    for name in TRACKED_FIELDS:
        new_value = getattr(curr, name)
        if getattr(prev, name) != new_value:
            changes.append(ChangeDescriptor(name, new_value))
    return changes


def describe_changes(prev: TaskVersion, curr: TaskVersion, tz: Optional[tzinfo] = None) -> str:
    changes = diff_version(prev, curr)
    if not changes:
        return "no changes"
    return "; ".join(change.render(tz) for change in changes)


def narrate(history: Sequence[TaskVersion], tz: Optional[tzinfo] = None) -> List[str]:
    """One line per version: when it was made and what it changed."""
    lines = []
    for index, version in enumerate(history):
        if index == 0:
            summary = f"created: {version.content}"
        else:
            summary = describe_changes(history[index - 1], version, tz)
        lines.append(f"{format_datetime(version.created_at, tz)} - {summary}")
    return lines


@dataclass
class TaskHistory:
    key: str
    versions: List[TaskVersion]

    @property
    def latest(self) -> TaskVersion:
        return self.versions[-1]


@dataclass
class Buckets:
    unfinished: List[TaskHistory] = field(default_factory=list)
    snoozed: List[TaskHistory] = field(default_factory=list)
    finished: List[TaskHistory] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.unfinished) + len(self.snoozed) + len(self.finished)


def group_versions(versions: Iterable[TaskVersion]) -> Dict[str, List[TaskVersion]]:
    """Group versions by key, each chain ascending by ``created_at``."""
    grouped: Dict[str, List[TaskVersion]] = {}
    for version in versions:
        grouped.setdefault(version.key, []).append(version)
    for chain in grouped.values():
        chain.sort(key=lambda v: v.created_at)
    return grouped


def _nulls_last(value: Optional[datetime]):
    return (value is None, value if value is not None else 0)


def bucket_and_sort(histories: Mapping[str, Sequence[TaskVersion]]) -> Buckets:
    """Split histories into unfinished, snoozed and finished groups.

    Unfinished sort by due date, snoozed by wake-up time (both missing
    last, then by key); finished by their latest change, newest first.
    """
    buckets = Buckets()
    for key, versions in histories.items():
        if not versions:
            continue
        chain = sorted(versions, key=lambda v: v.created_at)
        entry = TaskHistory(key=key, versions=chain)
        status = entry.latest.status
        if status in FINISHED_STATUSES:
            buckets.finished.append(entry)
        elif status is TaskStatus.SNOOZED:
            buckets.snoozed.append(entry)
        else:
            buckets.unfinished.append(entry)

    buckets.unfinished.sort(key=lambda h: (_nulls_last(h.latest.due_date), h.key))
    buckets.snoozed.sort(key=lambda h: (_nulls_last(h.latest.snoozed_until), h.key))
    buckets.finished.sort(key=lambda h: h.latest.created_at, reverse=True)
    return buckets
