"""Turn todo-syntax command text into task fields and list filters."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from .dates import resolve_due_date
from .keys import is_task_key
from .tasks import PartialTaskFields, TaskFilters, TaskStatus
from .tokenizer import TokenKind, tokenize

logger = logging.getLogger(__name__)


def split_task_key(text: str) -> Tuple[Optional[str], str]:
    """Split a leading task key off ``text``.

    ``"T-20250715-01 -done"`` -> ``("T-20250715-01", "-done")``
    """
    parts = text.split(maxsplit=1)
    if parts and is_task_key(parts[0]):
        return parts[0], parts[1] if len(parts) > 1 else ""
    return None, text


def parse_task(text: str, now: datetime) -> PartialTaskFields:
    """Parse the full task grammar used for both creating and editing."""
    tags: List[str] = []
    contexts: List[str] = []
    projects: List[str] = []
    words: List[str] = []
    priority = None
    status = None
    due_date = None
    snoozed_until = None

    for token in tokenize(text):
        if token.kind is TokenKind.TAG:
            tags.append(token.value)
        elif token.kind is TokenKind.CONTEXT:
            contexts.append(token.value)
        elif token.kind is TokenKind.PROJECT:
            projects.append(token.value)
        elif token.kind is TokenKind.PRIORITY:
            priority = token.value
        elif token.kind is TokenKind.DUE_DATE:
            resolved = resolve_due_date(token.value, now)
            if resolved is None:
                logger.debug(f"Dropping unresolved due date {token.value!r}")
            else:
                due_date = resolved
        elif token.kind is TokenKind.STATUS:
            status = TaskStatus(token.value)
            if status is TaskStatus.SNOOZED and token.days is not None:
                try:
                    snoozed_until = now + relativedelta(days=+token.days)
                except OverflowError:
                    logger.debug(f"Snooze of {token.days} days is out of range, ignoring")
        else:
            words.append(token.value)

    return PartialTaskFields(
        content=" ".join(words).strip(),
        priority=priority,
        tags=tuple(tags),
        contexts=tuple(contexts),
        projects=tuple(projects),
        status=status,
        due_date=due_date,
        snoozed_until=snoozed_until,
    )


def parse_filters(text: str) -> TaskFilters:
    """Pick tags, contexts and projects out of ``text``; everything else is ``remaining``."""
    tags: List[str] = []
    contexts: List[str] = []
    projects: List[str] = []
    remaining: List[str] = []
    for token in tokenize(text, filters_only=True):
        if token.kind is TokenKind.TAG:
            tags.append(token.value)
        elif token.kind is TokenKind.CONTEXT:
            contexts.append(token.value)
        elif token.kind is TokenKind.PROJECT:
            projects.append(token.value)
        else:
            remaining.append(token.value)
    return TaskFilters(
        tags=tuple(tags),
        contexts=tuple(contexts),
        projects=tuple(projects),
        remaining=tuple(remaining),
    )
