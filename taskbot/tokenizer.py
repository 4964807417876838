"""Split todo-syntax text into typed tokens.

Markers recognised::

    (A)            priority
    @tag           tag
    .context       context
    !Project name  project, absorbs following words until the next marker
    :date [HH:MM]  due date, absorbs a following time token
    -done          status (-done, -canceled, -new, -snoozed[N], -snoozed N)

Anything else is plain text. Nothing here raises on malformed input.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

PRIORITY_RE = re.compile(r"^\(([a-zA-Z])\)$")
TIME_RE = re.compile(r"^\d{1,2}:\d{2}$")
STATUS_RE = re.compile(r"^-(done|canceled|new)$")
SNOOZE_RE = re.compile(r"^-snoozed(\d*)$")
DIGITS_RE = re.compile(r"^\d+$")

TAG_MARKER = "@"
CONTEXT_MARKER = "."
PROJECT_MARKER = "!"
DUE_DATE_MARKER = ":"


class TokenKind(str, Enum):
    PRIORITY = "priority"
    TAG = "tag"
    CONTEXT = "context"
    PROJECT = "project"
    DUE_DATE = "due_date"
    STATUS = "status"
    TEXT = "text"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: str
    days: Optional[int] = None


def is_marker(word: str) -> bool:
    """Return True if ``word`` starts a priority, tag, context, project or due date."""
    return bool(
        PRIORITY_RE.match(word)
        or word.startswith((TAG_MARKER, CONTEXT_MARKER, PROJECT_MARKER, DUE_DATE_MARKER))
    )


def _project_span(words: Sequence[str], index: int) -> Tuple[str, int]:
    parts = [words[index][1:]]
    index += 1
    while index < len(words) and not is_marker(words[index]):
        parts.append(words[index])
        index += 1
    return " ".join(parts).strip(), index


def tokenize(text: str, filters_only: bool = False) -> List[Token]:
    """Tokenize ``text`` left to right.

    With ``filters_only`` set, priority, due date and status markers are
    returned as plain text; only tags, contexts and projects are typed.
    Project spans stop at the same markers in both modes.
    """
    words = text.split()
    tokens: List[Token] = []
    i = 0
    while i < len(words):
        word = words[i]

        if word.startswith(TAG_MARKER):
            tokens.append(Token(TokenKind.TAG, word[1:]))
            i += 1
            continue
        if word.startswith(CONTEXT_MARKER):
            tokens.append(Token(TokenKind.CONTEXT, word[1:]))
            i += 1
            continue
        if word.startswith(PROJECT_MARKER):
            project, i = _project_span(words, i)
            tokens.append(Token(TokenKind.PROJECT, project))
            continue

        if filters_only:
            tokens.append(Token(TokenKind.TEXT, word))
            i += 1
            continue

        priority = PRIORITY_RE.match(word)
        if priority:
            tokens.append(Token(TokenKind.PRIORITY, priority.group(1).upper()))
            i += 1
            continue
        if word.startswith(DUE_DATE_MARKER):
            value = word[1:]
            if i + 1 < len(words) and TIME_RE.match(words[i + 1]):
                value = f"{value} {words[i + 1]}"
                i += 1
            tokens.append(Token(TokenKind.DUE_DATE, value))
            i += 1
            continue
        status = STATUS_RE.match(word)
        if status:
            tokens.append(Token(TokenKind.STATUS, status.group(1)))
            i += 1
            continue
        snooze = SNOOZE_RE.match(word)
        if snooze:
            days = int(snooze.group(1)) if snooze.group(1) else None
            if days is None and i + 1 < len(words) and DIGITS_RE.match(words[i + 1]):
                days = int(words[i + 1])
                i += 1
            tokens.append(Token(TokenKind.STATUS, "snoozed", days=days))
            i += 1
            continue

        tokens.append(Token(TokenKind.TEXT, word))
        i += 1
    return tokens
