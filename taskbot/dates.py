"""Resolve due-date text to an absolute datetime."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Sequence

from dateutil.relativedelta import FR, MO, SA, SU, TH, TU, WE, relativedelta

logger = logging.getLogger(__name__)

TIME_SUFFIX_RE = re.compile(r"(\d{1,2}):(\d{2})$")

# Tried against the whole string before the rule table.
EXACT_FORMATS = ("%Y.%m.%d %H:%M", "%Y.%m.%d")


@dataclass(frozen=True)
class DateFormatRule:
    """A strptime pattern plus the locale its month names are written in."""

    format: str
    locale: str = "en"

    @property
    def has_year(self) -> bool:
        return "%Y" in self.format


DATE_PARSER_RULES: Sequence[DateFormatRule] = (
    DateFormatRule("%Y.%m.%d", "en"),
    DateFormatRule("%d %B", "ru"),
    DateFormatRule("%d %b %Y", "en"),
    DateFormatRule("%Y-%m-%d", "en"),
    DateFormatRule("%d.%m", "en"),
    DateFormatRule("%m/%d", "en"),
)

_RU_MONTH_NAMES = (
    ("января", "январь", "янв"),
    ("февраля", "февраль", "фев"),
    ("марта", "март", "мар"),
    ("апреля", "апрель", "апр"),
    ("мая", "май"),
    ("июня", "июнь", "июн"),
    ("июля", "июль", "июл"),
    ("августа", "август", "авг"),
    ("сентября", "сентябрь", "сен"),
    ("октября", "октябрь", "окт"),
    ("ноября", "ноябрь", "ноя"),
    ("декабря", "декабрь", "дек"),
)
_EN_MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

# Locale month name -> English month name understood by strptime.
MONTH_TRANSLATIONS: Dict[str, Dict[str, str]] = {
    "ru": {
        name: _EN_MONTHS[index]
        for index, names in enumerate(_RU_MONTH_NAMES)
        for name in names
    },
}

WEEKDAYS = {
    "monday": MO, "mon": MO, "понедельник": MO, "пн": MO,
    "tuesday": TU, "tue": TU, "вторник": TU, "вт": TU,
    "wednesday": WE, "wed": WE, "среда": WE, "ср": WE,
    "thursday": TH, "thu": TH, "четверг": TH, "чт": TH,
    "friday": FR, "fri": FR, "пятница": FR, "пт": FR,
    "saturday": SA, "sat": SA, "суббота": SA, "сб": SA,
    "sunday": SU, "sun": SU, "воскресенье": SU, "вс": SU,
}
TODAY_WORDS = {"today", "сегодня"}
TOMORROW_WORDS = {"tomorrow", "завтра"}


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _translate_months(text: str, locale: str) -> str:
    table = MONTH_TRANSLATIONS.get(locale)
    if not table:
        return text
    return " ".join(table.get(word.lower(), word) for word in text.split())


def _apply_rule(text: str, rule: DateFormatRule, now: datetime) -> Optional[datetime]:
    candidate = _translate_months(text, rule.locale)
    pattern = rule.format
    if not rule.has_year:
        # parse with the current year so 29.02 is valid in leap years
        candidate = f"{candidate} {now.year}"
        pattern = f"{pattern} %Y"
    try:
        return datetime.strptime(candidate, pattern)
    except ValueError:
        return None


def parse_date(text: str, now: datetime) -> Optional[datetime]:
    """Parse ``text`` with the first matching rule, at local midnight.

    Formats without a year get ``now.year``. The result carries
    ``now.tzinfo``.
    """
    text = text.strip()
    if not text:
        return None
    for rule in DATE_PARSER_RULES:
        parsed = _apply_rule(text, rule, now)
        if parsed is not None:
            return start_of_day(parsed).replace(tzinfo=now.tzinfo)
    return None


def parse_relative_date(text: str, now: datetime) -> Optional[datetime]:
    """Resolve today/tomorrow and weekday names relative to ``now``.

    A weekday always means the next one strictly after today.
    """
    word = text.strip().lower()
    today = start_of_day(now)
    if word in TODAY_WORDS:
        return today
    if word in TOMORROW_WORDS:
        return today + relativedelta(days=+1)
    weekday = WEEKDAYS.get(word)
    if weekday is not None:
        return today + relativedelta(days=+1, weekday=weekday(+1))
    return None


def _parse_exact(text: str, now: datetime) -> Optional[datetime]:
    for pattern in EXACT_FORMATS:
        try:
            return datetime.strptime(text, pattern).replace(tzinfo=now.tzinfo)
        except ValueError:
            continue
    return None


def resolve_due_date(text: str, now: datetime) -> Optional[datetime]:
    """Resolve a due-date span such as ``2025.07.31 09:30`` or ``пт 18:00``.

    A trailing ``H:MM``/``HH:MM`` sets the time of day, otherwise the
    result is at midnight. Returns ``None`` when nothing matches or the
    time is out of range.
    """
    text = text.strip()
    if not text:
        return None

    exact = _parse_exact(text, now)
    if exact is not None:
        return exact

    time_match = TIME_SUFFIX_RE.search(text)
    date_part = text[: time_match.start()].strip() if time_match else text

    resolved = parse_date(date_part, now) or parse_relative_date(date_part, now)
    if resolved is None:
        logger.debug(f"Could not resolve due date from {text!r}")
        return None

    if time_match:
        hour, minute = int(time_match.group(1)), int(time_match.group(2))
        if hour > 23 or minute > 59:
            logger.debug(f"Time of day out of range in {text!r}")
            return None
        resolved = resolved.replace(hour=hour, minute=minute)
    return resolved
