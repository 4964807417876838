"""APScheduler setup for daily summaries."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from zoneinfo import ZoneInfo

from .config import DAILY_SUMMARY_HOUR, TIMEZONE
from .keys import day_bounds
from .service import TaskService
from .tasks import TaskFilters, TaskVersion

logger = logging.getLogger(__name__)

TIMEZONE_OBJ = ZoneInfo(TIMEZONE)


def format_task_lines(tasks: List[TaskVersion]) -> str:
    if not tasks:
        return "None"
    lines = []
    for task in tasks:
        due = (
            task.due_date.astimezone(TIMEZONE_OBJ).strftime("%Y-%m-%d %H:%M")
            if task.due_date
            else "No due date"
        )
        priority = f"({task.priority}) " if task.priority else ""
        lines.append(f"{task.key} {priority}{task.content} - {due}")
    return "\n".join(lines)


def build_summary(now: datetime, chat_id: str, service: TaskService) -> str:
    """Overdue, due-today and undated open tasks of one chat."""
    _, today_end = day_bounds(now)
    tasks = service.list_open_tasks(chat_id, TaskFilters(), now)

    overdue = [t for t in tasks if t.due_date is not None and t.due_date < now]
    today = [t for t in tasks if t.due_date is not None and now <= t.due_date < today_end]
    no_date = [t for t in tasks if t.due_date is None]

    summary = [
        "Daily Summary",
        "Today's Tasks:",
        format_task_lines(today),
        "\nOverdue Tasks:",
        format_task_lines(overdue),
        "\nNo Due Date:",
        format_task_lines(no_date),
    ]
    return "\n".join(summary)


async def send_daily_summary(application, service: TaskService) -> None:
    now = datetime.now(TIMEZONE_OBJ)
    for chat_id in service.store.list_chat_ids():
        summary = build_summary(now, chat_id, service)
        await application.bot.send_message(chat_id=chat_id, text=summary)
    logger.info("Daily summaries sent")


def start_scheduler(application, service: TaskService) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone=TIMEZONE_OBJ)
    scheduler.add_job(
        send_daily_summary,
        CronTrigger(hour=DAILY_SUMMARY_HOUR, minute=0, timezone=TIMEZONE_OBJ),
        args=[application, service],
        id="daily-summary",
        replace_existing=True,
    )
    scheduler.start()
    return scheduler
