"""Telegram bot handlers."""
from __future__ import annotations

import html
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.constants import MessageLimit, ParseMode
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)
from zoneinfo import ZoneInfo

from .config import KEY_ALLOCATION_RETRIES, TIMEZONE
from .history import Buckets, TaskHistory, format_datetime, narrate
from .keys import KeyAllocationError
from .parser import parse_filters, parse_task, split_task_key
from .service import EditConflictError, EmptyTaskError, TaskNotFoundError, TaskService
from .store import TaskStore
from .tasks import TaskStatus, TaskVersion

logger = logging.getLogger(__name__)

LOCAL_TZ = ZoneInfo(TIMEZONE)

task_service = TaskService(TaskStore(), max_attempts=KEY_ALLOCATION_RETRIES)

# Open edit conversations: {chat_id: {"key": ..., "step": ...}}
edit_sessions: Dict[str, Dict[str, str]] = {}

STEP_AWAIT_ACTION = "await_action"
STEP_AWAIT_SNOOZE_DAYS = "await_snooze_days"
STEP_AWAIT_NOTE = "await_note"

TASK_FORMAT_MESSAGE = "\n".join(
    [
        "Format:",
        "/t [T-YYYYMMDD-NN] (-status) @tag .context !project (A) :<date> text",
        "Status options: -done, -canceled, -new, -snoozed[days] or -snoozed [days]",
        "Example: /task (B) @work .office !Big Project :2025.07.31 09:00 Prepare report",
        "Snooze examples: /task T-20250715-01 -snoozed4 or /task T-20250715-01 -snoozed 4",
        "Dates: 2025.07.31, 2025-07-31, 31.07, 07/31, 2 jan 2026, 2 января, tomorrow, пятница",
        "",
        "/tl [@tag .context !project] - open tasks",
        "/th - task history",
    ]
)


def _now() -> datetime:
    return datetime.now(LOCAL_TZ)


def _get_chat_id(update: Update) -> str:
    return str(update.effective_chat.id)


def _command_text(context: ContextTypes.DEFAULT_TYPE) -> str:
    return " ".join(context.args or []).strip()


def split_message(text: str, limit: int = MessageLimit.MAX_TEXT_LENGTH) -> List[str]:
    """Split ``text`` on line boundaries into chunks Telegram accepts."""
    chunks: List[str] = []
    current = ""
    for line in text.split("\n"):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            chunks.append(current)
            current = line
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


def format_task_line(task: TaskVersion, now: datetime, image_count: int = 0) -> str:
    prefix = ""
    if task.due_date:
        due_local = task.due_date.astimezone(LOCAL_TZ)
        if task.due_date < now:
            icon = "❗"
        elif due_local.date() == now.astimezone(LOCAL_TZ).date():
            icon = "⏰"
        else:
            icon = "📅"
        prefix = f"{icon} "
    line = f"{prefix}{task.key} {html.escape(task.content)}"
    if task.due_date:
        line += f" (due: {task.due_date.astimezone(LOCAL_TZ).strftime('%b %d, %Y %H:%M')})"
    if image_count:
        line += f" 📷({image_count})"
    return line


def describe_task(task: TaskVersion) -> str:
    text = f"<b>{task.key}</b> {html.escape(task.content)}"
    if task.priority:
        text += f" ({task.priority})"
    text += f"\nStatus: {task.status.value}"
    if task.due_date:
        text += f"\nDue: {format_datetime(task.due_date, LOCAL_TZ)}"
    if task.snoozed_until:
        text += f"\nSnoozed until: {format_datetime(task.snoozed_until, LOCAL_TZ)}"
    if task.tags:
        text += f"\nTags: {html.escape(', '.join(task.tags))}"
    if task.contexts:
        text += f"\nContexts: {html.escape(', '.join(task.contexts))}"
    if task.projects:
        text += f"\nProjects: {html.escape(', '.join(task.projects))}"
    return text


def _format_history_entry(entry: TaskHistory) -> str:
    task = entry.latest
    line = f"<b>{entry.key}</b> - {html.escape(task.content)}"
    if task.priority:
        line += f" [{task.priority}]"
    line += f" ({task.status.value})"
    if task.due_date:
        line += f" (due: {format_datetime(task.due_date, LOCAL_TZ)})"
    if task.snoozed_until:
        line += f" (snoozed until: {format_datetime(task.snoozed_until, LOCAL_TZ)})"
    if task.tags:
        line += f" tags: {html.escape(', '.join(task.tags))}"
    if task.contexts:
        line += f" contexts: {html.escape(', '.join(task.contexts))}"
    if task.projects:
        line += f" projects: {html.escape(', '.join(task.projects))}"
    lines = [line]
    lines.extend(f"   • {html.escape(item)}" for item in narrate(entry.versions, LOCAL_TZ))
    return "\n".join(lines)


def format_history(buckets: Buckets, generated_at: datetime) -> str:
    sections = []
    for title, entries in (
        ("Unfinished", buckets.unfinished),
        ("Snoozed", buckets.snoozed),
        ("Finished", buckets.finished),
    ):
        body = "\n\n".join(_format_history_entry(entry) for entry in entries) or "None"
        sections.append(f"<b>{title}</b>\n\n{body}")
    sections.append(f"Generated: {generated_at.strftime('%Y-%m-%d %H:%M:%S')}")
    return "\n\n".join(sections)


def _edit_keyboard() -> InlineKeyboardMarkup:
    keyboard = [
        [
            InlineKeyboardButton("Done", callback_data="edit_status_done"),
            InlineKeyboardButton("Canceled", callback_data="edit_status_canceled"),
        ],
        [InlineKeyboardButton("Snooze", callback_data="edit_status_snoozed")],
        [InlineKeyboardButton("Add note", callback_data="edit_add_note")],
    ]
    return InlineKeyboardMarkup(keyboard)


def _list_keyboard(tasks: List[TaskVersion]) -> InlineKeyboardMarkup:
    rows: List[List[InlineKeyboardButton]] = []
    row: List[InlineKeyboardButton] = []
    for task in tasks:
        row.append(InlineKeyboardButton(task.key, callback_data=f"edit_task_{task.key}"))
        if len(row) == 2:
            rows.append(row)
            row = []
    if row:
        rows.append(row)
    return InlineKeyboardMarkup(rows)


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.effective_message.reply_text(
        "<b>Task bot</b>\n\nCreate tasks with /t and list them with /tl.\n\n"
        + html.escape(TASK_FORMAT_MESSAGE),
        parse_mode=ParseMode.HTML,
    )


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.effective_message.reply_text(TASK_FORMAT_MESSAGE)


async def task_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Create a task, or edit one when the text starts with its key."""
    text = _command_text(context)
    if not text:
        await update.effective_message.reply_text(TASK_FORMAT_MESSAGE)
        return

    chat_id = _get_chat_id(update)
    now = _now()
    key, rest = split_task_key(text)
    parsed = parse_task(rest, now)

    if key:
        try:
            task_service.edit_task(chat_id, key, parsed, now)
        except TaskNotFoundError as exc:
            await update.effective_message.reply_text(str(exc))
            return
        except EditConflictError:
            logger.exception(f"Edit of {key} in chat {chat_id} kept conflicting")
            await update.effective_message.reply_text("Task is being edited elsewhere, please try again.")
            return
        await update.effective_message.reply_text(f"Task {key} updated")
        return

    try:
        version = task_service.create_task(chat_id, parsed, now)
    except EmptyTaskError:
        await update.effective_message.reply_text("Task text cannot be empty")
        return
    except KeyAllocationError:
        logger.exception(f"Key allocation failed in chat {chat_id}")
        await update.effective_message.reply_text("Could not create the task, please try again.")
        return
    await update.effective_message.reply_text(f"Task created with key {version.key}")


async def list_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    chat_id = _get_chat_id(update)
    now = _now()
    tasks = task_service.list_open_tasks(chat_id, parse_filters(_command_text(context)), now)
    if not tasks:
        await update.effective_message.reply_text("No tasks found in this chat")
        return
    lines = [
        format_task_line(task, now, len(task_service.store.list_images(chat_id, task.key)))
        for task in tasks
    ]
    chunks = split_message("\n".join(lines))
    for chunk in chunks[:-1]:
        await update.effective_message.reply_text(chunk, parse_mode=ParseMode.HTML)
    await update.effective_message.reply_text(
        chunks[-1],
        parse_mode=ParseMode.HTML,
        reply_markup=_list_keyboard(tasks),
    )


async def history_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    chat_id = _get_chat_id(update)
    buckets = task_service.history(chat_id)
    if not len(buckets):
        await update.effective_message.reply_text("No tasks found in this chat")
        return
    for chunk in split_message(format_history(buckets, _now())):
        await update.effective_message.reply_text(chunk, parse_mode=ParseMode.HTML)


async def _show_edit_prompt(update: Update, chat_id: str, key: str) -> None:
    latest = task_service.get_latest(chat_id, key)
    notes = task_service.store.list_notes(chat_id, key)
    images = task_service.store.list_images(chat_id, key)
    text = describe_task(latest) + f"\n\nEditing {key}. Send updates or choose status"
    if notes:
        text += "\n\nNotes:\n" + "\n".join(f"- {html.escape(note.content)}" for note in notes)
    if images:
        text += f"\n\nImages: {len(images)}"
    await update.effective_message.reply_text(
        text, parse_mode=ParseMode.HTML, reply_markup=_edit_keyboard()
    )


async def open_edit_session(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Start editing the task whose key button was tapped."""
    query = update.callback_query
    await query.answer()
    await query.edit_message_reply_markup(reply_markup=None)

    chat_id = _get_chat_id(update)
    key = query.data[len("edit_task_"):]
    try:
        await _show_edit_prompt(update, chat_id, key)
    except TaskNotFoundError as exc:
        await update.effective_message.reply_text(str(exc))
        return
    edit_sessions[chat_id] = {"key": key, "step": STEP_AWAIT_ACTION}


async def _apply_session_change(
    update: Update, chat_id: str, key: str, change: Callable[[], object]
) -> bool:
    """Run ``change`` for the session's task; on failure reply and close the session."""
    try:
        change()
    except TaskNotFoundError as exc:
        edit_sessions.pop(chat_id, None)
        await update.effective_message.reply_text(str(exc))
        return False
    except EditConflictError:
        logger.exception(f"Edit of {key} in chat {chat_id} kept conflicting")
        edit_sessions.pop(chat_id, None)
        await update.effective_message.reply_text("Task is being edited elsewhere, please try again.")
        return False
    return True


async def handle_edit_action(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()

    chat_id = _get_chat_id(update)
    session = edit_sessions.get(chat_id)
    if session is None:
        await query.edit_message_text("This edit session has expired.")
        return
    await query.edit_message_reply_markup(reply_markup=None)

    action = query.data[len("edit_"):]
    key = session["key"]
    if action in ("status_done", "status_canceled"):
        status = TaskStatus.DONE if action == "status_done" else TaskStatus.CANCELED
        if not await _apply_session_change(
            update, chat_id, key, lambda: task_service.set_status(chat_id, key, status, _now())
        ):
            return
        del edit_sessions[chat_id]
        await update.effective_message.reply_text(f"Task {key} updated")
    elif action == "status_snoozed":
        session["step"] = STEP_AWAIT_SNOOZE_DAYS
        await update.effective_message.reply_text("How many days to snooze?")
    elif action == "add_note":
        session["step"] = STEP_AWAIT_NOTE
        await update.effective_message.reply_text("Please send note text")


async def handle_session_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Route plain text to the open edit session, if any."""
    chat_id = _get_chat_id(update)
    session = edit_sessions.get(chat_id)
    if session is None:
        return
    text = update.effective_message.text.strip()
    key = session["key"]
    now = _now()

    if session["step"] == STEP_AWAIT_SNOOZE_DAYS:
        try:
            days = int(text)
        except ValueError:
            await update.effective_message.reply_text("Please provide number of days")
            return
        try:
            applied = await _apply_session_change(
                update, chat_id, key, lambda: task_service.snooze(chat_id, key, days, now)
            )
        except OverflowError:
            await update.effective_message.reply_text("Please provide number of days")
            return
        if not applied:
            return
        del edit_sessions[chat_id]
        await update.effective_message.reply_text(f"Task {key} updated")
        return

    if session["step"] == STEP_AWAIT_NOTE:
        if not await _apply_session_change(
            update, chat_id, key, lambda: task_service.add_note(chat_id, key, text, now)
        ):
            return
        session["step"] = STEP_AWAIT_ACTION
        await update.effective_message.reply_text("Note added")
        await _show_edit_prompt(update, chat_id, key)
        return

    if not await _apply_session_change(
        update, chat_id, key, lambda: task_service.edit_task(chat_id, key, parse_task(text, now), now)
    ):
        return
    del edit_sessions[chat_id]
    await update.effective_message.reply_text(f"Task {key} updated")


async def handle_session_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Attach a photo sent during an edit session to the task."""
    chat_id = _get_chat_id(update)
    session = edit_sessions.get(chat_id)
    if session is None or session["step"] != STEP_AWAIT_ACTION:
        return
    message = update.effective_message
    if not message.photo:
        return
    # the last size is the largest
    photo = message.photo[-1]
    caption: Optional[str] = message.caption
    key = session["key"]
    if not await _apply_session_change(
        update,
        chat_id,
        key,
        lambda: task_service.attach_image(chat_id, key, photo.file_id, _now(), description=caption),
    ):
        return
    del edit_sessions[chat_id]
    await message.reply_text(f"Image added to {key}")


def register_handlers(application: Application) -> None:
    application.add_handler(CommandHandler("start", start))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler(["t", "task"], task_command))
    application.add_handler(CommandHandler("tl", list_command))
    application.add_handler(CommandHandler("th", history_command))
    application.add_handler(CallbackQueryHandler(open_edit_session, pattern=r"^edit_task_T-\d{8}-\d+$"))
    application.add_handler(
        CallbackQueryHandler(handle_edit_action, pattern="^edit_(status_done|status_canceled|status_snoozed|add_note)$")
    )
    application.add_handler(MessageHandler(filters.PHOTO, handle_session_photo))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_session_text))
