import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from taskbot import handlers
from taskbot.store import DuplicateKeyError
from taskbot.tasks import TaskStatus


@pytest.fixture(autouse=True)
def bot_service(service, monkeypatch):
    monkeypatch.setattr(handlers, "task_service", service)
    monkeypatch.setattr(handlers, "edit_sessions", {})
    return service


def make_update(text=None, chat_id=42, data=None):
    update = MagicMock()
    update.effective_chat.id = chat_id
    update.effective_message.reply_text = AsyncMock()
    update.effective_message.text = text
    update.effective_message.photo = []
    if data is not None:
        update.callback_query.data = data
        update.callback_query.answer = AsyncMock()
        update.callback_query.edit_message_reply_markup = AsyncMock()
        update.callback_query.edit_message_text = AsyncMock()
    return update


def make_context(*args):
    context = MagicMock()
    context.args = list(args)
    return context


def replies(update):
    return [c.args[0] for c in update.effective_message.reply_text.call_args_list]


def run_task_command(text):
    update = make_update()
    asyncio.run(handlers.task_command(update, make_context(*text.split())))
    return replies(update)


def test_empty_command_shows_format():
    [reply] = run_task_command("")
    assert reply.startswith("Format:")


def test_create_then_edit(bot_service):
    [created] = run_task_command("(B) @work !Big Project :tomorrow Prepare report")
    assert created.startswith("Task created with key T-")
    key = created.rsplit(" ", 1)[-1]

    [updated] = run_task_command(f"{key} -done @x")
    assert updated == f"Task {key} updated"
    latest = bot_service.get_latest("42", key)
    assert latest.status is TaskStatus.DONE
    assert latest.tags == ("work", "x")
    assert latest.projects == ("Big Project",)


def test_edit_unknown_key():
    [reply] = run_task_command("T-20200101-01 -done")
    assert reply == "Task with key T-20200101-01 not found in this chat"


def test_create_without_text():
    [reply] = run_task_command("@tag")
    assert reply == "Task text cannot be empty"


def test_list_command_filters_and_builds_buttons():
    run_task_command("buy milk @shop")
    run_task_command("write code @work")
    update = make_update()
    asyncio.run(handlers.list_command(update, make_context("@shop")))
    [text] = replies(update)
    assert "buy milk" in text
    assert "write code" not in text
    markup = update.effective_message.reply_text.call_args.kwargs["reply_markup"]
    [[button]] = markup.inline_keyboard
    assert button.callback_data.startswith("edit_task_T-")


def test_list_command_without_tasks():
    update = make_update()
    asyncio.run(handlers.list_command(update, make_context()))
    assert replies(update) == ["No tasks found in this chat"]


def test_history_command_renders_buckets():
    [created] = run_task_command("buy milk")
    key = created.rsplit(" ", 1)[-1]
    run_task_command(f"{key} -done")
    update = make_update()
    asyncio.run(handlers.history_command(update, make_context()))
    text = "\n".join(replies(update))
    assert "<b>Finished</b>" in text
    assert "created: buy milk" in text
    assert "status: done" in text


def test_edit_session_snooze_flow(bot_service):
    [created] = run_task_command("read book")
    key = created.rsplit(" ", 1)[-1]

    asyncio.run(handlers.open_edit_session(make_update(data=f"edit_task_{key}"), make_context()))
    assert handlers.edit_sessions["42"] == {"key": key, "step": handlers.STEP_AWAIT_ACTION}

    update = make_update(data="edit_status_snoozed")
    asyncio.run(handlers.handle_edit_action(update, make_context()))
    assert replies(update) == ["How many days to snooze?"]

    update = make_update(text="soon")
    asyncio.run(handlers.handle_session_text(update, make_context()))
    assert replies(update) == ["Please provide number of days"]

    update = make_update(text="4")
    asyncio.run(handlers.handle_session_text(update, make_context()))
    assert replies(update) == [f"Task {key} updated"]
    assert "42" not in handlers.edit_sessions
    assert bot_service.get_latest("42", key).status is TaskStatus.SNOOZED


def test_snooze_days_out_of_range_keeps_session_open(bot_service):
    [created] = run_task_command("read book")
    key = created.rsplit(" ", 1)[-1]
    handlers.edit_sessions["42"] = {"key": key, "step": handlers.STEP_AWAIT_SNOOZE_DAYS}

    update = make_update(text="99999999")
    asyncio.run(handlers.handle_session_text(update, make_context()))
    assert replies(update) == ["Please provide number of days"]
    assert handlers.edit_sessions["42"]["step"] == handlers.STEP_AWAIT_SNOOZE_DAYS
    assert bot_service.get_latest("42", key).status is TaskStatus.NEW


def test_edit_session_note_and_text_edit(bot_service):
    [created] = run_task_command("read book")
    key = created.rsplit(" ", 1)[-1]
    handlers.edit_sessions["42"] = {"key": key, "step": handlers.STEP_AWAIT_NOTE}

    update = make_update(text="chapter 3")
    asyncio.run(handlers.handle_session_text(update, make_context()))
    assert replies(update)[0] == "Note added"
    assert "chapter 3" in replies(update)[1]
    assert handlers.edit_sessions["42"]["step"] == handlers.STEP_AWAIT_ACTION

    update = make_update(text="(A) read two books")
    asyncio.run(handlers.handle_session_text(update, make_context()))
    latest = bot_service.get_latest("42", key)
    assert latest.priority == "A"
    assert latest.content == "read two books"


def test_text_without_session_is_ignored():
    update = make_update(text="hello")
    asyncio.run(handlers.handle_session_text(update, make_context()))
    update.effective_message.reply_text.assert_not_called()


def test_expired_session_action():
    update = make_update(data="edit_status_done")
    asyncio.run(handlers.handle_edit_action(update, make_context()))
    update.callback_query.edit_message_text.assert_awaited_once_with("This edit session has expired.")


def test_photo_is_attached_to_task(bot_service):
    [created] = run_task_command("fix bike")
    key = created.rsplit(" ", 1)[-1]
    handlers.edit_sessions["42"] = {"key": key, "step": handlers.STEP_AWAIT_ACTION}
    update = make_update()
    small, large = MagicMock(file_id="small"), MagicMock(file_id="large")
    update.effective_message.photo = [small, large]
    update.effective_message.caption = "broken chain"
    asyncio.run(handlers.handle_session_photo(update, make_context()))
    images = bot_service.store.list_images("42", key)
    assert [(i.url, i.description) for i in images] == [("large", "broken chain")]


def test_split_message_respects_limit():
    text = "\n".join(["x" * 30] * 10)
    chunks = handlers.split_message(text, limit=100)
    assert all(len(chunk) <= 100 for chunk in chunks)
    assert "\n".join(chunks) == text


def test_list_command_splits_long_lists():
    for number in range(20):
        run_task_command(f"task {number} " + "x" * 300)
    update = make_update()
    asyncio.run(handlers.list_command(update, make_context()))
    texts = replies(update)
    assert len(texts) > 1
    assert all(len(text) <= 4096 for text in texts)
    calls = update.effective_message.reply_text.call_args_list
    assert all("reply_markup" not in c.kwargs for c in calls[:-1])
    assert len(calls[-1].kwargs["reply_markup"].inline_keyboard) == 10


def reject_all_versions(store, monkeypatch):
    def always_taken(version):
        raise DuplicateKeyError(version.key, version.revision)

    monkeypatch.setattr(store, "create_version", always_taken)


def open_session(step=handlers.STEP_AWAIT_ACTION, text="read book"):
    [created] = run_task_command(text)
    key = created.rsplit(" ", 1)[-1]
    handlers.edit_sessions["42"] = {"key": key, "step": step}
    return key


def test_session_status_change_reports_conflict(bot_service, monkeypatch):
    key = open_session()
    reject_all_versions(bot_service.store, monkeypatch)

    update = make_update(data="edit_status_done")
    asyncio.run(handlers.handle_edit_action(update, make_context()))
    assert replies(update) == ["Task is being edited elsewhere, please try again."]
    assert "42" not in handlers.edit_sessions
    assert bot_service.get_latest("42", key).status is TaskStatus.NEW


def test_session_snooze_and_text_edit_report_conflict(bot_service, monkeypatch):
    open_session(step=handlers.STEP_AWAIT_SNOOZE_DAYS)
    reject_all_versions(bot_service.store, monkeypatch)

    update = make_update(text="3")
    asyncio.run(handlers.handle_session_text(update, make_context()))
    assert replies(update) == ["Task is being edited elsewhere, please try again."]
    assert "42" not in handlers.edit_sessions

    handlers.edit_sessions["42"] = {"key": "T-20200101-01", "step": handlers.STEP_AWAIT_ACTION}
    update = make_update(text="(A) read two books")
    asyncio.run(handlers.handle_session_text(update, make_context()))
    assert replies(update) == ["Task with key T-20200101-01 not found in this chat"]
    assert "42" not in handlers.edit_sessions


def test_session_note_and_photo_for_missing_task():
    handlers.edit_sessions["42"] = {"key": "T-20200101-01", "step": handlers.STEP_AWAIT_NOTE}
    update = make_update(text="chapter 3")
    asyncio.run(handlers.handle_session_text(update, make_context()))
    assert replies(update) == ["Task with key T-20200101-01 not found in this chat"]
    assert "42" not in handlers.edit_sessions

    handlers.edit_sessions["42"] = {"key": "T-20200101-01", "step": handlers.STEP_AWAIT_ACTION}
    update = make_update()
    update.effective_message.photo = [MagicMock(file_id="large")]
    update.effective_message.caption = None
    asyncio.run(handlers.handle_session_photo(update, make_context()))
    assert replies(update) == ["Task with key T-20200101-01 not found in this chat"]
    assert "42" not in handlers.edit_sessions
