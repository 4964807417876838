from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from taskbot.keys import KeyAllocationError
from taskbot.parser import parse_filters, parse_task
from taskbot.service import EditConflictError, EmptyTaskError, TaskNotFoundError, TaskService
from taskbot.store import DuplicateKeyError
from taskbot.tasks import PartialTaskFields, TaskStatus, TaskVersion


def test_create_allocates_sequential_keys(service, now):
    first = service.create_task("42", parse_task("buy milk", now), now)
    second = service.create_task("42", parse_task("call mom", now), now + timedelta(minutes=1))
    other_chat = service.create_task("7", parse_task("water plants", now), now)
    assert first.key == "T-20250715-01"
    assert second.key == "T-20250715-02"
    assert other_chat.key == "T-20250715-01"


def test_edits_do_not_advance_the_daily_sequence(service, now):
    first = service.create_task("42", parse_task("buy milk", now), now)
    service.edit_task("42", first.key, parse_task("@shop", now), now + timedelta(minutes=1))
    second = service.create_task("42", parse_task("call mom", now), now + timedelta(minutes=2))
    assert second.key == "T-20250715-02"


def test_create_rejects_empty_content(service, now):
    with pytest.raises(EmptyTaskError):
        service.create_task("42", parse_task("@tag -done", now), now)


def test_create_retries_after_duplicate_key(now):
    store = MagicMock()
    store.count_created_within.side_effect = [0, 1]
    store.create_version.side_effect = [DuplicateKeyError("T-20250715-01", 1), None]
    version = TaskService(store, max_attempts=3).create_task("42", PartialTaskFields(content="x"), now)
    assert version.key == "T-20250715-02"
    assert store.count_created_within.call_count == 2


def test_create_gives_up_after_bounded_retries(now):
    store = MagicMock()
    store.count_created_within.return_value = 0
    store.create_version.side_effect = DuplicateKeyError("T-20250715-01", 1)
    with pytest.raises(KeyAllocationError):
        TaskService(store, max_attempts=3).create_task("42", PartialTaskFields(content="x"), now)
    assert store.create_version.call_count == 3


def test_edit_appends_a_version(service, store, now):
    created = service.create_task("42", parse_task("(A) @work .home !Proj old", now), now)
    later = now + timedelta(minutes=5)
    edited = service.edit_task(
        "42", created.key, parse_task("-done @x .y !New :2025.07.31 new text", later), later
    )
    assert edited.status is TaskStatus.DONE
    assert edited.tags == ("work", "x")
    assert edited.contexts == ("home", "y")
    assert edited.projects == ("New",)
    assert edited.content == "new text"
    assert edited.priority == "A"
    history = store.list_history("42", created.key)
    assert [v.revision for v in history] == [1, 2]
    assert history[0].content == "old"


def test_edit_unknown_key(service, now):
    with pytest.raises(TaskNotFoundError):
        service.edit_task("42", "T-20250715-09", PartialTaskFields(status=TaskStatus.DONE), now)


def test_edit_gives_up_on_persistent_conflict(now):
    store = MagicMock()
    store.find_latest.return_value = TaskVersion(
        key="T-20250715-01", chat_id="42", content="x", created_at=now - timedelta(hours=1)
    )
    store.create_version.side_effect = DuplicateKeyError("T-20250715-01", 2)
    with pytest.raises(EditConflictError):
        TaskService(store, max_attempts=2).edit_task("42", "T-20250715-01", PartialTaskFields(), now)


def test_snooze_and_status(service, now):
    created = service.create_task("42", parse_task("read book", now), now)
    snoozed = service.snooze("42", created.key, 3, now + timedelta(minutes=1))
    assert snoozed.status is TaskStatus.SNOOZED
    assert snoozed.snoozed_until == now + timedelta(days=3, minutes=1)
    done = service.set_status("42", created.key, TaskStatus.DONE, now + timedelta(minutes=2))
    assert done.status is TaskStatus.DONE
    assert done.snoozed_until is None


def test_notes_require_existing_task(service, store, now):
    created = service.create_task("42", parse_task("read book", now), now)
    service.add_note("42", created.key, "chapter 3", now)
    assert [n.content for n in store.list_notes("42", created.key)] == ["chapter 3"]
    with pytest.raises(TaskNotFoundError):
        service.add_note("42", "T-20250715-77", "nope", now)
    with pytest.raises(TaskNotFoundError):
        service.attach_image("42", "T-20250715-77", "file", now)


def test_list_open_tasks(service, now):
    t1 = service.create_task("42", parse_task("no date @work", now), now)
    t2 = service.create_task("42", parse_task("later :2025.07.20 @work", now), now + timedelta(seconds=1))
    t3 = service.create_task("42", parse_task("soon :2025.07.16", now), now + timedelta(seconds=2))
    t4 = service.create_task("42", parse_task("finished", now), now + timedelta(seconds=3))
    t5 = service.create_task("42", parse_task("sleeping", now), now + timedelta(seconds=4))
    t6 = service.create_task("42", parse_task("woke up", now), now + timedelta(seconds=5))
    service.set_status("42", t4.key, TaskStatus.DONE, now + timedelta(minutes=1))
    service.snooze("42", t5.key, 2, now + timedelta(minutes=1))
    service.edit_task(
        "42",
        t6.key,
        PartialTaskFields(status=TaskStatus.SNOOZED, snoozed_until=now - timedelta(hours=1)),
        now + timedelta(minutes=1),
    )

    later = now + timedelta(minutes=2)
    keys = [t.key for t in service.list_open_tasks("42", parse_filters(""), later)]
    # dated first, then undated newest first
    assert keys == [t3.key, t2.key, t6.key, t1.key]

    work = service.list_open_tasks("42", parse_filters("@work"), later)
    assert [t.key for t in work] == [t2.key, t1.key]


def test_history_buckets(service, now):
    open_task = service.create_task("42", parse_task("open", now), now)
    done_task = service.create_task("42", parse_task("closed", now), now)
    service.set_status("42", done_task.key, TaskStatus.DONE, now + timedelta(minutes=1))
    buckets = service.history("42")
    assert [h.key for h in buckets.unfinished] == [open_task.key]
    assert [h.key for h in buckets.finished] == [done_task.key]
    assert len(buckets.finished[0].versions) == 2
