"""Unit tests for :mod:`cvagent.chat.state_store`."""

from __future__ import annotations

import gc
import logging

import pytest

from cvagent.chat.state_store import StateStore


class _Listener:
    def __init__(self) -> None:
        self.values: list[int] = []

    def on_value(self, value: int) -> None:
        self.values.append(value)


def test_subscribe_replays_current_value() -> None:
    store = StateStore(1)
    seen: list[int] = []

    store.subscribe(seen.append)

    assert seen == [1]


def test_subscribe_without_replay_waits_for_next_value() -> None:
    store = StateStore(1)
    seen: list[int] = []

    store.subscribe(seen.append, replay=False)
    store.set(2)

    assert seen == [2]


def test_update_applies_transform_and_publishes_in_order() -> None:
    store = StateStore(0)
    first: list[int] = []
    second: list[int] = []
    store.subscribe(first.append, replay=False)
    store.subscribe(second.append, replay=False)

    result = store.update(lambda value: value + 5)
    store.update(lambda value: value * 2)

    assert result == 5
    assert store.value == 10
    assert first == [5, 10]
    assert second == [5, 10]


def test_unsubscribe_callable_stops_delivery() -> None:
    store = StateStore("a")
    seen: list[str] = []
    unsubscribe = store.subscribe(seen.append, replay=False)

    unsubscribe()
    store.set("b")

    assert seen == []
    assert store.subscriber_count() == 0


def test_handler_may_unsubscribe_during_publish() -> None:
    store = StateStore(0)
    seen: list[int] = []
    unsubscribe_holder: list = []

    def once(value: int) -> None:
        seen.append(value)
        unsubscribe_holder[0]()

    unsubscribe_holder.append(store.subscribe(once, replay=False))
    store.set(1)
    store.set(2)

    assert seen == [1]


def test_failing_handler_does_not_block_others(caplog: pytest.LogCaptureFixture) -> None:
    store = StateStore(0)
    seen: list[int] = []

    def broken(value: int) -> None:
        raise RuntimeError("boom")

    store.subscribe(broken, replay=False)
    store.subscribe(seen.append, replay=False)

    with caplog.at_level(logging.ERROR, logger="cvagent.chat.state_store"):
        store.set(3)

    assert seen == [3]
    assert any("raised" in record.getMessage() for record in caplog.records)


def test_bound_method_handlers_are_weak() -> None:
    store = StateStore(0)
    listener = _Listener()
    store.subscribe(listener.on_value, replay=False)
    store.set(1)
    assert listener.values == [1]

    del listener
    gc.collect()
    store.set(2)

    assert store.subscriber_count() == 0


def test_unsubscribe_bound_method() -> None:
    store = StateStore(0)
    listener = _Listener()
    store.subscribe(listener.on_value, replay=False)

    store.unsubscribe(listener.on_value)
    store.set(1)

    assert listener.values == []


def test_write_from_handler_is_published_after_current_round() -> None:
    store = StateStore(0)
    first: list[int] = []
    second: list[int] = []

    def escalate(value: int) -> None:
        first.append(value)
        if value == 1:
            store.set(2)

    store.subscribe(escalate, replay=False)
    store.subscribe(second.append, replay=False)
    store.set(1)

    assert store.value == 2
    assert first == [1, 2]
    assert second == [1, 2]
    assert second[-1] == store.value


def test_failing_handler_does_not_stall_queued_values() -> None:
    store = StateStore(0)
    seen: list[int] = []

    def writer(value: int) -> None:
        if value == 1:
            store.set(2)
            raise RuntimeError("after write")

    store.subscribe(writer, replay=False)
    store.subscribe(seen.append, replay=False)
    store.set(1)
    store.set(3)

    assert seen == [1, 2, 3]
