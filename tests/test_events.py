from __future__ import annotations

import pytest

from valot.events import EventBus


@pytest.mark.unit
def test_emit_delivers_payload_to_every_subscriber() -> None:
    bus = EventBus()
    seen: list[tuple[str, object]] = []
    bus.on("ping", lambda payload: seen.append(("a", payload)))
    bus.on("ping", lambda payload: seen.append(("b", payload)))

    assert bus.emit("ping", 42) == 2
    assert seen == [("a", 42), ("b", 42)]
    assert bus.emit("nobody-listens") == 0


@pytest.mark.unit
def test_failing_subscriber_does_not_stop_delivery(caplog: pytest.LogCaptureFixture) -> None:
    bus = EventBus()
    seen: list[object] = []

    def broken(payload: object) -> None:
        raise RuntimeError("subscriber bug")

    bus.on("ping", broken)
    bus.on("ping", seen.append)

    assert bus.emit("ping", "x") == 1
    assert seen == ["x"]
    assert "subscriber bug" in caplog.text


@pytest.mark.unit
def test_unsubscribe() -> None:
    bus = EventBus()
    seen: list[object] = []
    unsubscribe = bus.on("ping", seen.append)
    assert bus.listener_count("ping") == 1

    unsubscribe()
    assert bus.listener_count("ping") == 0
    assert bus.off("ping", seen.append) is False
    bus.emit("ping", 1)
    assert seen == []


@pytest.mark.unit
def test_clear_removes_all_subscriptions() -> None:
    bus = EventBus()
    bus.on("a", print)
    bus.on("b", print)
    bus.clear()
    assert bus.listener_count("a") == bus.listener_count("b") == 0
