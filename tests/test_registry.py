from aiogranolaa.models import StreamInfo, StreamType
from aiogranolaa.server.registry import StreamRegistry


def test_register_is_idempotent() -> None:
    registry = StreamRegistry()
    registry.register("abc", StreamType.SCREEN)
    registry.register("abc", StreamType.SCREEN)

    assert registry.snapshot() == [StreamInfo(client_id="abc", has_screen=True, has_webcam=False)]
    assert len(registry) == 1


def test_unregister_unknown_stream_is_noop() -> None:
    registry = StreamRegistry()
    assert not registry.unregister("ghost", StreamType.WEBCAM)

    registry.register("abc", StreamType.SCREEN)
    assert not registry.unregister("abc", StreamType.WEBCAM)
    assert registry.is_live("abc", StreamType.SCREEN)


def test_entry_removed_when_last_stream_goes_away() -> None:
    registry = StreamRegistry()
    registry.register("abc", StreamType.SCREEN)
    registry.register("abc", StreamType.WEBCAM)

    assert registry.unregister("abc", StreamType.SCREEN)
    assert registry.snapshot() == [StreamInfo(client_id="abc", has_screen=False, has_webcam=True)]

    assert registry.unregister("abc", StreamType.WEBCAM)
    assert registry.snapshot() == []
    assert "abc" not in registry


def test_snapshot_keeps_insertion_order() -> None:
    registry = StreamRegistry()
    for producer_id in ("c", "a", "b"):
        registry.register(producer_id, StreamType.WEBCAM)
    registry.register("a", StreamType.SCREEN)

    assert [info.client_id for info in registry.snapshot()] == ["c", "a", "b"]


def test_replaced_owner_cannot_unregister() -> None:
    registry = StreamRegistry()
    first, second = object(), object()
    registry.register("abc", StreamType.SCREEN, owner=first)
    registry.register("abc", StreamType.SCREEN, owner=second)

    assert not registry.unregister("abc", StreamType.SCREEN, owner=first)
    assert registry.is_live("abc", StreamType.SCREEN)

    assert registry.unregister("abc", StreamType.SCREEN, owner=second)
    assert not registry.is_live("abc", StreamType.SCREEN)


def test_clear() -> None:
    registry = StreamRegistry()
    registry.register("abc", StreamType.SCREEN)
    registry.clear()
    assert registry.snapshot() == []
