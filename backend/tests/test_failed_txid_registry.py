from conftest import FakeClock

from app.services.failed_txid_registry import FailedTxidRegistry


def make_registry(clock: FakeClock) -> FailedTxidRegistry:
    return FailedTxidRegistry(max_attempts=5, cooldown_seconds=300, clock=clock)


def test_unknown_txid_is_always_eligible(clock):
    registry = make_registry(clock)

    assert registry.should_retry("tx1")


def test_failed_txid_waits_for_cooldown(clock):
    registry = make_registry(clock)
    registry.mark_failed("tx1")

    assert registry.get("tx1").attempts == 1
    assert not registry.should_retry("tx1")

    clock.advance(299)
    assert not registry.should_retry("tx1")

    clock.advance(1)
    assert registry.should_retry("tx1")


def test_gives_up_after_max_attempts(clock):
    registry = make_registry(clock)

    for _ in range(5):
        registry.mark_failed("tx1", reason="timeout")
        clock.advance(300)

    assert registry.is_abandoned("tx1")
    assert registry.get("tx1").attempts == 5

    clock.advance(365 * 24 * 3600)
    assert not registry.should_retry("tx1")


def test_clear_after_success(clock):
    registry = make_registry(clock)
    registry.mark_failed("tx1")

    registry.clear("tx1")

    assert registry.get("tx1") is None
    assert registry.should_retry("tx1")
    assert len(registry) == 0


def test_snapshot_counts(clock):
    registry = FailedTxidRegistry(max_attempts=1, cooldown_seconds=300, clock=clock)
    registry.mark_failed("tx1")

    assert registry.snapshot()["abandoned"] == 1
    assert registry.snapshot()["pending_retry"] == 0


def test_prune_drops_txids_missing_from_keep(clock):
    registry = FailedTxidRegistry(max_attempts=2, cooldown_seconds=300, clock=clock)
    registry.mark_failed("pending")
    registry.mark_failed("gone")
    for _ in range(2):
        registry.mark_failed("dead")
        registry.mark_failed("dead_gone")

    assert registry.prune({"pending", "dead"}) == 2

    assert registry.get("gone") is None
    assert not registry.is_abandoned("dead_gone")
    assert registry.get("pending").attempts == 1
    assert registry.is_abandoned("dead")
    assert registry.snapshot()["abandoned"] == 1
