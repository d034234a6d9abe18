from ercd.throttle import SendLog


def test_limit_is_reached_after_n_sends() -> None:
    log = SendLog()
    for i in range(3):
        assert not log.too_fast("a", 3, 10.0, 100.0 + i)
        log.record("a", 100.0 + i)
    assert log.too_fast("a", 3, 10.0, 103.0)


def test_counts_are_per_sender() -> None:
    log = SendLog()
    for _ in range(3):
        log.record("a", 100.0)
    assert log.too_fast("a", 3, 10.0, 100.0)
    assert not log.too_fast("b", 3, 10.0, 100.0)
    assert log.count_for("b") == 0


def test_entries_expire_at_window_edge() -> None:
    log = SendLog()
    log.record("a", 100.0)
    log.record("a", 105.0)
    assert log.too_fast("a", 2, 10.0, 109.9)
    # The entry at t=100 falls out exactly when the window has elapsed.
    assert not log.too_fast("a", 2, 10.0, 110.0)
    assert log.count_for("a") == 1


def test_prune_reports_dropped_entries() -> None:
    log = SendLog()
    log.record("a", 1.0)
    log.record("b", 2.0)
    log.record("a", 50.0)
    assert log.prune(10.0, 55.0) == 2
    assert len(log) == 1
    log.clear()
    assert len(log) == 0
