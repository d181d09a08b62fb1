from __future__ import annotations

import logging

import pytest

from auto_containers.m6.registry import Phase, TabBusyError, TabRegistry


def test_phases() -> None:
    reg = TabRegistry()
    assert reg.phase(1) == Phase.UNTRACKED

    state = reg.ensure(1)
    assert reg.phase(1) == Phase.SETTLED
    state.pending = True
    assert reg.phase(1) == Phase.PENDING

    with reg.processing(1):
        assert reg.phase(1) == Phase.PROCESSING
    assert reg.phase(1) == Phase.PENDING

    assert reg.forget(1) is state
    assert reg.phase(1) == Phase.UNTRACKED
    assert reg.forget(1) is None


def test_processing_lock_is_exclusive_and_always_released() -> None:
    reg = TabRegistry()
    with reg.processing(5):
        assert reg.is_processing(5)
        with pytest.raises(TabBusyError):
            with reg.processing(5):
                pass
        assert reg.is_processing(5)
    assert not reg.is_processing(5)

    with pytest.raises(RuntimeError, match="boom"):
        with reg.processing(5):
            raise RuntimeError("boom")
    assert not reg.is_processing(5)


def test_bump_ceiling(caplog) -> None:
    reg = TabRegistry(max_processing=3)
    assert [reg.bump(7) for _ in range(3)] == [True, True, True]
    with caplog.at_level(logging.WARNING):
        assert reg.bump(7) is False
    assert reg.get(7).abandoned
    assert "giving up" in caplog.text
    assert reg.bump(7) is False
    assert reg.get(7).process_count == 3

    # a new tab id starts fresh
    assert reg.bump(8) is True


def test_exclusion_flags() -> None:
    reg = TabRegistry()
    assert not reg.is_excluded(3)
    reg.exclude(3)
    reg.exclude(9)
    assert reg.is_excluded(3)
    assert reg.excluded_ids() == [3, 9]
    assert reg.include(3) is True
    assert reg.include(3) is False
    assert reg.include(42) is False
    assert reg.excluded_ids() == [9]


def test_record_url_only_for_tracked_tabs() -> None:
    reg = TabRegistry()
    reg.record_url(1, "https://a.com/")
    assert reg.get(1) is None
    reg.ensure(1)
    reg.record_url(1, "https://a.com/")
    assert reg.get(1).last_url == "https://a.com/"
