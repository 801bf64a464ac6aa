from __future__ import annotations

import itertools

import pytest

from m365_harvest.harvest.convergence import (
    CONVERGED,
    ITERATION_CAP,
    NO_PROGRESS,
    converge,
)


def test_drains_queue_until_empty() -> None:
    quarantine = [f"msg-{i}" for i in range(5)]

    def release(batch):
        for item in batch:
            quarantine.remove(item)

    result = converge(lambda: quarantine[:2], release)

    assert result.reason == CONVERGED
    assert result.converged
    assert result.iterations == 3
    assert result.processed == 5
    assert quarantine == []


def test_stops_when_same_batch_comes_back() -> None:
    acted = []

    result = converge(lambda: ["msg-1", "msg-2"], acted.append)

    assert result.reason == NO_PROGRESS
    assert not result.converged
    assert result.iterations == 1
    assert acted == [["msg-1", "msg-2"]]


def test_stops_at_iteration_cap() -> None:
    counter = itertools.count()

    result = converge(lambda: [next(counter)], lambda batch: None, max_iterations=4)

    assert result.reason == ITERATION_CAP
    assert result.iterations == 4
    assert result.processed == 4


def test_key_function_identifies_items() -> None:
    batches = iter([[{"id": 1}], [{"id": 1}]])

    result = converge(lambda: next(batches), lambda batch: None, key=lambda m: m["id"])

    assert result.reason == NO_PROGRESS


def test_pauses_between_passes(clock) -> None:
    queue = [1, 2, 3]

    converge(lambda: queue[:1], lambda batch: queue.pop(0),
             pause_seconds=2.5, sleep=clock.sleep)

    assert clock.sleeps == [2.5, 2.5, 2.5]


def test_rejects_zero_iterations() -> None:
    with pytest.raises(ValueError):
        converge(lambda: [], lambda batch: None, max_iterations=0)
