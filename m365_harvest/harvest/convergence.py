"""
Bounded drain loop for remediation jobs of the form "query, act on what came
back, query again until nothing is left" (e.g. purging quarantined mail).

The loop ends when the query returns nothing, when it returns exactly the
batch it returned last time (acting made no progress), or after
max_iterations passes.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Sequence

logger = logging.getLogger("m365_harvest.harvest.convergence")

CONVERGED = "empty"
NO_PROGRESS = "no_progress"
ITERATION_CAP = "iteration_cap"


@dataclass
class ConvergenceResult:
    iterations: int
    processed: int
    reason: str

    @property
    def converged(self) -> bool:
        return self.reason == CONVERGED


def converge(
    query: Callable[[], Sequence[Any]],
    act: Callable[[Sequence[Any]], None],
    max_iterations: int = 25,
    key: Callable[[Any], Hashable] = lambda item: item,
    pause_seconds: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
) -> ConvergenceResult:
    if max_iterations < 1:
        raise ValueError("max_iterations must be at least 1")

    processed = 0
    previous: frozenset | None = None

    for iteration in range(1, max_iterations + 1):
        batch = query()
        if not batch:
            logger.info(f"Converged after {iteration - 1} passes ({processed} items)")
            return ConvergenceResult(iteration - 1, processed, CONVERGED)

        current = frozenset(key(item) for item in batch)
        if current == previous:
            logger.warning(
                f"No progress on pass {iteration}: {len(batch)} items unchanged; stopping"
            )
            return ConvergenceResult(iteration - 1, processed, NO_PROGRESS)
        previous = current

        act(batch)
        processed += len(batch)
        logger.debug(f"Pass {iteration}: acted on {len(batch)} items")
        if pause_seconds > 0:
            sleep(pause_seconds)

    logger.warning(f"Iteration cap of {max_iterations} reached before the query came back empty")
    return ConvergenceResult(max_iterations, processed, ITERATION_CAP)
