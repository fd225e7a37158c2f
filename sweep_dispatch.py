#!/usr/bin/env python3
"""
Dispatch of independent sweep work items.

A sweep is a list of ``(key, task)`` pairs where ``task`` takes no arguments
and returns the value to store under ``key``. Tasks run in order on the calling
thread, or on a ``concurrent.futures.Executor`` when one is given. Results are
only written by the dispatching thread, one key per task.

Cancellation is cooperative: ``cancel_event`` is checked between work items.
A cancelled sweep returns what has been computed so far with
``cancelled=True``; it never raises because of the cancellation.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, Optional, Sequence, Tuple

from tqdm import tqdm

logger = logging.getLogger(__name__)

WorkItem = Tuple[Hashable, Callable[[], Any]]


@dataclass
class SweepOutcome:
    total: int
    results: Dict[Hashable, Any] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def complete(self) -> bool:
        return not self.cancelled and len(self.results) == self.total


class _ProgressReporter:
    """Logs a line each time roughly another tenth of the sweep is done."""

    def __init__(self, total: int, desc: str):
        self.total = total
        self.desc = desc
        self.every = max(1, round(total / 10))
        self.done = 0

    def advance(self) -> None:
        self.done += 1
        if self.done % self.every == 0 or self.done == self.total:
            logger.info(
                "%s: %.1f%% complete (%d/%d)",
                self.desc, 100.0 * self.done / self.total, self.done, self.total,
            )


def _is_cancelled(cancel_event: Optional[threading.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def run_sweep(
    items: Sequence[WorkItem],
    *,
    executor: Optional[Executor] = None,
    cancel_event: Optional[threading.Event] = None,
    show_progress: bool = False,
    desc: str = "Sweep",
) -> SweepOutcome:
    outcome = SweepOutcome(total=len(items))
    if not items:
        return outcome
    reporter = _ProgressReporter(len(items), desc)

    with tqdm(total=len(items), desc=desc, disable=not show_progress) as pbar:
        if executor is None:
            for key, task in items:
                if _is_cancelled(cancel_event):
                    outcome.cancelled = True
                    break
                outcome.results[key] = task()
                pbar.update(1)
                reporter.advance()
        elif _is_cancelled(cancel_event):
            outcome.cancelled = True
        else:
            futures = {executor.submit(task): key for key, task in items}
            finished = False
            try:
                for future in as_completed(futures):
                    outcome.results[futures[future]] = future.result()
                    pbar.update(1)
                    reporter.advance()
                    if _is_cancelled(cancel_event) and len(outcome.results) < len(items):
                        outcome.cancelled = True
                        break
                else:
                    finished = True
            finally:
                if not finished:
                    for future in futures:
                        future.cancel()

    if outcome.cancelled:
        logger.warning(
            "%s cancelled after %d of %d work items", desc, len(outcome.results), outcome.total
        )
    return outcome
