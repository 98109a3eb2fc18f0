"""
Attempt counters for the quiz attempt engine.

The start and submit use cases bump one counter per attempt transition:
started (new or resumed), finished (completed or timed-out) and rejected
(attempt limit reached). Labels record which of those outcomes
happened; tests read them back with `counter_value`.
"""
from __future__ import annotations

from collections import defaultdict
from threading import Lock
from typing import Dict, Tuple

LabelKey = Tuple[Tuple[str, str], ...]
_counters: Dict[str, Dict[LabelKey, int]] = defaultdict(dict)
_lock = Lock()

ATTEMPTS_STARTED = "quiz_attempts_started_total"
ATTEMPTS_FINISHED = "quiz_attempts_finished_total"
ATTEMPTS_REJECTED = "quiz_attempts_rejected_total"


def _label_key(labels: dict[str, str] | None) -> LabelKey:
    if not labels:
        return tuple()
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def increment_counter(name: str, *, amount: int = 1, **labels: str) -> None:
    """Increase a named counter by `amount` (defaults to 1)."""
    if amount == 0:
        return
    key = _label_key(labels)
    with _lock:
        current = _counters[name].get(key, 0)
        _counters[name][key] = current + amount


def counter_value(name: str, **labels: str) -> int:
    """Return the current value of one labelled counter (0 when unset)."""
    key = _label_key(labels)
    with _lock:
        return _counters.get(name, {}).get(key, 0)


def reset_for_tests() -> None:
    """Clear all counters. Intended for pytest fixtures."""
    with _lock:
        _counters.clear()
