"""Aggregate HTTP attempt records into a run summary."""

from typing import Dict, List

from nosqlscanner.core.http import AttemptRecord


class HttpMetrics:

    def __init__(self):
        self.attempts = 0
        self.retries = 0
        self.errors = 0
        self.statuses: Dict[str, int] = {}
        self._durations: List[float] = []

    def add_attempt(self, record: AttemptRecord) -> None:
        self.attempts += 1
        self._durations.append(record.duration_ms)
        if record.will_retry:
            self.retries += 1
        if record.error_code:
            self.errors += 1
        key = str(record.status) if record.status is not None else "ERR"
        self.statuses[key] = self.statuses.get(key, 0) + 1

    def _pick(self, ordered: List[float], q: float) -> float:
        if not ordered:
            return 0.0
        idx = min(len(ordered) - 1, max(0, int(q * (len(ordered) - 1))))
        return ordered[idx]

    def summary(self) -> Dict:
        ordered = sorted(self._durations)
        return {
            "total_attempts": self.attempts,
            "total_retries": self.retries,
            "errors": self.errors,
            "statuses": dict(self.statuses),
            "latencies_ms": {
                "p50": self._pick(ordered, 0.5),
                "p95": self._pick(ordered, 0.95),
                "max": ordered[-1] if ordered else 0.0,
            },
        }
