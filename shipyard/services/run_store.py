"""
Run Store
=========
In-memory registry of runs started through the HTTP API, so the
triggering system can poll GET /runs/{run_id}.

This is the only state shared between runs; every access holds the lock.
Runs are not persisted here (the results writer does that).
"""
import threading
from typing import Dict, List, Optional

from shipyard.models.run_result import RunResult

_MAX_RUNS = 200


class RunStore:

    def __init__(self, max_runs: int = _MAX_RUNS) -> None:
        self._runs: Dict[str, RunResult] = {}
        self._lock = threading.Lock()
        self._max_runs = max_runs

    def put(self, result: RunResult) -> None:
        with self._lock:
            self._runs.pop(result.run_id, None)
            self._runs[result.run_id] = result
            # Oldest first eviction
            while len(self._runs) > self._max_runs:
                self._runs.pop(next(iter(self._runs)))

    def get(self, run_id: str) -> Optional[RunResult]:
        with self._lock:
            return self._runs.get(run_id)

    def list(self) -> List[RunResult]:
        with self._lock:
            return list(reversed(self._runs.values()))

    def clear(self) -> None:
        with self._lock:
            self._runs.clear()


run_store = RunStore()
