# resources.py
from __future__ import annotations

import threading
from typing import Dict, Mapping, Optional

from .errors import ResourceError, job_context
from .model import Job

CORES = "_cores"


class ResourcePool:
    """
    Process-wide admission state: available cores plus named quantities.

    Every mutation happens under one lock and is keyed by the job index,
    so a job's resources are released exactly once even if it fails.
    Named resources the pool does not declare are unconstrained.
    """

    def __init__(self, cores: Optional[int] = None, resources: Optional[Mapping[str, int]] = None):
        if cores is not None and cores < 1:
            raise ValueError(f"cores must be >= 1 (or None for unlimited), got {cores}")
        self.total_cores = cores
        self.totals: Dict[str, int] = dict(resources or {})
        self._available: Dict[str, int] = dict(self.totals)
        self._cores_available = cores
        self._held: Dict[int, Dict[str, int]] = {}
        self._lock = threading.Lock()
        self.peak_cores_in_use = 0

    # ---- requests ----

    def effective_threads(self, threads: int) -> int:
        """Clamp a thread request to the machine: never deadlock on an oversized job."""
        if self.total_cores is None:
            return threads
        return min(threads, self.total_cores)

    def request_for(self, job: Job) -> Dict[str, int]:
        req = {CORES: self.effective_threads(job.threads)}
        for name, qty in job.resources.items():
            if name in self.totals:
                req[name] = int(qty)
        return req

    def _fits(self, request: Mapping[str, int]) -> bool:
        if self._cores_available is not None and request.get(CORES, 0) > self._cores_available:
            return False
        for name, qty in request.items():
            if name == CORES:
                continue
            if qty > self._available.get(name, 0):
                return False
        return True

    # ---- critical section ----

    def try_acquire(self, key: int, request: Mapping[str, int]) -> bool:
        with self._lock:
            if key in self._held or not self._fits(request):
                return False
            if self._cores_available is not None:
                self._cores_available -= request.get(CORES, 0)
            for name, qty in request.items():
                if name != CORES:
                    self._available[name] -= qty
            self._held[key] = dict(request)
            self.peak_cores_in_use = max(self.peak_cores_in_use, self._cores_in_use())
            return True

    def release(self, key: int) -> bool:
        """Return a job's resources. A second release of the same key is a no-op."""
        with self._lock:
            request = self._held.pop(key, None)
            if request is None:
                return False
            if self._cores_available is not None:
                self._cores_available += request.get(CORES, 0)
            for name, qty in request.items():
                if name != CORES:
                    self._available[name] += qty
            return True

    def _cores_in_use(self) -> int:
        return sum(r.get(CORES, 0) for r in self._held.values())

    # ---- introspection ----

    def available(self) -> Dict[str, int]:
        with self._lock:
            out = dict(self._available)
            if self._cores_available is not None:
                out[CORES] = self._cores_available
            return out


def validate_resources(graph, limits: Mapping[str, int]) -> None:
    """
    Fail before scheduling if some job asks for more of a declared named
    resource than the pool will ever hold.
    """
    for job in graph.jobs:
        for name, qty in job.resources.items():
            if name not in limits:
                continue
            if int(qty) > int(limits[name]):
                raise ResourceError(
                    message=(
                        f"Job {job} requests {name}={qty} but only {limits[name]} "
                        f"is available; it can never be scheduled"
                    ),
                    details={**job_context(job), "resource": name, "requested": qty, "available": limits[name]},
                )
