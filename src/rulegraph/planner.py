# planner.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Set

from .graph import JobGraph
from .model import Job
from .tracker import ArtifactTracker

FORCED = "forced"
UPSTREAM = "upstream job will run"
NEEDED_TEMP = "missing temp output needed downstream"


@dataclass(frozen=True)
class PlannedJob:
    job: Job
    reason: str


@dataclass
class Plan:
    """Which jobs of a graph must execute, and why."""
    graph: JobGraph
    reasons: Dict[int, str] = field(default_factory=dict)
    order: List[int] = field(default_factory=list)
    forced: Set[int] = field(default_factory=set)

    def needs_run(self, index: int) -> bool:
        return index in self.reasons

    def reason(self, index: int) -> Optional[str]:
        return self.reasons.get(index)

    @property
    def jobs(self) -> List[PlannedJob]:
        return [PlannedJob(self.graph.jobs[i], self.reasons[i]) for i in self.order if i in self.reasons]

    def __iter__(self) -> Iterator[PlannedJob]:
        return iter(self.jobs)

    def __len__(self) -> int:
        return len(self.reasons)


def _own_reason(job: Job, graph: JobGraph, tracker: ArtifactTracker) -> Optional[str]:
    """Reason a job must run judged by its own outputs, ignoring its producers."""
    if job.rule.is_aggregate:
        return None

    rule_fp = job.rule.fingerprint()
    temp = set(job.temp_outputs)
    for out in job.output:
        reason = tracker.staleness_reason(out, inputs=job.input, rule_fingerprint=rule_fp)
        if reason is None:
            continue
        consumers = graph.consumers_of_path(out)
        if reason == "missing output" and out in temp and out not in graph.targets and consumers:
            # Deleted temp file: only rebuilt if a consumer that runs needs it,
            # or if its own inputs changed after the consumers were built.
            reason = _missing_temp_reason(job, consumers, graph, tracker)
            if reason is None:
                continue
        return reason
    return None


def _consumer_build_times(consumers: Iterable[int], graph: JobGraph, tracker: ArtifactTracker, seen: Set[int]) -> List[float]:
    """Build times of the consumers' outputs, looking through temp outputs that were cleaned up."""
    built: List[float] = []
    for c in consumers:
        if c in seen:
            continue
        seen.add(c)
        job = graph.jobs[c]
        temp = set(job.temp_outputs)
        for out in job.output:
            rec = tracker.get(out)
            if rec is not None:
                built.append(rec.build_time)
            elif out in temp and not (tracker.workdir / out).exists():
                built.extend(_consumer_build_times(graph.consumers_of_path(out), graph, tracker, seen))
    return built


def _missing_temp_reason(job: Job, consumers: List[int], graph: JobGraph, tracker: ArtifactTracker) -> Optional[str]:
    built = _consumer_build_times(consumers, graph, tracker, set())
    if not built:
        # consumers were never built either
        return "missing output"
    oldest = min(built)
    for inp in job.input:
        p = tracker.workdir / inp
        if p.exists() and p.stat().st_mtime >= oldest:
            return "stale input"
    return None


def plan(
    graph: JobGraph,
    tracker: ArtifactTracker,
    *,
    forceall: bool = False,
    forcerun: Iterable[str] = (),
    forcetargets: bool = False,
) -> Plan:
    """
    Decide which jobs need to execute.

    A job runs when it is forced, when one of its outputs is missing,
    incomplete or stale, or when one of its producers runs. A producer of a
    missing temp file runs only if a consumer that runs needs the file.
    """
    order = graph.topological_order()
    forcerun = set(forcerun)
    result = Plan(graph=graph, order=order)

    for i in order:
        job = graph.jobs[i]
        if forceall or job.rule.name in forcerun or (forcetargets and i in graph.target_jobs):
            result.forced.add(i)
            result.reasons[i] = FORCED
            continue
        reason = _own_reason(job, graph, tracker)
        if reason is not None:
            result.reasons[i] = reason

    changed = True
    while changed:
        changed = False

        # forward: anything downstream of a running job runs too
        for i in order:
            if i in result.reasons:
                continue
            if any(p in result.reasons for p in graph.producers[i]):
                result.reasons[i] = UPSTREAM
                changed = True

        # backward: a running consumer pulls in producers of its missing temp inputs
        for i in reversed(order):
            if i in result.reasons:
                continue
            job = graph.jobs[i]
            for out in job.temp_outputs:
                if (tracker.workdir / out).exists():
                    continue
                if any(c in result.reasons for c in graph.consumers_of_path(out)):
                    result.reasons[i] = NEEDED_TEMP
                    changed = True
                    break

    return result
