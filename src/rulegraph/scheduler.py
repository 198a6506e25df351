# scheduler.py
from __future__ import annotations

import heapq
import shutil
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from .errors import ExecutionError, ProtectedOutputError, ResourceError, WorkflowError, job_context
from .formatting import format_command
from .graph import JobGraph
from .model import Job
from .planner import Plan
from .resources import ResourcePool
from .tracker import ArtifactTracker
from .ui.console import Console, get_console

POLL_INTERVAL = 0.2


class JobState(str, Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UP_TO_DATE = "up to date"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


DONE_OK = (JobState.SUCCEEDED, JobState.UP_TO_DATE)
WAITING = (JobState.PENDING, JobState.READY)


@dataclass
class RunSummary:
    graph: JobGraph
    states: Dict[int, JobState] = field(default_factory=dict)
    errors: Dict[int, Exception] = field(default_factory=dict)
    executed: List[int] = field(default_factory=list)
    removed_temp: List[str] = field(default_factory=list)
    interrupted: bool = False

    def state_of(self, job: Job | int) -> JobState:
        index = job if isinstance(job, int) else job.index
        return self.states[index]

    def jobs_in(self, state: JobState) -> List[Job]:
        return [self.graph.jobs[i] for i, s in sorted(self.states.items()) if s is state]

    @property
    def failed(self) -> List[Job]:
        return self.jobs_in(JobState.FAILED)

    @property
    def ok(self) -> bool:
        return not self.interrupted and all(s in DONE_OK for s in self.states.values())

    @property
    def exit_code(self) -> int:
        if self.interrupted:
            return 130
        return 0 if self.ok else 1

    def results(self) -> Dict[str, str]:
        return {str(self.graph.jobs[i]): s.value for i, s in sorted(self.states.items())}


class _RunState:
    def __init__(self, graph: JobGraph, plan: Plan, keep_going: bool):
        self.graph = graph
        self.plan = plan
        self.keep_going = keep_going
        self.order = plan.order or graph.topological_order()
        self.position = {i: n for n, i in enumerate(self.order)}
        self.summary = RunSummary(graph=graph)
        self.ready: List[Tuple[int, int, int]] = []
        self.in_flight: Dict[Future, int] = {}
        self.halted = False

    @property
    def states(self) -> Dict[int, JobState]:
        return self.summary.states


class Scheduler:
    """
    Runs the jobs of a Plan in dependency order on a thread pool.

    Admission, completion and temp cleanup all happen in the calling
    thread; workers only prepare outputs, run the action and write
    provenance. Every admitted job holds its share of the ResourcePool
    until its worker returns.
    """

    def __init__(
        self,
        executor,
        tracker: ArtifactTracker,
        *,
        console: Optional[Console] = None,
        kill_on_abort: bool = False,
        latency_wait: float = 5.0,
    ):
        self.executor = executor
        self.tracker = tracker
        self.console = console or get_console()
        self.kill_on_abort = kill_on_abort
        self.latency_wait = latency_wait
        self.pool: Optional[ResourcePool] = None
        self._cancel = threading.Event()

    # ---- control ----

    def cancel(self) -> None:
        """Stop admitting jobs; running ones finish (or are killed with kill_on_abort)."""
        self._cancel.set()
        if self.kill_on_abort and hasattr(self.executor, "kill_all"):
            self.executor.kill_all()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # ---- main loop ----

    def run(
        self,
        graph: JobGraph,
        plan: Plan,
        *,
        core_limit: Optional[int] = None,
        resource_limits: Optional[Mapping[str, int]] = None,
        keep_going: bool = True,
        max_workers: Optional[int] = None,
    ) -> RunSummary:
        self.pool = ResourcePool(core_limit, resource_limits)
        self._cancel.clear()
        run = _RunState(graph, plan, keep_going)

        for i in run.order:
            run.states[i] = JobState.PENDING if plan.needs_run(i) else JobState.UP_TO_DATE
        for i in run.order:
            self._maybe_ready(run, i)

        if max_workers is None:
            max_workers = max(1, core_limit or len(plan) or 1)

        with ThreadPoolExecutor(max_workers=max_workers) as workers:
            while True:
                try:
                    if not (self.cancelled or run.halted):
                        self._admit(run, workers)
                    if not run.in_flight:
                        if run.ready and not (self.cancelled or run.halted):
                            self._fail_unschedulable(run)
                            continue
                        break
                    done, _ = wait(list(run.in_flight), timeout=POLL_INTERVAL, return_when=FIRST_COMPLETED)
                    for fut in done:
                        self._complete(run, fut)
                except KeyboardInterrupt:
                    self.console.print_info("\nInterrupted: no new jobs will be started")
                    run.summary.interrupted = True
                    self.cancel()

        if self.cancelled:
            run.summary.interrupted = True
        for i, s in run.states.items():
            if s in WAITING:
                run.states[i] = JobState.CANCELLED
        return run.summary

    def _maybe_ready(self, run: _RunState, i: int) -> None:
        if run.states[i] is not JobState.PENDING:
            return
        if all(run.states[p] in DONE_OK for p in run.graph.producers[i]):
            run.states[i] = JobState.READY
            job = run.graph.jobs[i]
            heapq.heappush(run.ready, (-job.priority, run.position[i], i))

    def _admit(self, run: _RunState, workers: ThreadPoolExecutor) -> None:
        deferred: List[Tuple[int, int, int]] = []
        while run.ready:
            entry = heapq.heappop(run.ready)
            i = entry[2]
            if run.states[i] is not JobState.READY:
                continue
            job = run.graph.jobs[i]
            if not self.pool.try_acquire(i, self.pool.request_for(job)):
                deferred.append(entry)
                continue
            run.states[i] = JobState.RUNNING
            forced = i in run.plan.forced
            fut = workers.submit(self._execute, job, run.plan.reason(i) or "", forced)
            run.in_flight[fut] = i
        for entry in deferred:
            heapq.heappush(run.ready, entry)

    def _fail_unschedulable(self, run: _RunState) -> None:
        while run.ready:
            _, _, i = heapq.heappop(run.ready)
            if run.states[i] is not JobState.READY:
                continue
            job = run.graph.jobs[i]
            err = ResourceError(
                message=f"Job {job} can never be scheduled with the available resources",
                details={**job_context(job), "request": self.pool.request_for(job), "available": self.pool.available()},
            )
            self._mark_failed(run, i, err)

    def _complete(self, run: _RunState, fut: Future) -> None:
        i = run.in_flight.pop(fut)
        job = run.graph.jobs[i]
        try:
            fut.result()
        except Exception as e:
            self._mark_failed(run, i, e)
            return

        run.states[i] = JobState.SUCCEEDED
        run.summary.executed.append(i)
        self.console.print_success(str(job))

        for p in sorted(run.graph.producers[i]):
            self._cleanup_temp(run, p)
        for c in sorted(run.graph.consumers[i]):
            self._maybe_ready(run, c)

    def _mark_failed(self, run: _RunState, i: int, err: Exception) -> None:
        job = run.graph.jobs[i]
        run.states[i] = JobState.FAILED
        run.summary.errors[i] = err
        if isinstance(err, WorkflowError):
            hint = err.details.get("hint") if err.details else None
            self.console.print_failure(str(job), str(err), getattr(err, "exit_code", None), hint)
        else:
            self.console.print_failure(str(job), f"{type(err).__name__}: {err}")
        if self.console.debug:
            self.console.print_exception(err)

        for d in sorted(run.graph.descendants(i)):
            if run.states[d] in WAITING:
                run.states[d] = JobState.SKIPPED
                self.console.print_job_skipped(str(run.graph.jobs[d]), f"failed dependency {job}")
        if not run.keep_going:
            run.halted = True

    def _cleanup_temp(self, run: _RunState, producer: int) -> None:
        """Remove temp outputs of producer once every consumer of them has succeeded."""
        job = run.graph.jobs[producer]
        for path in job.temp_outputs:
            if path in run.graph.targets or path in run.summary.removed_temp:
                continue
            consumers = run.graph.consumers_of_path(path)
            if not consumers:
                continue
            if not any(run.states[c] is JobState.SUCCEEDED for c in consumers):
                continue
            if all(run.states[c] in DONE_OK for c in consumers):
                if self.tracker.cleanup(path):
                    self.console.print_temp_removed(path)
                run.summary.removed_temp.append(path)

    # ---- worker side ----

    def _execute(self, job: Job, reason: str, forced: bool) -> None:
        try:
            message = format_command(job.rule.message, job, getattr(self.executor, "config", None)) if job.rule.message else None
            self.console.print_job_start(str(job), reason, message)

            self._check_protected(job, forced)
            self._prepare_outputs(job)
            self.tracker.mark_incomplete(job.output)
            try:
                self.executor.run(job)
                self._wait_for_outputs(job)
            except Exception:
                if not self.cancelled:
                    # a plain failure leaves nothing behind; an aborted job stays suspect
                    self._remove_outputs(job)
                    self.tracker.clear_incomplete(job.output)
                raise

            self.tracker.record(job)
            for out in job.protected_outputs:
                self.tracker.protect(out)
        finally:
            self.pool.release(job.index)

    def _check_protected(self, job: Job, forced: bool) -> None:
        for out in job.protected_outputs:
            if not (self.tracker.workdir / out).exists():
                continue
            if forced:
                self.tracker.unprotect(out)
                continue
            raise ProtectedOutputError(
                message=f"Refusing to overwrite protected output {out}",
                details={
                    **job_context(job),
                    "path": out,
                    "hint": "Remove the file by hand or force the rule with --forcerun.",
                },
            )

    def _prepare_outputs(self, job: Job) -> None:
        for out in job.output:
            self._remove_path(self.tracker.workdir / out)
            self.tracker.forget(out)
        for path in job.products:
            (self.tracker.workdir / path).parent.mkdir(parents=True, exist_ok=True)

    def _remove_outputs(self, job: Job) -> None:
        for out in job.output:
            self._remove_path(self.tracker.workdir / out)

    @staticmethod
    def _remove_path(p: Path) -> None:
        if p.is_dir() and not p.is_symlink():
            shutil.rmtree(p)
        elif p.exists() or p.is_symlink():
            p.unlink()

    def _wait_for_outputs(self, job: Job) -> None:
        deadline = time.monotonic() + self.latency_wait
        while True:
            missing = [o for o in job.output if not (self.tracker.workdir / o).exists()]
            if not missing:
                return
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ExecutionError(
                    message=f"Job {job} finished but did not create all of its outputs",
                    kind="missing_output",
                    details={**job_context(job), "missing": ", ".join(missing), "latency_wait": self.latency_wait},
                )
            time.sleep(min(0.1, remaining))
