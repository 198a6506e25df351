# graph.py
from __future__ import annotations

import heapq
from collections import deque
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .errors import (
    ConfigurationError,
    CyclicDependencyError,
    MissingInputError,
    NoRuleError,
    job_context,
)
from .model import Job, Namespace, Paths, Rule
from .patterns import apply_wildcards
from .registry import RuleMatch, RuleRegistry


# ---------------------------------------------------------------------
# JobGraph
# ---------------------------------------------------------------------

class JobGraph:
    """
    DAG of jobs stored as an arena: jobs are addressed by their index.

    Edge p -> c means job c consumes an output of job p.
    """

    def __init__(self, targets: Sequence[str] = ()):
        self.jobs: List[Job] = []
        self.producers: Dict[int, Set[int]] = {}   # consumer -> producers
        self.consumers: Dict[int, Set[int]] = {}   # producer -> consumers
        self.output_index: Dict[str, int] = {}     # path -> producing job
        self.targets: List[str] = list(targets)
        self.target_jobs: Set[int] = set()

    def __len__(self) -> int:
        return len(self.jobs)

    def __iter__(self):
        return iter(self.jobs)

    def add_job(self, job: Job) -> int:
        job.index = len(self.jobs)
        self.jobs.append(job)
        self.producers[job.index] = set()
        self.consumers[job.index] = set()
        for path in job.output:
            self.output_index[path] = job.index
        return job.index

    def add_edge(self, producer: int, consumer: int) -> None:
        self.producers[consumer].add(producer)
        self.consumers[producer].add(consumer)

    def producer_of(self, path: str) -> Optional[int]:
        return self.output_index.get(path)

    def descendants(self, index: int) -> Set[int]:
        seen: Set[int] = set()
        q = deque(self.consumers[index])
        while q:
            n = q.popleft()
            if n in seen:
                continue
            seen.add(n)
            q.extend(self.consumers[n])
        return seen

    def consumers_of_path(self, path: str) -> List[int]:
        producer = self.producer_of(path)
        if producer is None:
            return []
        return sorted(c for c in self.consumers[producer] if path in self.jobs[c].input)

    def truncate(self, size: int) -> None:
        """Drop every job with index >= size (used to undo a failed sub-resolution)."""
        dropped = set(range(size, len(self.jobs)))
        if not dropped:
            return
        del self.jobs[size:]
        for i in dropped:
            self.producers.pop(i, None)
            self.consumers.pop(i, None)
        for edges in (self.producers, self.consumers):
            for i in edges:
                edges[i] -= dropped
        self.output_index = {p: i for p, i in self.output_index.items() if i < size}
        self.target_jobs -= dropped

    def topological_order(self) -> List[int]:
        """
        Deterministic topological order (Kahn's algorithm, smallest index first).
        """
        indeg = {i: len(p) for i, p in self.producers.items()}
        heap = [i for i, d in indeg.items() if d == 0]
        heapq.heapify(heap)
        order: List[int] = []
        while heap:
            n = heapq.heappop(heap)
            order.append(n)
            for child in self.consumers[n]:
                indeg[child] -= 1
                if indeg[child] == 0:
                    heapq.heappush(heap, child)

        if len(order) != len(self.jobs):
            stuck = sorted(str(self.jobs[i]) for i, d in indeg.items() if d > 0)
            raise CyclicDependencyError(
                message=f"Job graph has a cycle. Stuck jobs: {stuck}",
                details={"jobs": stuck},
            )
        return order

    def levels(self) -> List[List[int]]:
        """
        Group jobs into topological "levels" (stages).
        Jobs of one level do not depend on each other.
        """
        indeg = {i: len(p) for i, p in self.producers.items()}
        q = deque(sorted(i for i, d in indeg.items() if d == 0))
        levels: List[List[int]] = []
        while q:
            level: List[int] = []
            for _ in range(len(q)):
                node = q.popleft()
                level.append(node)
                for child in sorted(self.consumers[node]):
                    indeg[child] -= 1
                    if indeg[child] == 0:
                        q.append(child)
            levels.append(level)
        return levels

    def to_dot(self) -> str:
        lines = ["digraph rulegraph {", "    node [shape=box, style=rounded];"]
        for job in self.jobs:
            label = str(job).replace('"', '\\"')
            lines.append(f'    {job.index} [label="{label}"];')
        for c in range(len(self.jobs)):
            for p in sorted(self.producers[c]):
                lines.append(f"    {p} -> {c};")
        lines.append("}")
        return "\n".join(lines)


# ---------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------

def _evaluate(value: Any, wildcards: Namespace) -> Any:
    return value(wildcards) if callable(value) else value


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (str, Path)):
        return [str(value)]
    return [str(v) for v in value]


class GraphBuilder:
    """
    Expands rule templates against requested targets into a JobGraph.

    Resolution is recursive from every target: find the producing rule,
    bind its wildcards, evaluate deferred inputs, recurse into inputs that
    are missing, requested, or produced by some rule. Jobs are memoized by
    (rule, wildcards) so shared inputs yield a single job.
    """

    def __init__(self, registry: RuleRegistry, workdir: str | Path = "."):
        self.registry = registry
        self.workdir = Path(workdir)

    def _exists(self, path: str) -> bool:
        return (self.workdir / path).exists()

    # ---- targets ----

    def expand_targets(self, targets: Optional[Iterable[str]]) -> Tuple[List[str], List[Rule]]:
        """
        Split targets into file paths and output-less rules requested by name.
        Rule names without wildcards expand to their outputs.
        """
        targets = list(targets or [])
        if not targets:
            first = self.registry.first_rule
            if first is None:
                raise ConfigurationError(message="Workflow defines no rules")
            targets = [first.name]

        paths: List[str] = []
        aggregates: List[Rule] = []
        for t in targets:
            r = self.registry.get(t)
            if r is not None and not self._exists(t):
                if r.has_wildcards:
                    raise ConfigurationError(
                        message=f"Rule '{t}' has wildcards and cannot be a target; request one of its files instead",
                        details={"rule": t},
                    )
                if r.is_aggregate:
                    aggregates.append(r)
                else:
                    paths.extend(r.output_patterns)
                continue
            paths.append(t)
        return paths, aggregates

    # ---- build ----

    def build(
        self,
        targets: Optional[Iterable[str]] = None,
        resource_limits: Optional[Mapping[str, int]] = None,
    ) -> JobGraph:
        paths, aggregates = self.expand_targets(targets)
        state = _BuildState(JobGraph(paths + [r.name for r in aggregates]), requested=set(paths))

        for path in paths:
            idx = self._resolve(state, path, chain=[], consumer=None)
            if idx is not None:
                state.graph.target_jobs.add(idx)

        for r in aggregates:
            idx = self._add(state, self._instantiate(r, {}), chain=[r.name])
            state.graph.target_jobs.add(idx)

        if resource_limits is not None:
            from .resources import validate_resources

            validate_resources(state.graph, resource_limits)
        return state.graph

    def _resolve(
        self,
        state: "_BuildState",
        path: str,
        *,
        chain: List[str],
        consumer: Optional[Job],
    ) -> Optional[int]:
        if path in chain:
            raise CyclicDependencyError.from_chain(chain + [path])

        known = state.graph.producer_of(path)
        if known is not None:
            if known in state.active:
                raise CyclicDependencyError.from_chain(chain + [path])
            return known

        try:
            found: Optional[RuleMatch] = self.registry.lookup_by_output(path, self.workdir)
        except NoRuleError:
            if consumer is None:
                raise
            raise MissingInputError(
                message=f"Missing input file for rule '{consumer.rule.name}': {path}",
                details={**job_context(consumer), "path": path},
            )
        if found is None:
            return None

        job = self._instantiate(found.rule, found.wildcards)
        if not self._exists(path) or path in state.requested:
            return self._add(state, job, chain=chain + [path])

        # The file exists: pull in its producer so upstream changes
        # propagate, but treat it as a plain source file if the producer
        # cannot be resolved.
        mark = len(state.graph.jobs)
        memo_before = dict(state.memo)
        try:
            return self._add(state, job, chain=chain + [path])
        except (MissingInputError, NoRuleError):
            state.graph.truncate(mark)
            state.memo = memo_before
            state.active = {i for i in state.active if i < mark}
            return None

    def _add(self, state: "_BuildState", job: Job, *, chain: List[str]) -> int:
        if job.key in state.memo:
            known = state.memo[job.key]
            if known in state.active:
                raise CyclicDependencyError.from_chain(chain)
            return known

        idx = state.graph.add_job(job)
        state.memo[job.key] = idx
        state.active.add(idx)
        for path in job.input:
            if path in job.output:
                raise CyclicDependencyError.from_chain(chain + [path])
            p = self._resolve(state, path, chain=chain, consumer=job)
            if p is not None:
                state.graph.add_edge(p, idx)
        state.active.discard(idx)
        return idx

    # ---- instantiation ----

    def _instantiate(self, rule: Rule, bindings: Mapping[str, str]) -> Job:
        wildcards = Namespace(bindings)
        ctx = job_context_for(rule, wildcards)

        try:
            inputs: List[str] = []
            in_names: Dict[str, Tuple[int, int]] = {}
            for name, spec in rule.input:
                start = len(inputs)
                if callable(spec):
                    inputs.extend(_as_list(spec(wildcards)))
                else:
                    inputs.append(apply_wildcards(spec, wildcards))
                if name:
                    in_names[name] = (start, len(inputs))

            outputs: List[str] = []
            out_names: Dict[str, Tuple[int, int]] = {}
            for name, pattern in rule.output:
                if name:
                    out_names[name] = (len(outputs), len(outputs) + 1)
                outputs.append(apply_wildcards(pattern, wildcards))

            logs: List[str] = []
            log_names: Dict[str, Tuple[int, int]] = {}
            for name, pattern in rule.log:
                if name:
                    log_names[name] = (len(logs), len(logs) + 1)
                logs.append(apply_wildcards(pattern, wildcards))

            params = Namespace({k: _evaluate(v, wildcards) for k, v in rule.params.items()})
            threads = int(_evaluate(rule.threads, wildcards))
            resources = Namespace({k: int(_evaluate(v, wildcards)) for k, v in rule.resources.items()})
            benchmark = apply_wildcards(rule.benchmark, wildcards) if rule.benchmark else None
        except ConfigurationError as e:
            e.details.update(ctx)
            raise
        except Exception as e:
            raise ConfigurationError(
                message=f"Could not instantiate rule '{rule.name}': {e}",
                details=ctx,
            ) from e

        if threads < 0:
            raise ConfigurationError(message=f"Rule '{rule.name}' requests a negative thread count", details=ctx)

        return Job(
            rule=rule,
            wildcards=wildcards,
            input=Paths(inputs, in_names),
            output=Paths(outputs, out_names),
            params=params,
            log=Paths(logs, log_names),
            benchmark=benchmark,
            threads=threads,
            resources=resources,
            priority=rule.priority,
        )


def job_context_for(rule: Rule, wildcards: Mapping[str, str]) -> Dict[str, Any]:
    bound = ", ".join(f"{k}={v}" for k, v in wildcards.items())
    return {"rule": rule.name, "wildcards": bound or None}


def build_graph(
    registry: RuleRegistry,
    targets: Optional[Iterable[str]] = None,
    *,
    workdir: str | Path = ".",
    resource_limits: Optional[Mapping[str, int]] = None,
) -> JobGraph:
    return GraphBuilder(registry, workdir).build(targets, resource_limits=resource_limits)


class _BuildState:
    def __init__(self, graph: JobGraph, requested: Set[str]):
        self.graph = graph
        self.requested = requested
        self.memo: Dict[Tuple, int] = {}
        self.active: Set[int] = set()
