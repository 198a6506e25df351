# workflow.py
from __future__ import annotations

import runpy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .config import Settings
from .errors import WorkflowLoadError
from .executors import ClusterExecutor, LocalExecutor
from .graph import GraphBuilder, JobGraph
from .model import Rule
from .planner import Plan, plan
from .registry import RuleRegistry
from .scheduler import RunSummary, Scheduler
from .tracker import ArtifactTracker
from .ui.console import Console, get_console


# ----------------------------------------------------------------------
# Workflow loading (local rules file)
# ----------------------------------------------------------------------

@dataclass
class LoadedWorkflow:
    path: Path
    rules: List[Rule]
    ruleorder: List[Sequence[str]] = field(default_factory=list)
    config: Dict[str, Any] = field(default_factory=dict)


def _normalize_ruleorder(value: Any) -> List[Sequence[str]]:
    """Accept ["a", "b"] (one chain) or [["a", "b"], ["c", "d"]] (several)."""
    if not value:
        return []
    value = list(value)
    if all(isinstance(v, str) for v in value):
        return [value]
    return [list(v) for v in value]


def load_workflow(path: str | Path) -> LoadedWorkflow:
    """
    Load a workflow from a python file path.

    The file must define either:
      - workflow() -> List[Rule]
      - rules = [Rule, ...]   (RULES also accepted)

    and may define:
      - ruleorder = ["preferred", "fallback"]
      - config = {...}
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise WorkflowLoadError(message=f"Workflow file not found: {wf_path}", details={"path": str(wf_path)})
    if wf_path.suffix != ".py":
        raise WorkflowLoadError(message=f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"rulegraph_workflow_{wf_path.stem}"
    try:
        globals_dict = runpy.run_path(str(wf_path), run_name=module_name)
    except Exception as e:
        raise WorkflowLoadError(
            message=f"Error while loading {wf_path.name}: {type(e).__name__}: {e}",
            details={"path": str(wf_path)},
        ) from e

    rules = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        try:
            rules = globals_dict["workflow"]()
        except TypeError as e:
            if "positional argument" in str(e):
                raise WorkflowLoadError(
                    message=(
                        "Your workflow() is being called with arguments (name collision with the helper). "
                        "Use the 'wf' helper instead: `from rulegraph import wf, rule` then "
                        "`def workflow(): return wf(rule(...), rule(...))`"
                    ),
                ) from e
            raise
    elif "rules" in globals_dict:
        rules = globals_dict["rules"]
    elif "RULES" in globals_dict:
        rules = globals_dict["RULES"]

    if not isinstance(rules, list) or not all(isinstance(r, Rule) for r in rules):
        raise WorkflowLoadError(
            message=(
                "Workflow must return/define a List[Rule]. "
                "Define workflow() -> List[Rule] or rules = [rule(...), ...]."
            ),
            details={"path": str(wf_path)},
        )

    config = globals_dict.get("config") or {}
    if not isinstance(config, dict):
        raise WorkflowLoadError(message="config must be a dict", details={"path": str(wf_path)})

    return LoadedWorkflow(
        path=wf_path,
        rules=rules,
        ruleorder=_normalize_ruleorder(globals_dict.get("ruleorder")),
        config=dict(config),
    )


# ----------------------------------------------------------------------
# Facade
# ----------------------------------------------------------------------

class Workflow:
    """
    Registry + tracker + settings for one working directory.

        wf = Workflow(rules, workdir="project")
        summary = wf.run(["results/summary.txt"])
    """

    def __init__(
        self,
        rules: Iterable[Rule],
        *,
        workdir: str | Path = ".",
        settings: Optional[Settings] = None,
        config: Optional[Dict[str, Any]] = None,
        ruleorder: Iterable[Sequence[str]] = (),
        console: Optional[Console] = None,
    ):
        self.workdir = Path(workdir).resolve()
        self.settings = settings or Settings()
        self.config = dict(config or {})
        self.console = console or get_console()
        self.registry = RuleRegistry(rules)
        for chain in ruleorder:
            self.registry.ruleorder(*chain)
        self.tracker = ArtifactTracker(
            self.workdir,
            self.settings.state_dir,
            fingerprint_mode=self.settings.fingerprint,
        )
        self.scheduler: Optional[Scheduler] = None

    @classmethod
    def from_file(
        cls,
        path: str | Path,
        *,
        workdir: str | Path = ".",
        settings: Optional[Settings] = None,
        config_overrides: Optional[Dict[str, Any]] = None,
        console: Optional[Console] = None,
    ) -> "Workflow":
        loaded = load_workflow(path)
        config = dict(loaded.config)
        config.update(config_overrides or {})
        return cls(
            loaded.rules,
            workdir=workdir,
            settings=settings,
            config=config,
            ruleorder=loaded.ruleorder,
            console=console,
        )

    # ---- stages ----

    def build(self, targets: Optional[Iterable[str]] = None) -> JobGraph:
        return GraphBuilder(self.registry, self.workdir).build(
            targets,
            resource_limits=self.settings.resources or None,
        )

    def plan(
        self,
        graph: JobGraph,
        *,
        forceall: bool = False,
        forcerun: Iterable[str] = (),
    ) -> Plan:
        return plan(graph, self.tracker, forceall=forceall, forcerun=forcerun)

    def make_executor(self) -> LocalExecutor:
        s = self.settings
        kwargs = dict(
            config=self.config,
            use_singularity=s.use_singularity,
            singularity_args=s.singularity_args,
            printshellcmds=s.printshellcmds,
        )
        if s.cluster:
            return ClusterExecutor(s.cluster, self.workdir, script_dir=self.tracker.root / "jobscripts", **kwargs)
        return LocalExecutor(self.workdir, **kwargs)

    def execute(self, graph: JobGraph, the_plan: Plan) -> RunSummary:
        s = self.settings
        self.scheduler = Scheduler(
            self.make_executor(),
            self.tracker,
            console=self.console,
            kill_on_abort=s.kill_on_abort,
            latency_wait=s.latency_wait,
        )
        return self.scheduler.run(
            graph,
            the_plan,
            core_limit=s.cores,
            resource_limits=s.resources,
            keep_going=s.keep_going,
            max_workers=s.jobs,
        )

    def dry_run(self, the_plan: Plan) -> None:
        """Print the ordered list of jobs that would run, with reasons. No side effects."""
        if not len(the_plan):
            self.console.print_nothing_to_do()
            return
        self.console.print_header("Jobs to run")
        counts: Dict[str, int] = {}
        for planned in the_plan:
            self.console.print_plan_job(str(planned.job), planned.reason)
            counts[planned.job.rule.name] = counts.get(planned.job.rule.name, 0) + 1
        for i in the_plan.order:
            if not the_plan.needs_run(i):
                self.console.print_plan_job_skipped(str(the_plan.graph.jobs[i]), "up to date")
        self.console.print_plan_counts(counts)

    # ---- all in one ----

    def run(
        self,
        targets: Optional[Iterable[str]] = None,
        *,
        dry_run: bool = False,
        forceall: bool = False,
        forcerun: Iterable[str] = (),
    ) -> Optional[RunSummary]:
        graph = self.build(targets)
        the_plan = self.plan(graph, forceall=forceall, forcerun=forcerun)
        if dry_run:
            self.dry_run(the_plan)
            return None
        if not len(the_plan):
            self.console.print_nothing_to_do()
            return self.execute(graph, the_plan)
        self.console.print_run_started(
            workflow=", ".join(graph.targets) or "(default target)",
            job_count=len(the_plan),
            cores=self.settings.cores,
        )
        return self.execute(graph, the_plan)
