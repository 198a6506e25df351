from .dsl import expand, protected, rule, temp, wf
from .errors import (
    AmbiguousRuleError,
    ConfigurationError,
    CyclicDependencyError,
    ExecutionError,
    MissingInputError,
    NoRuleError,
    ProtectedOutputError,
    ResourceError,
    WorkflowError,
)
from .graph import GraphBuilder, JobGraph, build_graph
from .model import Job, Rule
from .planner import Plan, plan
from .registry import RuleRegistry
from .scheduler import JobState, RunSummary, Scheduler
from .tracker import ArtifactRecord, ArtifactTracker
from .workflow import Workflow, load_workflow

__all__ = [
    "rule", "temp", "protected", "expand", "wf",
    "Rule", "Job", "RuleRegistry", "GraphBuilder", "JobGraph", "build_graph",
    "Plan", "plan", "Scheduler", "JobState", "RunSummary",
    "ArtifactTracker", "ArtifactRecord", "Workflow", "load_workflow",
    "WorkflowError", "ConfigurationError", "AmbiguousRuleError", "NoRuleError",
    "CyclicDependencyError", "MissingInputError", "ResourceError",
    "ProtectedOutputError", "ExecutionError",
]
