# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


# ---------------------------------------------------------------------
# Base error
# ---------------------------------------------------------------------

@dataclass
class WorkflowError(Exception):
    """
    Structured workflow error with enough context for:
      - clean CLI output
      - per-job failure reports in the run summary
      - debugging without full tracebacks
    """
    message: str
    kind: str = "workflow_error"
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        for k, v in self.details.items():
            if v is None:
                continue
            lines.append(f"{k}={v}")
        return "\n".join(lines)


# ---------------------------------------------------------------------
# Structural errors (detected before any job runs)
# ---------------------------------------------------------------------

@dataclass
class ConfigurationError(WorkflowError):
    kind: str = "configuration_error"


@dataclass
class DuplicateRuleError(ConfigurationError):
    kind: str = "duplicate_rule"


@dataclass
class AmbiguousRuleError(ConfigurationError):
    kind: str = "ambiguous_rule"


@dataclass
class NoRuleError(ConfigurationError):
    kind: str = "no_rule"


@dataclass
class CyclicDependencyError(ConfigurationError):
    kind: str = "cyclic_dependency"

    @classmethod
    def from_chain(cls, chain: List[str]) -> "CyclicDependencyError":
        return cls(
            message="Cyclic dependency: " + " -> ".join(chain),
            details={"chain": list(chain)},
        )


@dataclass
class WildcardError(ConfigurationError):
    kind: str = "wildcard_error"


@dataclass
class MissingInputError(ConfigurationError):
    kind: str = "missing_input"


@dataclass
class WorkflowLoadError(ConfigurationError):
    kind: str = "workflow_load_error"


@dataclass
class ResourceError(WorkflowError):
    """A job requests more of a named resource than the pool will ever hold."""
    kind: str = "resource_error"


# ---------------------------------------------------------------------
# Runtime (per-job) errors
# ---------------------------------------------------------------------

@dataclass
class ProtectedOutputError(WorkflowError):
    kind: str = "protected_output"


@dataclass
class ExecutionError(WorkflowError):
    kind: str = "execution_error"
    exit_code: Optional[int] = None
    cmd: Optional[str] = None

    def __str__(self) -> str:
        text = super().__str__()
        if self.exit_code is not None:
            text += f"\nexit_code={self.exit_code}"
        if self.cmd:
            text += f"\ncmd={self.cmd}"
        return text


def job_context(job) -> Dict[str, Any]:
    """Standard details block naming the rule and wildcard bindings of a job."""
    wildcards = ", ".join(f"{k}={v}" for k, v in job.wildcards.items())
    return {"rule": job.rule.name, "wildcards": wildcards or None}
