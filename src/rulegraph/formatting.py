# formatting.py
from __future__ import annotations

import string
from typing import Any, Dict, Mapping, Optional

from .errors import ExecutionError, job_context
from .model import Job, Namespace


def job_namespace(job: Job, config: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Names available to shell commands and submission templates."""
    return {
        "input": job.input,
        "output": job.output,
        "params": job.params,
        "wildcards": job.wildcards,
        "threads": job.threads,
        "resources": job.resources,
        "log": job.log,
        "benchmark": job.benchmark or "",
        "rule": job.rule.name,
        "jobid": job.index,
        "config": Namespace(config or {}),
    }


def format_command(template: str, job: Job, config: Optional[Mapping[str, Any]] = None, **extra: Any) -> str:
    """
    Render "{input}", "{output[0]}", "{params.k}", "{wildcards.sample}", ...

    Lists render space separated; "{{" and "}}" give literal braces.
    """
    ns = job_namespace(job, config)
    ns.update(extra)
    try:
        return string.Formatter().vformat(template, (), ns)
    except (KeyError, AttributeError, IndexError, ValueError) as e:
        raise ExecutionError(
            message=f"Could not format command for {job}: {type(e).__name__}: {e}",
            kind="format_error",
            details={**job_context(job), "template": template},
        )
