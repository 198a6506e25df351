# containers.py
from __future__ import annotations

import shlex
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional

from .errors import ExecutionError
from .model import Job

TOOL_HINTS = {
    "singularity": "Install Singularity/Apptainer or fix PATH, or run without --use-singularity.",
    "apptainer": "Install Apptainer or fix PATH, or run without --use-singularity.",
}


# ---------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------

def container_tool() -> Optional[str]:
    """Prefer `singularity`, fall back to its successor `apptainer`."""
    for tool in ("singularity", "apptainer"):
        if shutil.which(tool):
            return tool
    return None


def check_container_tool(tool: Optional[str] = None) -> str:
    """Check a container runtime is available, raise helpful error if not."""
    tool = tool or container_tool()
    if tool is None:
        raise ExecutionError(
            message="Singularity is not available",
            kind="singularity_unavailable",
            details={"hint": TOOL_HINTS["singularity"]},
        )
    try:
        subprocess.run([tool, "--version"], capture_output=True, check=True)
    except (subprocess.CalledProcessError, FileNotFoundError):
        raise ExecutionError(
            message=f"{tool} is installed but not working",
            kind="singularity_unavailable",
            details={"hint": TOOL_HINTS.get(tool)},
        )
    return tool


# ---------------------------------------------------------------------
# Command wrapping
# ---------------------------------------------------------------------

def container_command(
    job: Job,
    cmd: str,
    *,
    workdir: Path,
    args: str = "",
    tool: str = "singularity",
) -> str:
    """
    Wrap a shell command so it runs inside the rule's container image:

        singularity exec --home <workdir> [args] <image> bash -c '<cmd>'

    Images may be local .sif files or URIs (docker://, library://, shub://).
    """
    image = job.rule.container
    if not image:
        return cmd
    parts: List[str] = [tool, "exec", "--home", shlex.quote(str(workdir))]
    if args:
        parts.append(args)
    parts.extend([shlex.quote(image), "bash", "-c", shlex.quote(cmd)])
    return " ".join(parts)
