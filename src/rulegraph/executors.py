# executors.py
from __future__ import annotations

import os
import shlex
import subprocess
import tempfile
import threading
import time
from contextlib import ExitStack
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .containers import check_container_tool, container_command
from .errors import ExecutionError, WorkflowError, job_context
from .formatting import format_command
from .model import Job
from .ui.console import get_console


# ----------------------------------------------------------------------
# Command output
# ----------------------------------------------------------------------

OUTPUT_TAIL_BYTES = 4000


def _output_tail(handle) -> str:
    """Last OUTPUT_TAIL_BYTES of a binary file handle, decoded leniently."""
    handle.seek(0, os.SEEK_END)
    size = handle.tell()
    handle.seek(max(0, size - OUTPUT_TAIL_BYTES))
    return handle.read().decode("utf-8", errors="replace").strip()


# ----------------------------------------------------------------------
# Benchmarks
# ----------------------------------------------------------------------

def write_benchmark(path: Path, seconds: float) -> None:
    """Snakemake-style benchmark TSV: wall clock seconds and h:m:s."""
    path.parent.mkdir(parents=True, exist_ok=True)
    h, rem = divmod(int(seconds), 3600)
    m, s = divmod(rem, 60)
    path.write_text(f"s\th:m:s\n{seconds:.4f}\t{h}:{m:02d}:{s:02d}\n", encoding="utf-8")


# ----------------------------------------------------------------------
# Local execution
# ----------------------------------------------------------------------

class LocalExecutor:
    """
    Runs job actions on this machine.

      - shell rules: subprocess in the working directory (optionally inside
        the rule's Singularity container)
      - run rules: the Python callable, in-process, with the Job as argument

    Running subprocesses are tracked so an abort can kill them.
    """

    def __init__(
        self,
        workdir: str | Path = ".",
        *,
        config: Optional[Mapping[str, Any]] = None,
        use_singularity: bool = False,
        singularity_args: str = "",
        printshellcmds: bool = False,
        env: Optional[Dict[str, str]] = None,
    ):
        self.workdir = Path(workdir).resolve()
        self.config = dict(config or {})
        self.use_singularity = use_singularity
        self.singularity_args = singularity_args
        self.printshellcmds = printshellcmds
        self.env = dict(env or {})
        self._procs: Dict[int, subprocess.Popen] = {}
        self._lock = threading.Lock()
        self._container_tool: Optional[str] = None

    # ---- public ----

    def run(self, job: Job) -> None:
        start = time.time()
        if job.rule.shell is not None:
            self._run_shell_rule(job)
        elif job.rule.run is not None:
            self._run_callable(job)
        if job.benchmark:
            write_benchmark(self.workdir / job.benchmark, time.time() - start)

    def kill_all(self) -> None:
        with self._lock:
            procs = list(self._procs.values())
        for proc in procs:
            if proc.poll() is None:
                proc.kill()

    # ---- shell ----

    def render(self, job: Job) -> str:
        cmd = format_command(job.rule.shell or "", job, self.config)
        if self.use_singularity and job.rule.container:
            if self._container_tool is None:
                self._container_tool = check_container_tool()
            cmd = container_command(
                job,
                cmd,
                workdir=self.workdir,
                args=self.singularity_args,
                tool=self._container_tool,
            )
        return cmd

    def _run_shell_rule(self, job: Job) -> None:
        cmd = self.render(job)
        if self.printshellcmds:
            get_console().print_shellcmd(cmd)
        self._run_command(job, cmd)

    def _run_command(self, job: Job, cmd: str) -> None:
        env = os.environ.copy()
        env.update(self.env)
        env["RULEGRAPH_JOBID"] = str(job.index)

        with ExitStack() as stack:
            if job.log:
                log_path = self.workdir / job.log[0]
                log_path.parent.mkdir(parents=True, exist_ok=True)
                sink = stack.enter_context(log_path.open("wb"))
            else:
                # only the tail is reported, so spill to disk instead of memory
                sink = stack.enter_context(tempfile.TemporaryFile())

            try:
                proc = subprocess.Popen(
                    cmd,
                    shell=True,
                    cwd=str(self.workdir),
                    env=env,
                    stdout=sink,
                    stderr=subprocess.STDOUT,
                )
            except OSError as e:
                raise ExecutionError(
                    message=f"Could not start command for {job}: {e}",
                    details=job_context(job),
                    cmd=cmd,
                )

            with self._lock:
                self._procs[job.index] = proc
            try:
                proc.wait()
            finally:
                with self._lock:
                    self._procs.pop(job.index, None)

            if proc.returncode != 0:
                details = job_context(job)
                tail = _output_tail(sink) if not job.log else ""
                if tail:
                    details["output"] = tail
                if job.log:
                    details["log"] = job.log[0]
                raise ExecutionError(
                    message=f"Command failed for {job}",
                    details=details,
                    exit_code=proc.returncode,
                    cmd=cmd,
                )

    # ---- run callables ----

    def _run_callable(self, job: Job) -> None:
        try:
            job.rule.run(job)
        except WorkflowError:
            raise
        except Exception as e:
            raise ExecutionError(
                message=f"Error in run block of {job}: {type(e).__name__}: {e}",
                details=job_context(job),
            ) from e


# ----------------------------------------------------------------------
# Cluster submission
# ----------------------------------------------------------------------

JOBSCRIPT = """#!/bin/sh
# rulegraph job {jobid}: {job}
set -e
cd {workdir}
{cmd}
"""


class ClusterExecutor(LocalExecutor):
    """
    Submits shell jobs through a blocking submission command, e.g.

        --cluster "sbatch --wait -c {threads} --mem={resources.mem_mb}"
        --cluster "qsub -sync y -pe smp {threads}"

    The template is formatted with the job's names and the path of a
    generated job script is appended. The exit status of the submission
    command is the job status. `run=` rules have no shell command to ship
    and execute locally.
    """

    def __init__(self, submit_cmd: str, workdir: str | Path = ".", *, script_dir: str | Path | None = None, **kwargs):
        super().__init__(workdir, **kwargs)
        self.submit_cmd = submit_cmd
        self.script_dir = Path(script_dir) if script_dir else self.workdir / ".rulegraph" / "jobscripts"

    def write_jobscript(self, job: Job, cmd: str) -> Path:
        self.script_dir.mkdir(parents=True, exist_ok=True)
        script = self.script_dir / f"rulegraph.{job.rule.name}.{job.index}.sh"
        script.write_text(
            JOBSCRIPT.format(jobid=job.index, job=job, workdir=shlex.quote(str(self.workdir)), cmd=cmd),
            encoding="utf-8",
        )
        script.chmod(0o755)
        return script

    def _run_shell_rule(self, job: Job) -> None:
        cmd = self.render(job)
        script = self.write_jobscript(job, cmd)
        submit = f"{format_command(self.submit_cmd, job, self.config)} {script}"
        if self.printshellcmds:
            get_console().print_shellcmd(cmd)
        get_console().print_debug(f"submitting {job}: {submit}")
        try:
            self._run_command(job, submit)
        finally:
            script.unlink(missing_ok=True)
