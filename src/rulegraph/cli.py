# cli.py
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional

import click

from rulegraph.config import load_settings, parse_config_overrides, parse_resources
from rulegraph.errors import ConfigurationError, ResourceError, WorkflowError
from rulegraph.ui.console import Console, get_console, set_console
from rulegraph.workflow import Workflow

EXIT_OK = 0
EXIT_GRAPH_ERROR = 2
EXIT_INTERRUPTED = 130


def find_workflow_files(directory: str | Path = ".") -> list[Path]:
    """
    Find all workflow files in a directory.

    Returns:
        List of Path objects for workflow files
    """
    workflow_files = []
    current_dir = Path(directory)

    # Look for rulegraph_workflow.py
    default_workflow = current_dir / "rulegraph_workflow.py"
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    # Look for other *_workflow.py files
    for path in current_dir.glob("*_workflow.py"):
        if path != default_workflow:
            workflow_files.append(path)

    return sorted(workflow_files)


def discover_workflow(workflow_arg: str | None, directory: str | Path = ".") -> Path:
    """
    Discover the rules file from argument or default.

    Raises:
        SystemExit: If no rules file can be found or several candidates exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.is_absolute() and not workflow_path.exists():
            workflow_path = Path(directory) / workflow_path
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Rules file not found",
                f"Could not find rules file: {workflow_arg}",
                suggestion="Create a rules file or specify a different path:\n  rulegraph run --rules my_workflow.py",
            )
            sys.exit(EXIT_GRAPH_ERROR)
        return workflow_path

    workflow_files = find_workflow_files(directory)

    if len(workflow_files) == 0:
        console.print_error(
            "No rules file found",
            "Could not find any rules files.",
            details=[
                "Looked for:",
                "  rulegraph_workflow.py",
                "  *_workflow.py",
            ],
            suggestion="Create a rules file:\n  rulegraph_workflow.py\n\nOr specify one explicitly:\n  rulegraph run --rules my_workflow.py",
        )
        sys.exit(EXIT_GRAPH_ERROR)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple rules files found",
            "Found multiple rules files. Please specify which one to use:",
            details=[file_list],
            suggestion="Specify one explicitly:\n  rulegraph run --rules rulegraph_workflow.py",
        )
        sys.exit(EXIT_GRAPH_ERROR)

    return workflow_files[0]


def _report(err: WorkflowError) -> None:
    console = get_console()
    lines = [f"{k}={v}" for k, v in err.details.items() if v is not None and k != "hint"]
    console.print_error(
        err.kind.replace("_", " ").capitalize(),
        err.message,
        details=lines or None,
        suggestion=err.details.get("hint"),
    )
    if console.debug:
        console.print_exception(err)


def _load(rules_file: Optional[str], directory: str, config_items: tuple, **overrides) -> Workflow:
    path = discover_workflow(rules_file, directory).resolve()
    # run= callables see paths relative to the working directory
    os.chdir(directory)
    settings = load_settings(".").merged(**overrides)
    return Workflow.from_file(
        path,
        workdir=".",
        settings=settings,
        config_overrides=parse_config_overrides(config_items),
        console=get_console(),
    )


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """rulegraph: file-based build graph scheduler."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


rules_option = click.option(
    "--rules",
    "rules_file",
    default=None,
    help="Rules file path (defaults to rulegraph_workflow.py if present)",
)
directory_option = click.option(
    "--directory",
    "-d",
    default=".",
    type=click.Path(exists=True, file_okay=False),
    help="Working directory; paths in rules are relative to it",
)
config_option = click.option("--config", "config_items", multiple=True, help="Override workflow config: key=value")


@cli.command()
@rules_option
@directory_option
@config_option
@click.option("--target", "-t", "targets", multiple=True, help="File or rule to build (repeatable)")
@click.argument("extra_targets", nargs=-1)
@click.option("--cores", "-c", default=None, help="Core limit: N or 'unlimited'")
@click.option("--resources", "resource_items", multiple=True, help="Named resource limit: name=qty (repeatable)")
@click.option("--dry-run", "-n", is_flag=True, default=False, help="Print the jobs that would run and why")
@click.option("--force-all", "-F", is_flag=True, default=False, help="Rerun every job in the graph")
@click.option("--forcerun", "-R", multiple=True, help="Rerun all jobs of a rule (repeatable)")
@click.option("--keep-going/--fail-fast", default=None, help="Continue independent jobs after a failure")
@click.option("--use-singularity", is_flag=True, default=False, help="Run rules with a container inside Singularity")
@click.option("--singularity-args", default=None, help="Extra arguments for singularity exec")
@click.option("--cluster", default=None, help="Blocking submission command, e.g. 'sbatch --wait -c {threads}'")
@click.option("--jobs", "-j", default=None, type=int, help="Maximum concurrently running jobs")
@click.option("--printshellcmds", "-p", is_flag=True, default=False, help="Print shell commands before running them")
@click.option("--latency-wait", default=None, type=float, help="Seconds to wait for outputs on slow filesystems")
@click.option("--kill-on-abort", is_flag=True, default=False, help="Kill running jobs on interrupt instead of waiting")
def run(
    rules_file,
    directory,
    config_items,
    targets,
    extra_targets,
    cores,
    resource_items,
    dry_run,
    force_all,
    forcerun,
    keep_going,
    use_singularity,
    singularity_args,
    cluster,
    jobs,
    printshellcmds,
    latency_wait,
    kill_on_abort,
):
    """Build the requested targets."""
    console = get_console()

    try:
        overrides = dict(
            keep_going=keep_going,
            use_singularity=use_singularity or None,
            singularity_args=singularity_args,
            cluster=cluster,
            jobs=jobs,
            printshellcmds=printshellcmds or None,
            latency_wait=latency_wait,
            kill_on_abort=kill_on_abort or None,
            cores=cores,
        )
        if resource_items:
            overrides["resources"] = parse_resources(resource_items)

        workflow = _load(rules_file, directory, config_items, **overrides)
        summary = workflow.run(
            list(targets) + list(extra_targets),
            dry_run=dry_run,
            forceall=force_all,
            forcerun=forcerun,
        )
    except (ConfigurationError, ResourceError) as e:
        _report(e)
        sys.exit(EXIT_GRAPH_ERROR)
    except KeyboardInterrupt:
        console.print_error("Interrupted", "Run interrupted by user.")
        sys.exit(EXIT_INTERRUPTED)

    if summary is None:
        sys.exit(EXIT_OK)

    if summary.executed or summary.errors or summary.interrupted:
        console.print_results(summary.results())
    sys.exit(summary.exit_code)


@cli.command()
@rules_option
@directory_option
def rules(rules_file, directory):
    """List rules with their outputs."""
    console = get_console()
    try:
        workflow = _load(rules_file, directory, ())
    except ConfigurationError as e:
        _report(e)
        sys.exit(EXIT_GRAPH_ERROR)

    for r in workflow.registry:
        outputs = ", ".join(r.output_patterns) or "(aggregate)"
        console.print_info(f"{r.name}: {outputs}")


@cli.command()
@rules_option
@directory_option
@config_option
@click.argument("targets", nargs=-1)
def dag(rules_file, directory, config_items, targets):
    """Print the job graph in Graphviz dot format."""
    console = get_console()
    try:
        workflow = _load(rules_file, directory, config_items)
        graph = workflow.build(list(targets))
        graph.topological_order()
    except (ConfigurationError, ResourceError) as e:
        _report(e)
        sys.exit(EXIT_GRAPH_ERROR)
    console.print_info(graph.to_dot())


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
