# cli.py
from __future__ import annotations

import json
import signal
import subprocess
import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from actionrunner import settings
from actionrunner.dag import build_graph
from actionrunner.errors import SchedulerInternalError, SecretError, ValidationError
from actionrunner.git_facts.git import head_sha, repository_scope
from actionrunner.model import RunStatus, WorkflowDefinition
from actionrunner.runner import load_workflow, run_workflow
from actionrunner.scheduler import CancellationToken
from actionrunner.secrets import SecretStore, load_secrets_file
from actionrunner.ui.console import Console, get_console, set_console

DEFAULT_WORKFLOW = "actionrunner_workflow.py"
WORKFLOW_GLOBS = ("*_workflow.py", "*_workflow.yml", "*_workflow.yaml")


def find_workflow_files() -> list[Path]:
    """
    Find all workflow files in the current directory.

    Returns:
        List of Path objects for workflow files
    """
    workflow_files = []
    current_dir = Path(".")

    default_workflow = current_dir / DEFAULT_WORKFLOW
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    for pattern in WORKFLOW_GLOBS:
        for path in current_dir.glob(pattern):
            if path != default_workflow:
                workflow_files.append(path)

    return sorted(workflow_files)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and not workflow_path.suffix:
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  actionrunner run --workflow ci.yml",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", f"  {DEFAULT_WORKFLOW}", *(f"  {g}" for g in WORKFLOW_GLOBS)],
            suggestion="Specify a workflow explicitly:\n  actionrunner run --workflow ci.yml",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion=f"Specify a workflow explicitly:\n  actionrunner run --workflow {workflow_files[0]}",
        )
        sys.exit(1)

    return workflow_files[0]


def _load_or_exit(ctx, workflow: str | None) -> Tuple[Path, WorkflowDefinition]:
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        return workflow_path, load_workflow(workflow_path)
    except Exception as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=[str(e)],
        )
        if ctx.obj.get("debug", False):
            import traceback
            traceback.print_exc()
        sys.exit(1)


def _build_secret_store(secret: Tuple[str, ...], secrets_file: Optional[str], scope: str) -> SecretStore:
    store = SecretStore(mask=settings.REDACTION_MASK)
    if secrets_file:
        load_secrets_file(secrets_file, store)
    for item in secret:
        name, sep, value = item.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"expected NAME=VALUE, got {name or item!r}", param_hint="--secret")
        # --secret wins over the secrets file
        if (name, scope) in store:
            store.revoke(name, scope)
        store.put(name, value, scope)
    return store


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--quiet", is_flag=True, default=False, help="Only print errors and the final results")
@click.pass_context
def cli(ctx, debug, quiet):
    """actionrunner: self-hosted runner for GitHub-Actions-style workflows."""
    console = Console(debug=debug, quiet=quiet)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.pass_context
def validate(ctx, workflow):
    """Check a workflow for cycles, unknown needs and bad matrices."""
    console = get_console()
    workflow_path, definition = _load_or_exit(ctx, workflow)
    try:
        graph = build_graph(definition)
    except ValidationError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(1)
    console.print_info(f"{workflow_path.name}: OK ({len(definition.jobs)} jobs, {len(graph)} instances)")


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.pass_context
def plan(ctx, workflow):
    """Print the job instances stage by stage, without running anything."""
    console = get_console()
    _path, definition = _load_or_exit(ctx, workflow)
    try:
        graph = build_graph(definition)
    except ValidationError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(1)
    console.print_header(f"Plan: {definition.name}")
    for idx, level in enumerate(graph.levels(), start=1):
        console.print_plan_stage(idx, [str(i.key) for i in level])


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.option("--workers", default=settings.MAX_CONCURRENCY, type=click.IntRange(min=1), help="Maximum concurrent jobs")
@click.option("--scope", default=settings.REPOSITORY_SCOPE, help="Repository scope for secrets (defaults to git origin)")
@click.option("--secret", multiple=True, help="Secret as NAME=VALUE (repeatable, overrides --secrets-file)")
@click.option("--secrets-file", default=settings.SECRETS_FILE, help="JSON secrets file")
@click.option("--event", default="push", show_default=True, help="Triggering event")
@click.option("--workspace", default=settings.WORKSPACE, show_default=True, help="Directory steps run in")
@click.option("--fail-fast/--no-fail-fast", default=False, help="Stop scheduling new jobs after first failure")
@click.option("--json-output", default=None, type=click.Path(dir_okay=False), help="Write the run result as JSON")
@click.pass_context
def run(ctx, workflow, workers, scope, secret, secrets_file, event, workspace, fail_fast, json_output):
    """Run a workflow."""
    console = get_console()
    workflow_path, definition = _load_or_exit(ctx, workflow)

    try:
        if not definition.triggered_by(event):
            triggers = sorted(e.value for e in definition.triggers)
            console.print_info(f"{workflow_path.name} is not triggered by '{event}' (on: {triggers}); nothing to do.")
            return
    except ValidationError as e:
        console.print_error("Unknown event", str(e))
        sys.exit(1)

    scope = scope or repository_scope(workspace)
    try:
        store = _build_secret_store(secret, secrets_file, scope)
    except SecretError as e:
        console.print_error("Could not load secrets", str(e))
        sys.exit(1)

    env = {"ACTIONRUNNER_EVENT": event, "ACTIONRUNNER_REPOSITORY": scope}
    try:
        env["ACTIONRUNNER_SHA"] = head_sha(workspace)
    except (subprocess.CalledProcessError, FileNotFoundError):
        console.print_debug("not a git checkout; ACTIONRUNNER_SHA unset")

    token = CancellationToken()

    def _on_sigint(signum, frame):
        console.print_info("\nCancelling: running jobs will finish, nothing new starts...")
        token.cancel()

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        console.print_run_started(
            repository=scope,
            workflow=workflow_path.name,
            job_count=len(definition.jobs),
        )
        result = run_workflow(
            definition,
            secrets=store,
            scope=scope,
            workspace=workspace,
            env=env,
            max_workers=workers,
            fail_fast=fail_fast,
            token=token,
            console=console,
        )
    except ValidationError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(1)
    except SchedulerInternalError as e:
        console.print_exception(e)
        if e.result is not None:
            console.print_results(e.result)
        sys.exit(1)
    finally:
        signal.signal(signal.SIGINT, previous)

    console.print_results(result)

    if json_output:
        Path(json_output).write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")

    if result.status == RunStatus.CANCELLED:
        sys.exit(130)
    if result.status == RunStatus.FAILURE:
        sys.exit(1)


if __name__ == "__main__":
    cli()
