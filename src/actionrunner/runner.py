# runner.py
from __future__ import annotations

import runpy
from pathlib import Path
from typing import Mapping, Optional

from .dag import WorkflowGraph, build_graph
from .dsl import wf
from .errors import ValidationError
from .loader import load_yaml
from .model import JobSpec, RunResult, WorkflowDefinition
from .scheduler import CancellationToken, Scheduler
from .secrets import SecretStore
from .steps import ActionRegistry, EnvironmentContext, StepRunner, default_registry
from .ui.console import Console

YAML_SUFFIXES = (".yml", ".yaml")


# ----------------------------------------------------------------------
# Workflow loading (local file/module)
# ----------------------------------------------------------------------

def _load_python_workflow(wf_path: Path) -> WorkflowDefinition:
    module_name = f"actionrunner_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    found = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        try:
            found = globals_dict["workflow"]()
        except TypeError as e:
            if "positional argument" in str(e):
                raise TypeError(
                    "Your workflow() is being called with arguments (name collision with the helper). "
                    "Use the 'wf' helper instead: `from actionrunner import wf, job, sh` then "
                    "`def workflow(): return wf(job(...), job(...))`"
                ) from e
            raise
    elif "WORKFLOW" in globals_dict:
        found = globals_dict["WORKFLOW"]
    elif "JOBS" in globals_dict:
        found = globals_dict["JOBS"]

    if isinstance(found, WorkflowDefinition):
        return found
    if isinstance(found, list) and all(isinstance(j, JobSpec) for j in found):
        return wf(*found, name=wf_path.stem)

    raise TypeError(
        "Workflow must return/define a WorkflowDefinition or a List[JobSpec]. "
        "Define workflow() -> wf(...), WORKFLOW = wf(...) or JOBS = [job(...), ...]."
    )


def load_workflow(path: str | Path) -> WorkflowDefinition:
    """
    Load a workflow from a YAML file or a python file.

    A python file must define either:
      - workflow() -> WorkflowDefinition | List[JobSpec]
      - WORKFLOW = wf(...)
      - JOBS = [job(...), ...]
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix in YAML_SUFFIXES:
        return load_yaml(wf_path)
    if wf_path.suffix != ".py":
        raise ValidationError(f"Workflow must be a .py, .yml or .yaml file, got: {wf_path.name}")
    return _load_python_workflow(wf_path)


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_graph(
    graph: WorkflowGraph,
    context: EnvironmentContext,
    *,
    max_workers: Optional[int] = None,
    fail_fast: bool = False,
    token: Optional[CancellationToken] = None,
    console: Optional[Console] = None,
) -> RunResult:
    scheduler = Scheduler(
        StepRunner(context),
        max_concurrency=max_workers,
        fail_fast=fail_fast,
        token=token,
        console=console,
        redact=context.secrets.redactor.redact,
    )
    return scheduler.run(graph)


def run_workflow(
    definition: WorkflowDefinition,
    *,
    secrets: Optional[SecretStore] = None,
    scope: str = "local",
    workspace: str | Path = ".",
    env: Optional[Mapping[str, str]] = None,
    registry: Optional[ActionRegistry] = None,
    max_workers: Optional[int] = None,
    fail_fast: bool = False,
    inherit_os_env: bool = True,
    token: Optional[CancellationToken] = None,
    console: Optional[Console] = None,
) -> RunResult:
    """
    Validate and run a workflow.

    Validation errors (cycles, unknown needs, bad matrices) raise before any
    job starts. Execution failures never raise: they are reported per job
    instance in the returned RunResult.
    """
    graph = build_graph(definition)
    secrets = secrets if secrets is not None else SecretStore()
    context = EnvironmentContext(
        scope=scope,
        secrets=secrets,
        workspace=Path(workspace).resolve(),
        env=dict(env or {}),
        registry=registry if registry is not None else default_registry(),
        inherit_os_env=inherit_os_env,
        console=console,
    )
    return run_graph(
        graph,
        context,
        max_workers=max_workers,
        fail_fast=fail_fast,
        token=token,
        console=console,
    )
