# src/actionrunner/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .errors import DuplicateJob
from .expressions import secret_expr
from .model import EventKind, JobSpec, MatrixSpec, StepSpec, WorkflowDefinition

Secrets = Union[Iterable[str], Mapping[str, str], None]


def _with_secrets(env: Optional[Dict[str, str]], secrets: Secrets) -> Dict[str, str]:
    """
    secrets=["API_TOKEN"]            -> env API_TOKEN from secret API_TOKEN
    secrets={"TOKEN": "API_TOKEN"}   -> env TOKEN from secret API_TOKEN
    """
    out = dict(env or {})
    if secrets is None:
        return out
    pairs = secrets.items() if isinstance(secrets, Mapping) else ((s, s) for s in secrets)
    for env_name, secret_name in pairs:
        out[env_name] = secret_expr(secret_name)
    return out


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    secrets: Secrets = None,
    continue_on_error: bool = False,
    timeout_minutes: Optional[float] = None,
) -> StepSpec:
    """Create a shell step."""
    return StepSpec(
        name=name,
        run=cmd,
        env=_with_secrets(env, secrets),
        working_directory=cwd,
        continue_on_error=continue_on_error,
        timeout_minutes=timeout_minutes,
    )


def uses(
    ref: str,
    name: str | None = None,
    *,
    with_: Optional[Dict[str, Any]] = None,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    secrets: Secrets = None,
    continue_on_error: bool = False,
) -> StepSpec:
    """Create a step that invokes a registered action, e.g. uses("echo@v1", with_={"message": "hi"})."""
    return StepSpec(
        name=name or ref,
        uses=ref,
        with_={k: str(v) for k, v in (with_ or {}).items()},
        env=_with_secrets(env, secrets),
        working_directory=cwd,
        continue_on_error=continue_on_error,
    )


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: StepSpec,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[StepSpec]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
    runs_on: str = "self-hosted",
    matrix: Optional[MatrixSpec] = None,
    max_parallel: Optional[int] = None,
    cwd: str | None = None,  # default working directory for steps missing one
) -> JobSpec:
    steps_final: List[StepSpec] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if cwd is not None:
        steps_final = [
            s if s.working_directory is not None else replace(s, working_directory=cwd)
            for s in steps_final
        ]

    return JobSpec(
        name=name,
        steps=tuple(steps_final),
        runs_on=runs_on,
        needs=tuple(needs or ()),
        matrix=matrix,
        env={k: str(v) for k, v in (env or {}).items()},
        max_parallel=max_parallel,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[StepSpec] = []
        self._env: dict[str, str] = {}
        self._runs_on = "self-hosted"
        self._matrix: Optional[MatrixSpec] = None
        self._max_parallel: Optional[int] = None

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def runs_on(self, label: str):
        self._runs_on = label
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None, **kwargs):
        self._steps.append(sh(name, run, cwd=cwd, **kwargs))
        return self

    step = define_step

    def use(self, ref: str, name: str | None = None, **kwargs):
        self._steps.append(uses(ref, name, **kwargs))
        return self

    def with_env(self, **env):
        # force values to str for env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def with_matrix(self, exclude=None, include=None, **axes):
        self._matrix = matrix(exclude=exclude, include=include, **axes)
        return self

    def max_parallel(self, n: int):
        self._max_parallel = n
        return self

    def build(self) -> JobSpec:
        return JobSpec(
            name=self.name,
            steps=tuple(self._steps),
            runs_on=self._runs_on,
            needs=tuple(self._needs),
            matrix=self._matrix,
            env=dict(self._env),
            max_parallel=self._max_parallel,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

def matrix(
    exclude: Optional[List[Mapping[str, Any]]] = None,
    include: Optional[List[Mapping[str, Any]]] = None,
    **axes: Iterable[Any],
) -> MatrixSpec:
    """
    Matrix strategy for a job.

    Example:
        job("test", sh("pytest", "pytest -q"),
            matrix=matrix(python=["3.11", "3.12"], os=["linux", "mac"],
                          exclude=[{"python": "3.11", "os": "mac"}]))
    """
    return MatrixSpec.from_mapping(
        {k: list(v) for k, v in axes.items()},
        exclude=exclude,
        include=include,
    )


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(
    *jobs: JobSpec,
    on: Iterable[str] = ("push",),
    name: str = "workflow",
    env: Optional[Dict[str, str]] = None,
) -> WorkflowDefinition:
    """
    Workflow definition helper. Use this name so you can define your own
    def workflow(): return wf(job(...), job(...)).

        from actionrunner import wf, job, sh

        def workflow():
            return wf(
                job("build", sh("Build", "make")),
                job("deploy", sh("Deploy", "make deploy", secrets=["DEPLOY_KEY"]), needs=["build"]),
            )
    """
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        raise DuplicateJob(sorted({n for n in names if names.count(n) > 1}))
    return WorkflowDefinition(
        jobs={j.name: j for j in jobs},
        triggers=frozenset(EventKind.parse(e) for e in on),
        name=name,
        env={k: str(v) for k, v in (env or {}).items()},
    )


workflow = wf  # alias (avoid naming your function workflow if you use it)
