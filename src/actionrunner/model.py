# model.py
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

from . import expressions
from .errors import InvalidMatrix, ValidationError

MatrixValue = Union[str, int, float, bool]
MatrixBinding = Dict[str, MatrixValue]


# ----------------------------------------------------------------------
# Triggers
# ----------------------------------------------------------------------

class EventKind(str, enum.Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"
    PULL_REQUEST_TARGET = "pull_request_target"
    WORKFLOW_DISPATCH = "workflow_dispatch"
    WORKFLOW_CALL = "workflow_call"
    WORKFLOW_RUN = "workflow_run"
    SCHEDULE = "schedule"
    RELEASE = "release"
    REPOSITORY_DISPATCH = "repository_dispatch"
    MERGE_GROUP = "merge_group"
    ISSUES = "issues"
    ISSUE_COMMENT = "issue_comment"
    CREATE = "create"
    DELETE = "delete"

    @classmethod
    def parse(cls, value: str) -> "EventKind":
        try:
            return cls(value)
        except ValueError:
            known = ", ".join(e.value for e in cls)
            raise ValidationError(f"Unknown trigger event {value!r}. Known events: {known}") from None


# ----------------------------------------------------------------------
# Secrets
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Secret:
    """A named sensitive value bound to one repository scope."""
    name: str
    value: bytes = field(repr=False)
    scope: str


# ----------------------------------------------------------------------
# Matrix
# ----------------------------------------------------------------------

def check_matrix_value(axis: str, value: Any) -> MatrixValue:
    """Only plain scalars are accepted; nothing is coerced."""
    if isinstance(value, (bool, int, float, str)):
        return value
    raise InvalidMatrix(
        f"Matrix axis '{axis}' has a value of unsupported type "
        f"{type(value).__name__}: {value!r} (expected string, number or boolean)"
    )


def _check_partial(kind: str, entry: Any) -> MatrixBinding:
    if not isinstance(entry, Mapping) or not entry:
        raise InvalidMatrix(f"Matrix {kind} entries must be non-empty mappings, got {entry!r}")
    return {str(k): check_matrix_value(str(k), v) for k, v in entry.items()}


@dataclass(frozen=True)
class MatrixSpec:
    """
    Named axes of values plus optional exclude/include entries.

    Axis order is declaration order and decides expansion order.
    """
    axes: Tuple[Tuple[str, Tuple[MatrixValue, ...]], ...] = ()
    exclude: Tuple[Tuple[Tuple[str, MatrixValue], ...], ...] = ()
    include: Tuple[Tuple[Tuple[str, MatrixValue], ...], ...] = ()

    @classmethod
    def from_mapping(
        cls,
        axes: Mapping[str, Any],
        *,
        exclude: Optional[List[Mapping[str, Any]]] = None,
        include: Optional[List[Mapping[str, Any]]] = None,
    ) -> "MatrixSpec":
        checked = []
        for axis, values in axes.items():
            axis = str(axis)
            if isinstance(values, (str, bytes)) or not isinstance(values, (list, tuple)):
                raise InvalidMatrix(f"Matrix axis '{axis}' must be a list of values, got {values!r}")
            seen: List[MatrixValue] = []
            for v in values:
                v = check_matrix_value(axis, v)
                # 1 == True == 1.0 in Python: equal values would collide as identities
                if v in seen:
                    raise InvalidMatrix(f"Matrix axis '{axis}' repeats the value {v!r}")
                seen.append(v)
            checked.append((axis, tuple(seen)))

        ex = tuple(tuple(_check_partial("exclude", e).items()) for e in (exclude or []))
        inc = tuple(tuple(_check_partial("include", e).items()) for e in (include or []))
        return cls(axes=tuple(checked), exclude=ex, include=inc)

    @property
    def axis_names(self) -> List[str]:
        return [name for name, _ in self.axes]

    def __bool__(self) -> bool:
        return bool(self.axes or self.include)


# ----------------------------------------------------------------------
# Steps and jobs
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class StepSpec:
    """A single step inside a job: either a shell command or an action."""
    name: str
    run: Optional[str] = None
    uses: Optional[str] = None
    with_: Mapping[str, str] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)
    continue_on_error: bool = False
    working_directory: Optional[str] = None
    timeout_minutes: Optional[float] = None

    def __post_init__(self) -> None:
        if (self.run is None) == (self.uses is None):
            raise ValidationError(f"Step '{self.name}' must set exactly one of 'run' or 'uses'")

    @property
    def secret_refs(self) -> FrozenSet[str]:
        """Names of the secrets this step needs, from env, with and run."""
        values = [self.run, *self.env.values(), *self.with_.values()]
        return frozenset(expressions.refs_in(values, "secrets"))

    @property
    def action(self):
        # local import: steps imports model
        from .steps import InvokeAction, RunCommand

        if self.run is not None:
            return RunCommand(self.run)
        return InvokeAction(self.uses, dict(self.with_))

    def bind_matrix(self, binding: Mapping[str, MatrixValue]) -> "StepSpec":
        def r(text):
            return expressions.render(text, "matrix", binding)

        return StepSpec(
            name=r(self.name),
            run=r(self.run),
            uses=r(self.uses),
            with_={k: r(v) for k, v in self.with_.items()},
            env={k: r(v) for k, v in self.env.items()},
            continue_on_error=self.continue_on_error,
            working_directory=r(self.working_directory),
            timeout_minutes=self.timeout_minutes,
        )


@dataclass(frozen=True)
class JobSpec:
    """A CI job: steps + dependencies + optional matrix strategy."""
    name: str
    steps: Tuple[StepSpec, ...]
    runs_on: str = "self-hosted"
    needs: Tuple[str, ...] = ()
    matrix: Optional[MatrixSpec] = None
    env: Mapping[str, str] = field(default_factory=dict)
    max_parallel: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.steps:
            raise ValidationError(f"Job '{self.name}' has no steps")
        if self.max_parallel is not None and self.max_parallel < 1:
            raise ValidationError(f"Job '{self.name}' max-parallel must be at least 1")


@dataclass(frozen=True)
class WorkflowDefinition:
    jobs: Mapping[str, JobSpec]
    triggers: FrozenSet[EventKind] = frozenset({EventKind.PUSH})
    name: str = "workflow"
    env: Mapping[str, str] = field(default_factory=dict)

    def triggered_by(self, event: str | EventKind) -> bool:
        if not isinstance(event, EventKind):
            event = EventKind.parse(event)
        return event in self.triggers


# ----------------------------------------------------------------------
# Instances (what actually runs)
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class InstanceKey:
    """Identity of one job instance: job name + its matrix binding."""
    job: str
    matrix: Tuple[Tuple[str, MatrixValue], ...] = ()

    def __str__(self) -> str:
        if not self.matrix:
            return self.job
        bits = ", ".join(f"{k}={expressions.format_value(v)}" for k, v in self.matrix)
        return f"{self.job} ({bits})"


@dataclass(frozen=True)
class JobInstance:
    key: InstanceKey
    spec: JobSpec
    order: int

    @property
    def name(self) -> str:
        return self.key.job

    @property
    def matrix(self) -> MatrixBinding:
        return dict(self.key.matrix)

    @property
    def steps(self) -> Tuple[StepSpec, ...]:
        return self.spec.steps

    def __str__(self) -> str:
        return str(self.key)


class JobState(str, enum.Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED, JobState.SKIPPED, JobState.CANCELLED)


class RunStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class StepOutcome:
    name: str
    status: str  # "succeeded" | "failed" | "skipped"
    exit_code: Optional[int] = None
    output: str = ""
    error: Optional[str] = None
    error_kind: Optional[str] = None
    continue_on_error: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "exit_code": self.exit_code,
            "output": self.output,
            "error": self.error,
            "error_kind": self.error_kind,
            "continue_on_error": self.continue_on_error,
        }


@dataclass(frozen=True)
class JobOutcome:
    key: InstanceKey
    state: JobState
    steps: Tuple[StepOutcome, ...] = ()
    error: Optional[str] = None
    error_kind: Optional[str] = None
    duration: Optional[float] = None

    @property
    def output(self) -> str:
        return "".join(s.output for s in self.steps)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.key.job,
            "matrix": {k: v for k, v in self.key.matrix},
            "state": self.state.value,
            "error": self.error,
            "error_kind": self.error_kind,
            "duration": self.duration,
            "steps": [s.to_dict() for s in self.steps],
        }


@dataclass(frozen=True)
class RunResult:
    status: RunStatus
    outcomes: Mapping[InstanceKey, JobOutcome]

    def __getitem__(self, key: InstanceKey | str) -> JobOutcome:
        if isinstance(key, str):
            key = InstanceKey(key)
        return self.outcomes[key]

    def states(self) -> Dict[str, str]:
        return {str(k): o.state.value for k, o in self.outcomes.items()}

    def for_job(self, name: str) -> List[JobOutcome]:
        return [o for k, o in self.outcomes.items() if k.job == name]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "jobs": {str(k): o.to_dict() for k, o in self.outcomes.items()},
        }
