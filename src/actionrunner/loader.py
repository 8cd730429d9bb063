# loader.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .expressions import format_value
from .model import EventKind, JobSpec, MatrixSpec, StepSpec, WorkflowDefinition

Scalar = Union[str, int, float, bool]


def _stringify(values: Optional[Mapping[str, Any]], what: str) -> Dict[str, str]:
    if values is None:
        return {}
    if not isinstance(values, Mapping):
        raise ValueError(f"{what} must be a mapping")
    out: Dict[str, str] = {}
    for k, v in values.items():
        if not isinstance(v, (str, int, float, bool)):
            raise ValueError(f"{what}.{k} must be a string, number or boolean")
        out[str(k)] = format_value(v)
    return out


# ----------------------------------------------------------------------
# Schemas (YAML document shape)
# ----------------------------------------------------------------------

class StepDocument(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    id: Optional[str] = None
    name: Optional[str] = None
    run: Optional[str] = None
    uses: Optional[str] = None
    with_: Dict[str, Any] = Field(default_factory=dict, alias="with")
    env: Dict[str, Any] = Field(default_factory=dict)
    continue_on_error: bool = Field(False, alias="continue-on-error")
    working_directory: Optional[str] = Field(None, alias="working-directory")
    timeout_minutes: Optional[float] = Field(None, alias="timeout-minutes", gt=0)

    @field_validator("with_", mode="before")
    @classmethod
    def _with_values(cls, v):
        return _stringify(v, "with")

    @field_validator("env", mode="before")
    @classmethod
    def _env_values(cls, v):
        return _stringify(v, "env")


class StrategyDocument(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    matrix: Dict[str, Any] = Field(default_factory=dict)
    # accepted for compatibility; the run-level --fail-fast applies instead
    fail_fast: Optional[bool] = Field(None, alias="fail-fast")
    max_parallel: Optional[int] = Field(None, alias="max-parallel", ge=1)


class JobDocument(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: Optional[str] = None
    runs_on: Union[str, List[str]] = Field("self-hosted", alias="runs-on")
    needs: Union[str, List[str]] = Field(default_factory=list)
    env: Dict[str, Any] = Field(default_factory=dict)
    strategy: Optional[StrategyDocument] = None
    timeout_minutes: Optional[float] = Field(None, alias="timeout-minutes", gt=0)
    steps: List[StepDocument] = Field(min_length=1)

    @field_validator("env", mode="before")
    @classmethod
    def _env_values(cls, v):
        return _stringify(v, "env")


class WorkflowDocument(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: Optional[str] = None
    on: Union[str, List[str], Dict[str, Any]] = Field(alias="on")
    env: Dict[str, Any] = Field(default_factory=dict)
    jobs: Dict[str, JobDocument] = Field(min_length=1)

    @field_validator("env", mode="before")
    @classmethod
    def _env_values(cls, v):
        return _stringify(v, "env")


# ----------------------------------------------------------------------
# Document -> definition
# ----------------------------------------------------------------------

def _triggers(on: Union[str, List[str], Dict[str, Any]]) -> frozenset:
    if isinstance(on, str):
        events = [on]
    elif isinstance(on, list):
        events = on
    else:
        events = list(on)
    if not events:
        raise ValidationError("Workflow 'on' must name at least one event")
    return frozenset(EventKind.parse(str(e)) for e in events)


def _step(doc: StepDocument, job_timeout: Optional[float]) -> StepSpec:
    name = doc.name or doc.id
    if not name:
        name = f"Run {doc.run.strip().splitlines()[0]}" if doc.run else str(doc.uses)
    return StepSpec(
        name=name,
        run=doc.run,
        uses=doc.uses,
        with_=doc.with_,
        env=doc.env,
        continue_on_error=doc.continue_on_error,
        working_directory=doc.working_directory,
        timeout_minutes=doc.timeout_minutes or job_timeout,
    )


def _matrix(strategy: Optional[StrategyDocument]) -> Optional[MatrixSpec]:
    if strategy is None or not strategy.matrix:
        return None
    axes = dict(strategy.matrix)
    exclude = axes.pop("exclude", None) or []
    include = axes.pop("include", None) or []
    if not isinstance(exclude, list) or not isinstance(include, list):
        raise ValidationError("matrix 'exclude' and 'include' must be lists")
    return MatrixSpec.from_mapping(axes, exclude=exclude, include=include)


def _job(job_id: str, doc: JobDocument) -> JobSpec:
    needs = [doc.needs] if isinstance(doc.needs, str) else list(doc.needs)
    runs_on = doc.runs_on if isinstance(doc.runs_on, str) else ",".join(doc.runs_on)
    return JobSpec(
        name=job_id,
        steps=tuple(_step(s, doc.timeout_minutes) for s in doc.steps),
        runs_on=runs_on,
        needs=tuple(needs),
        matrix=_matrix(doc.strategy),
        env=doc.env,
        max_parallel=doc.strategy.max_parallel if doc.strategy else None,
    )


def parse_workflow(source: Union[str, Mapping[str, Any]], *, default_name: str = "workflow") -> WorkflowDefinition:
    """
    Parse a GitHub-Actions-style workflow (YAML text or an already-loaded
    mapping) into a WorkflowDefinition.

    Raises ValidationError for anything malformed.
    """
    if isinstance(source, str):
        try:
            data = yaml.safe_load(source)
        except yaml.YAMLError as exc:
            raise ValidationError(f"Failed to parse workflow YAML: {exc}") from exc
    else:
        data = source

    if not isinstance(data, dict):
        raise ValidationError("Workflow must be a mapping")

    data = dict(data)
    # YAML 1.1 reads a bare `on:` key as boolean True
    if True in data and "on" not in data:
        data["on"] = data.pop(True)

    try:
        doc = WorkflowDocument.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid workflow: {exc}") from exc

    jobs = {job_id: _job(job_id, jdoc) for job_id, jdoc in doc.jobs.items()}
    return WorkflowDefinition(
        jobs=jobs,
        triggers=_triggers(doc.on),
        name=doc.name or default_name,
        env=doc.env,
    )


def load_yaml(path: str | Path) -> WorkflowDefinition:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Workflow file not found: {p}")
    return parse_workflow(p.read_text(encoding="utf-8"), default_name=p.stem)
