# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


class WorkflowError(Exception):
    """Base class for every error raised by actionrunner."""


# ----------------------------------------------------------------------
# Validation (static, raised before anything executes)
# ----------------------------------------------------------------------

class ValidationError(WorkflowError):
    """The workflow definition is malformed and cannot be run."""


class DuplicateJob(ValidationError):
    def __init__(self, names: List[str]):
        self.names = names
        super().__init__(f"Duplicate job names found: {names}")


class UnknownDependency(ValidationError):
    def __init__(self, job: str, missing: str, known: List[str]):
        self.job = job
        self.missing = missing
        super().__init__(
            f"Job '{job}' needs missing job '{missing}'. Known jobs: {sorted(known)}"
        )


class CyclicDependency(ValidationError):
    def __init__(self, cycle: List[str]):
        self.cycle = cycle
        super().__init__(f"Dependency cycle between jobs: {' -> '.join(cycle)}")


class InvalidMatrix(ValidationError):
    """A matrix axis is empty or holds a value that is not a plain scalar."""


# ----------------------------------------------------------------------
# Secrets
# ----------------------------------------------------------------------

class SecretError(WorkflowError):
    pass


class DuplicateSecret(SecretError):
    def __init__(self, name: str, scope: str):
        self.name = name
        self.scope = scope
        super().__init__(f"Secret '{name}' already exists in scope '{scope}'")


class SecretStoreError(SecretError):
    """The secrets file or backing store is unusable."""


class SecretResolutionError(WorkflowError):
    """A step asked for a secret it cannot have. Fails only that step's job."""


class SecretNotFound(SecretResolutionError):
    def __init__(self, name: str, scope: str):
        self.name = name
        self.scope = scope
        super().__init__(f"Secret '{name}' is not defined in scope '{scope}'")


# ----------------------------------------------------------------------
# Execution
# ----------------------------------------------------------------------

@dataclass
class StepExecutionError(WorkflowError):
    """A step's command or action reported a failure."""
    job: str
    step: str
    message: str
    exit_code: Optional[int] = None
    output: str = field(default="", repr=False)

    def __str__(self) -> str:
        code = f" (exit={self.exit_code})" if self.exit_code is not None else ""
        return f"[{self.job}] step '{self.step}' failed{code}: {self.message}"


class SchedulerInternalError(WorkflowError):
    """
    The scheduler lost track of its own state. Fatal for the whole run.

    `result` carries the partial RunResult, with every instance that had not
    reached a terminal state marked Cancelled.
    """

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result
