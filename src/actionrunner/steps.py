# steps.py
from __future__ import annotations

import os
import re
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from . import expressions
from .errors import SecretResolutionError, StepExecutionError
from .model import JobInstance, JobOutcome, JobState, StepOutcome, StepSpec
from .secrets import SecretStore

# Output kept per step (tail), so a chatty step cannot blow up the result
MAX_OUTPUT_CHARS = 64_000


# ----------------------------------------------------------------------
# Execution context
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class EnvironmentContext:
    """Everything a step may see. Passed explicitly into every run."""
    scope: str
    secrets: SecretStore
    workspace: Path = Path(".")
    env: Mapping[str, str] = field(default_factory=dict)
    registry: Optional["ActionRegistry"] = None
    inherit_os_env: bool = True
    console: Optional[object] = None


@dataclass(frozen=True)
class StepResult:
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""

    @property
    def output(self) -> str:
        return (self.stdout or "") + (self.stderr or "")


@dataclass(frozen=True)
class StepCall:
    """What an action receives: the rendered step and where to run it."""
    job: str
    step: str
    params: Mapping[str, str]
    env: Mapping[str, str]
    cwd: Path
    timeout: Optional[float] = None


Action = Callable[[StepCall], StepResult]


# ----------------------------------------------------------------------
# Action registry
# ----------------------------------------------------------------------

class ActionRegistry:
    """
    Maps `uses:` references to callables.

    "owner/name@v2" is looked up as-is first, then as "owner/name".
    """

    def __init__(self) -> None:
        self._actions: Dict[str, Action] = {}

    def register(self, ref: str, fn: Optional[Action] = None):
        if fn is None:
            def deco(f: Action) -> Action:
                self._actions[ref] = f
                return f
            return deco
        self._actions[ref] = fn
        return fn

    def resolve(self, ref: str) -> Optional[Action]:
        if ref in self._actions:
            return self._actions[ref]
        return self._actions.get(ref.split("@", 1)[0])

    def __contains__(self, ref: str) -> bool:
        return self.resolve(ref) is not None

    def names(self) -> List[str]:
        return sorted(self._actions)


def default_registry() -> ActionRegistry:
    from .actions import register_builtin

    reg = ActionRegistry()
    register_builtin(reg)
    return reg


# ----------------------------------------------------------------------
# Step variants
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class RunCommand:
    command: str

    def execute(self, call: StepCall, context: EnvironmentContext) -> StepResult:
        try:
            proc = subprocess.run(
                self.command,
                shell=True,
                cwd=str(call.cwd),
                env=dict(call.env),
                text=True,
                capture_output=True,
                timeout=call.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise StepExecutionError(
                job=call.job,
                step=call.step,
                message=f"timed out after {call.timeout:g}s",
                output=_text(e.stdout) + _text(e.stderr),
            )
        return StepResult(exit_code=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)


@dataclass(frozen=True)
class InvokeAction:
    reference: str
    parameters: Mapping[str, str] = field(default_factory=dict)

    def execute(self, call: StepCall, context: EnvironmentContext) -> StepResult:
        registry = context.registry if context.registry is not None else default_registry()
        fn = registry.resolve(self.reference)
        if fn is None:
            raise StepExecutionError(
                job=call.job,
                step=call.step,
                message=f"unknown action '{self.reference}'. Known actions: {registry.names()}",
            )
        return fn(call)


def _text(b) -> str:
    if b is None:
        return ""
    if isinstance(b, bytes):
        return b.decode("utf-8", errors="replace")
    return b


# ----------------------------------------------------------------------
# Step runner
# ----------------------------------------------------------------------

def _env_name(axis: str) -> str:
    return re.sub(r"[^A-Z0-9_]", "_", axis.upper())


class StepRunner:
    """Runs the steps of one job instance, in order, and reports the outcome."""

    def __init__(self, context: EnvironmentContext):
        self.context = context

    def __call__(self, instance: JobInstance) -> JobOutcome:
        return self.run_steps(instance, self.context)

    def _base_env(self, instance: JobInstance, context: EnvironmentContext) -> Dict[str, str]:
        env: Dict[str, str] = os.environ.copy() if context.inherit_os_env else {}
        env.update(context.env)
        env["ACTIONRUNNER_JOB"] = instance.name
        env["ACTIONRUNNER_WORKSPACE"] = str(Path(context.workspace).resolve())
        for axis, value in instance.key.matrix:
            env[f"ACTIONRUNNER_MATRIX_{_env_name(axis)}"] = expressions.format_value(value)
        env.update(instance.spec.env)
        return env

    def _resolve_secrets(self, step: StepSpec, context: EnvironmentContext) -> Dict[str, str]:
        values: Dict[str, str] = {}
        for name in sorted(step.secret_refs):
            raw = context.secrets.resolve(name, context.scope)
            values[name] = raw.decode("utf-8", errors="replace")
        return values

    def _print(self, context: EnvironmentContext, method: str, *args) -> None:
        if context.console is not None:
            getattr(context.console, method)(*args)

    def run_step(
        self,
        instance: JobInstance,
        step: StepSpec,
        base_env: Mapping[str, str],
        context: EnvironmentContext,
    ) -> StepOutcome:
        redact = context.secrets.redactor.redact
        try:
            secret_values = self._resolve_secrets(step, context)
        except SecretResolutionError as e:
            return StepOutcome(
                name=step.name,
                status="failed",
                error=redact(str(e)),
                error_kind=SecretResolutionError.__name__,
                continue_on_error=step.continue_on_error,
            )

        def r(text):
            return expressions.render(text, "secrets", secret_values)

        # secrets only ever land in this step's env
        env = dict(base_env)
        env.update({k: r(v) for k, v in step.env.items()})

        cwd = (Path(context.workspace) / (step.working_directory or ".")).resolve()
        timeout = step.timeout_minutes * 60 if step.timeout_minutes else None
        call = StepCall(
            job=str(instance.key),
            step=step.name,
            params={k: r(v) for k, v in step.with_.items()},
            env=env,
            cwd=cwd,
            timeout=timeout,
        )
        action = step.action
        if isinstance(action, RunCommand):
            action = RunCommand(r(action.command))

        try:
            if not cwd.is_dir():
                raise StepExecutionError(
                    job=call.job, step=step.name, message=f"working directory not found: {cwd}"
                )
            result = action.execute(call, context)
            if result.exit_code != 0:
                raise StepExecutionError(
                    job=call.job,
                    step=step.name,
                    message=step.run if step.run is not None else f"uses {step.uses}",
                    exit_code=result.exit_code,
                    output=result.output,
                )
        except StepExecutionError as e:
            return StepOutcome(
                name=step.name,
                status="failed",
                exit_code=e.exit_code,
                output=redact(e.output)[-MAX_OUTPUT_CHARS:],
                error=redact(str(e)),
                error_kind=type(e).__name__,
                continue_on_error=step.continue_on_error,
            )
        except Exception as e:
            # an action blew up instead of reporting a failure
            return StepOutcome(
                name=step.name,
                status="failed",
                error=redact(f"{type(e).__name__}: {e}"),
                error_kind=StepExecutionError.__name__,
                continue_on_error=step.continue_on_error,
            )

        return StepOutcome(
            name=step.name,
            status="succeeded",
            exit_code=result.exit_code,
            output=redact(result.output)[-MAX_OUTPUT_CHARS:],
            continue_on_error=step.continue_on_error,
        )

    def run_steps(self, instance: JobInstance, context: EnvironmentContext) -> JobOutcome:
        """
        Run every step of `instance` in declared order.

        The first failing step aborts the rest (recorded as skipped) unless it
        has continue_on_error, in which case the failure is kept and the
        sequence goes on.
        """
        started = time.monotonic()
        base_env = self._base_env(instance, context)
        outcomes: List[StepOutcome] = []
        failure: Optional[StepOutcome] = None

        for step in instance.steps:
            if failure is not None:
                outcomes.append(StepOutcome(name=step.name, status="skipped"))
                continue

            self._print(context, "print_step", str(instance.key), step.name)
            outcome = self.run_step(instance, step, base_env, context)
            outcomes.append(outcome)

            if outcome.status == "failed":
                self._print(
                    context, "print_failure", f"{instance.key} / {step.name}", outcome.error or "", outcome.exit_code
                )
                # continue-on-error only covers the step itself failing
                if not step.continue_on_error or outcome.error_kind == SecretResolutionError.__name__:
                    failure = outcome

        return JobOutcome(
            key=instance.key,
            state=JobState.FAILED if failure is not None else JobState.SUCCEEDED,
            steps=tuple(outcomes),
            error=failure.error if failure is not None else None,
            error_kind=failure.error_kind if failure is not None else None,
            duration=time.monotonic() - started,
        )


def run_steps(instance: JobInstance, context: EnvironmentContext) -> JobOutcome:
    return StepRunner(context).run_steps(instance, context)
