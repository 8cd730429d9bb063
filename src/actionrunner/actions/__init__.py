"""Built-in actions available to `uses:` steps."""

from __future__ import annotations

from ..steps import ActionRegistry, StepCall, StepResult
from . import docker, lint, test


def echo(call: StepCall) -> StepResult:
    """Print `with.message`."""
    return StepResult(stdout=call.params.get("message", "") + "\n")


def register_builtin(registry: ActionRegistry) -> ActionRegistry:
    registry.register("echo", echo)
    registry.register("docker/run", docker.run)
    registry.register("lint", lint.run)
    registry.register("test", test.run)
    return registry
