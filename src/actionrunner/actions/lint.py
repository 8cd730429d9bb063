# actions/lint.py
from __future__ import annotations

import shlex
import subprocess
from typing import List

from ..errors import StepExecutionError
from ..steps import StepCall, StepResult

TOOL_HINTS = {
    "ruff": "Install ruff (e.g., pip install ruff).",
    "flake8": "Install flake8 (e.g., pip install flake8).",
    "mypy": "Install mypy (e.g., pip install mypy).",
    "eslint": "Install eslint (e.g., npm install eslint).",
}


def _check_tool_available(call: StepCall, tool: str) -> None:
    try:
        subprocess.run(
            [tool, "--version"],
            capture_output=True,
            check=True,
            env=dict(call.env),
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        hint = TOOL_HINTS.get(tool, f"Install {tool} or fix PATH.")
        raise StepExecutionError(
            job=call.job,
            step=call.step,
            message=f"{tool} is not available. {hint}",
        )


def lint_command(call: StepCall) -> List[str]:
    """
    with:
      tool   linter executable (required)
      args   extra arguments, shell-quoted
      files  space separated targets (defaults to ".")
    """
    tool = call.params.get("tool")
    if not tool:
        raise StepExecutionError(job=call.job, step=call.step, message="lint needs 'tool'")

    cmd_parts = [tool]
    if call.params.get("args"):
        cmd_parts.extend(shlex.split(call.params["args"]))

    files = (call.params.get("files") or "").split()
    cmd_parts.extend(files or ["."])
    return cmd_parts


def run(call: StepCall) -> StepResult:
    """Run a linting tool in the step's working directory."""
    cmd_parts = lint_command(call)
    _check_tool_available(call, cmd_parts[0])

    proc = subprocess.run(
        cmd_parts,
        shell=False,
        cwd=str(call.cwd),
        env=dict(call.env),
        text=True,
        capture_output=True,
        timeout=call.timeout,
    )
    return StepResult(exit_code=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)
