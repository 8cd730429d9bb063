# actions/test.py
from __future__ import annotations

import subprocess
from typing import List

from ..errors import StepExecutionError
from ..steps import StepCall, StepResult


def commands_for(call: StepCall) -> List[str]:
    """
    Turn a typed test step into shell commands.

    with:
      framework  "pytest" | "npm"
      args       extra arguments for the test command
      install    "true" (default) installs dependencies first
    """
    framework = call.params.get("framework")
    args = (call.params.get("args") or "").strip()
    install = (call.params.get("install") or "true").lower() not in ("false", "0", "no")

    if framework == "pytest":
        out: List[str] = []
        if install:
            out.append("python -m pip install -r requirements.txt")
        out.append(f"pytest {args}".strip())
        return out

    if framework == "npm":
        out = []
        if install:
            out.append("npm ci")
        out.append(f"npm test {args}".strip())
        return out

    raise StepExecutionError(
        job=call.job, step=call.step, message=f"Unknown test framework: {framework!r}"
    )


def run(call: StepCall) -> StepResult:
    stdout: List[str] = []
    stderr: List[str] = []
    for cmd in commands_for(call):
        proc = subprocess.run(
            cmd,
            shell=True,
            cwd=str(call.cwd),
            env=dict(call.env),
            text=True,
            capture_output=True,
            timeout=call.timeout,
        )
        stdout.append(proc.stdout)
        stderr.append(proc.stderr)
        if proc.returncode != 0:
            return StepResult(exit_code=proc.returncode, stdout="".join(stdout), stderr="".join(stderr))
    return StepResult(exit_code=0, stdout="".join(stdout), stderr="".join(stderr))
