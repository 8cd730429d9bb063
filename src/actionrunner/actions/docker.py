# actions/docker.py
from __future__ import annotations

import subprocess
from typing import List

from ..errors import StepExecutionError
from ..steps import StepCall, StepResult

TOOL_HINT = "Install Docker and ensure the daemon is running."

# env passed into the container: only what the step itself declared,
# never the runner's whole OS environment
_PASSTHROUGH_PREFIX = "ACTIONRUNNER_"


def _check_docker_available(call: StepCall) -> None:
    try:
        subprocess.run(
            ["docker", "--version"],
            capture_output=True,
            check=True,
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        raise StepExecutionError(
            job=call.job,
            step=call.step,
            message=f"Docker is not available. {TOOL_HINT}",
        )


def docker_command(call: StepCall, container_workdir: str = "/workspace") -> List[str]:
    """
    Build the `docker run` argv for a step.

    with:
      image    container image (required)
      run      shell command run with `sh -c` (required)
      volumes  extra mounts, comma separated ("src:dst,src2:dst2")
      user     --user value
      env      comma separated names copied from the step env
    """
    params = call.params
    image = params.get("image")
    command = params.get("run")
    if not image or not command:
        raise StepExecutionError(
            job=call.job, step=call.step, message="docker/run needs 'image' and 'run'"
        )

    cmd = ["docker", "run", "--rm"]

    # Volume mount: step cwd -> /workspace
    cmd.extend(["-v", f"{call.cwd}:{container_workdir}"])
    for vol in (params.get("volumes") or "").split(","):
        if vol.strip():
            cmd.extend(["-v", vol.strip()])

    cmd.extend(["-w", container_workdir])

    names = [n.strip() for n in (params.get("env") or "").split(",") if n.strip()]
    for key, value in call.env.items():
        if key in names or key.startswith(_PASSTHROUGH_PREFIX):
            cmd.extend(["-e", f"{key}={value}"])

    if params.get("user"):
        cmd.extend(["--user", params["user"]])

    cmd.append(image)
    cmd.extend(["sh", "-c", command])
    return cmd


def run(call: StepCall) -> StepResult:
    """Run a command inside a Docker container."""
    cmd = docker_command(call)
    _check_docker_available(call)

    proc = subprocess.run(
        cmd,
        shell=False,
        env=dict(call.env),
        text=True,
        capture_output=True,
        timeout=call.timeout,
    )
    return StepResult(exit_code=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)
