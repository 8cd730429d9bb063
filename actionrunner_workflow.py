# actionrunner_workflow.py
# Workflow for actionrunner itself: lint, then the test suite on every
# supported Python, then a packaging smoke check.
from __future__ import annotations

from actionrunner.dsl import wf, job, sh, uses, matrix


def workflow():
    return wf(
        job(
            "lint",
            uses("lint@v1", "Ruff check", with_={"tool": "ruff", "args": "check", "files": "src tests"}),
        ),

        job(
            "test",
            sh("Install package", "python${{ matrix.python }} -m pip install -e '.[test]'"),
            sh("Run pytest", "python${{ matrix.python }} -m pytest -q"),
            needs=["lint"],
            matrix=matrix(python=["3.10", "3.11", "3.12"]),
            max_parallel=2,
        ),

        job(
            "package",
            sh("Build wheel", "python -m pip wheel --no-deps -w dist ."),
            uses("echo@v1", with_={"message": "package built"}),
            needs=["test"],
        ),
        on=["push", "pull_request"],
        name="actionrunner",
    )
