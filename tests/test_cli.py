import json

import pytest
from click.testing import CliRunner

from actionrunner.cli import cli

WORKFLOW = """
on: [push]
jobs:
  build:
    steps:
      - run: echo building
  test:
    needs: build
    strategy:
      matrix:
        py: ["3.11", "3.12"]
    steps:
      - run: echo "token=$TOKEN"
        env:
          TOKEN: ${{ secrets.TOKEN }}
"""


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _write(workdir, name, text):
    (workdir / name).write_text(text)


def test_validate(runner, workdir):
    _write(workdir, "ci_workflow.yml", WORKFLOW)

    result = runner.invoke(cli, ["validate"])

    assert result.exit_code == 0, result.output
    assert "ci_workflow.yml: OK (2 jobs, 3 instances)" in result.output


def test_validate_reports_cycle(runner, workdir):
    _write(
        workdir,
        "ci_workflow.yml",
        "on: push\njobs:\n  a: {needs: b, steps: [{run: 'true'}]}\n  b: {needs: a, steps: [{run: 'true'}]}\n",
    )

    result = runner.invoke(cli, ["validate"])

    assert result.exit_code == 1
    assert "a -> b -> a" in result.output


def test_plan(runner, workdir):
    _write(workdir, "ci_workflow.yml", WORKFLOW)

    result = runner.invoke(cli, ["plan"])

    assert result.exit_code == 0, result.output
    assert "Stage 1: ['build']" in result.output
    assert "Stage 2: ['test (py=3.11)', 'test (py=3.12)']" in result.output


def test_run_success_writes_redacted_json(runner, workdir):
    _write(workdir, "ci_workflow.yml", WORKFLOW)

    result = runner.invoke(
        cli,
        ["run", "--scope", "acme/widgets", "--secret", "TOKEN=hunter2", "--json-output", "result.json"],
    )

    assert result.exit_code == 0, result.output
    assert "RUN SUCCESS" in result.output
    data = json.loads((workdir / "result.json").read_text())
    assert data["status"] == "success"
    assert data["jobs"]["test (py=3.11)"]["steps"][0]["output"] == "token=***\n"
    assert "hunter2" not in result.output
    assert "hunter2" not in (workdir / "result.json").read_text()


def test_run_with_secrets_file(runner, workdir):
    _write(workdir, "ci_workflow.yml", WORKFLOW)
    _write(workdir, "secrets.json", json.dumps({"version": 1, "scopes": {"acme/widgets": {"TOKEN": "t0k"}}}))

    result = runner.invoke(cli, ["run", "--scope", "acme/widgets", "--secrets-file", "secrets.json"])

    assert result.exit_code == 0, result.output


def test_run_failure_exit_code(runner, workdir):
    _write(workdir, "ci_workflow.yml", WORKFLOW)

    # TOKEN is not provided: both test instances fail
    result = runner.invoke(cli, ["run", "--scope", "acme/widgets"])

    assert result.exit_code == 1
    assert "RUN FAILURE" in result.output


def test_run_not_triggered(runner, workdir):
    _write(workdir, "ci_workflow.yml", WORKFLOW)

    result = runner.invoke(cli, ["run", "--scope", "acme/widgets", "--event", "pull_request"])

    assert result.exit_code == 0
    assert "not triggered by 'pull_request'" in result.output


def test_run_unknown_event(runner, workdir):
    _write(workdir, "ci_workflow.yml", WORKFLOW)

    result = runner.invoke(cli, ["run", "--scope", "acme/widgets", "--event", "teleport"])

    assert result.exit_code == 1


def test_run_bad_secret_argument(runner, workdir):
    _write(workdir, "ci_workflow.yml", WORKFLOW)

    result = runner.invoke(cli, ["run", "--scope", "acme/widgets", "--secret", "NOVALUE"])

    assert result.exit_code == 2


def test_no_workflow_found(runner, workdir):
    result = runner.invoke(cli, ["validate"])

    assert result.exit_code == 1
    assert "No workflow file found" in result.output


def test_multiple_workflows_need_explicit_choice(runner, workdir):
    _write(workdir, "ci_workflow.yml", WORKFLOW)
    _write(workdir, "release_workflow.yml", WORKFLOW)

    result = runner.invoke(cli, ["validate"])
    assert result.exit_code == 1
    assert "Multiple workflow files found" in result.output

    result = runner.invoke(cli, ["validate", "--workflow", "release_workflow.yml"])
    assert result.exit_code == 0, result.output


def test_explicit_workflow_missing(runner, workdir):
    result = runner.invoke(cli, ["validate", "--workflow", "nope.yml"])

    assert result.exit_code == 1
    assert "Workflow file not found" in result.output


def test_secret_option_overrides_secrets_file(runner, workdir):
    _write(
        workdir,
        "ci_workflow.yml",
        "on: push\njobs:\n  check:\n    steps:\n      - run: test \"$TOKEN\" = from-flag\n"
        "        env: {TOKEN: \"${{ secrets.TOKEN }}\"}\n",
    )
    _write(workdir, "secrets.json", json.dumps({"version": 1, "scopes": {"acme/widgets": {"TOKEN": "from-file"}}}))

    result = runner.invoke(
        cli,
        [
            "run", "--scope", "acme/widgets", "--secrets-file", "secrets.json",
            "--secret", "TOKEN=from-flag", "--json-output", "result.json",
        ],
    )

    assert result.exit_code == 0, result.output
    data = json.loads((workdir / "result.json").read_text())
    assert data["status"] == "success"


def test_run_rejects_zero_workers(runner, workdir):
    _write(workdir, "ci_workflow.yml", WORKFLOW)

    result = runner.invoke(cli, ["run", "--scope", "acme/widgets", "--secret", "TOKEN=x", "--workers", "0"])

    assert result.exit_code == 2
