import pytest

from actionrunner.dag import build_graph
from actionrunner.dsl import job, matrix, sh, uses, wf
from actionrunner.errors import StepExecutionError
from actionrunner.model import JobState
from actionrunner.steps import ActionRegistry, EnvironmentContext, StepResult, StepRunner, run_steps

SCOPE = "acme/widgets"


@pytest.fixture
def context(tmp_path, store, registry):
    return EnvironmentContext(scope=SCOPE, secrets=store, workspace=tmp_path, registry=registry)


def _instance(*steps, **job_kwargs):
    (inst,) = build_graph(wf(job("build", *steps, **job_kwargs))).instances
    return inst


def test_steps_run_in_order_and_capture_output(context):
    outcome = run_steps(_instance(sh("one", "echo one"), sh("two", "echo two >&2")), context)

    assert outcome.state == JobState.SUCCEEDED
    assert [s.name for s in outcome.steps] == ["one", "two"]
    assert outcome.steps[0].output == "one\n"
    assert outcome.steps[1].output == "two\n"
    assert outcome.output == "one\ntwo\n"


def test_failing_step_stops_the_job(context):
    outcome = run_steps(
        _instance(sh("ok", "true"), sh("broken", "echo nope; exit 4"), sh("never", "echo never")),
        context,
    )

    assert outcome.state == JobState.FAILED
    assert [s.status for s in outcome.steps] == ["succeeded", "failed", "skipped"]
    failed = outcome.steps[1]
    assert failed.exit_code == 4
    assert failed.output == "nope\n"
    assert failed.error_kind == StepExecutionError.__name__
    assert outcome.error_kind == StepExecutionError.__name__
    assert "exit=4" in outcome.error


def test_continue_on_error_keeps_going(context):
    outcome = run_steps(
        _instance(sh("flaky", "exit 1", continue_on_error=True), sh("after", "echo after")),
        context,
    )

    assert outcome.state == JobState.SUCCEEDED
    assert [s.status for s in outcome.steps] == ["failed", "succeeded"]
    assert outcome.steps[0].continue_on_error is True


def test_job_env_and_runner_variables_visible(context):
    inst = _instance(
        sh("show", 'echo "$MODE $ACTIONRUNNER_JOB $ACTIONRUNNER_MATRIX_PY"'),
        env={"MODE": "ci"},
        matrix=matrix(py=["3.12"]),
    )

    outcome = run_steps(inst, context)

    assert outcome.steps[0].output == "ci build 3.12\n"


def test_os_environment_can_be_excluded(tmp_path, store, monkeypatch):
    monkeypatch.setenv("LEAKY", "yes")
    context = EnvironmentContext(scope=SCOPE, secrets=store, workspace=tmp_path, inherit_os_env=False)

    outcome = run_steps(_instance(sh("show", 'echo "${LEAKY:-unset}"')), context)

    assert outcome.steps[0].output == "unset\n"


def test_secret_injected_only_into_declaring_step(context, store):
    store.put("API_TOKEN", "s3cr3t-value", SCOPE)

    outcome = run_steps(
        _instance(
            sh("uses token", 'printf "%s" "$API_TOKEN"', secrets=["API_TOKEN"]),
            sh("no token", 'echo "${API_TOKEN:-unset}"'),
        ),
        context,
    )

    assert outcome.state == JobState.SUCCEEDED
    assert outcome.steps[0].output == "***"
    assert outcome.steps[1].output == "unset\n"


def test_secret_in_command_is_redacted_in_errors(context, store):
    store.put("API_TOKEN", "s3cr3t-value", SCOPE)

    outcome = run_steps(
        _instance(sh("leak", 'echo "token ${{ secrets.API_TOKEN }}"; exit 2')),
        context,
    )

    assert outcome.state == JobState.FAILED
    assert outcome.steps[0].output == "token ***\n"
    assert "s3cr3t-value" not in outcome.error
    assert "s3cr3t-value" not in str(outcome.to_dict())


def test_missing_secret_fails_job_before_running(context, tmp_path):
    marker = tmp_path / "ran"
    outcome = run_steps(
        _instance(sh("deploy", f"touch {marker}", secrets=["DEPLOY_KEY"])),
        context,
    )

    assert outcome.state == JobState.FAILED
    assert outcome.error_kind == "SecretResolutionError"
    assert "DEPLOY_KEY" in outcome.error
    assert not marker.exists()


def test_secret_from_other_scope_not_visible(tmp_path, store, registry):
    store.put("API_TOKEN", "other", "acme/gadgets")
    context = EnvironmentContext(scope=SCOPE, secrets=store, workspace=tmp_path, registry=registry)

    outcome = run_steps(_instance(sh("x", "true", secrets=["API_TOKEN"])), context)

    assert outcome.error_kind == "SecretResolutionError"


def test_working_directory(context, tmp_path):
    (tmp_path / "sub").mkdir()

    outcome = run_steps(_instance(sh("where", "pwd", cwd="sub")), context)

    assert outcome.steps[0].output.strip().endswith("sub")


def test_missing_working_directory_fails_step(context):
    outcome = run_steps(_instance(sh("where", "pwd", cwd="missing")), context)

    assert outcome.state == JobState.FAILED
    assert "working directory not found" in outcome.error


def test_step_timeout(context):
    outcome = run_steps(_instance(sh("slow", "sleep 2", timeout_minutes=0.005)), context)

    assert outcome.state == JobState.FAILED
    assert "timed out" in outcome.error


def test_builtin_echo_action(context):
    outcome = run_steps(_instance(uses("echo@v1", with_={"message": "hello"})), context)

    assert outcome.state == JobState.SUCCEEDED
    assert outcome.output == "hello\n"


def test_action_failure_reported(context):
    outcome = run_steps(_instance(uses("fail")), context)

    assert outcome.state == JobState.FAILED
    assert outcome.steps[0].exit_code == 3
    assert outcome.steps[0].output == "boom\n"


def test_unknown_action(context):
    outcome = run_steps(_instance(uses("nope/missing@v9")), context)

    assert outcome.state == JobState.FAILED
    assert "unknown action 'nope/missing@v9'" in outcome.error


def test_action_exception_becomes_step_failure(tmp_path, store):
    reg = ActionRegistry()

    @reg.register("explode")
    def _explode(call):
        raise RuntimeError("kaboom")

    context = EnvironmentContext(scope=SCOPE, secrets=store, workspace=tmp_path, registry=reg)
    outcome = run_steps(_instance(uses("explode")), context)

    assert outcome.state == JobState.FAILED
    assert "RuntimeError: kaboom" in outcome.error


def test_action_receives_rendered_params(tmp_path, store):
    seen = {}
    reg = ActionRegistry()

    @reg.register("acme/deploy")
    def _deploy(call):
        seen.update(call.params)
        seen["job"] = call.job
        return StepResult()

    store.put("DEPLOY_KEY", "k3y", SCOPE)
    context = EnvironmentContext(scope=SCOPE, secrets=store, workspace=tmp_path, registry=reg)
    inst = _instance(
        uses("acme/deploy@v2", with_={"key": "${{ secrets.DEPLOY_KEY }}", "target": "${{ matrix.env }}"}),
        matrix=matrix(env=["prod"]),
    )

    outcome = StepRunner(context)(inst)

    assert outcome.state == JobState.SUCCEEDED
    assert seen == {"key": "k3y", "target": "prod", "job": "build (env=prod)"}


def test_registry_prefers_exact_reference():
    reg = ActionRegistry()
    reg.register("acme/deploy", lambda call: StepResult(stdout="bare"))
    reg.register("acme/deploy@v2", lambda call: StepResult(stdout="v2"))

    assert reg.resolve("acme/deploy@v2")(None).stdout == "v2"
    assert reg.resolve("acme/deploy@v1")(None).stdout == "bare"
    assert "acme/other" not in reg


def test_missing_secret_fails_job_even_with_continue_on_error(context):
    outcome = run_steps(
        _instance(
            sh("push", "echo hi", secrets=["API_TOKEN"], continue_on_error=True),
            sh("after", "echo after"),
        ),
        context,
    )

    assert outcome.state == JobState.FAILED
    assert outcome.error_kind == "SecretResolutionError"
    assert [s.status for s in outcome.steps] == ["failed", "skipped"]
