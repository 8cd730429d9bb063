from __future__ import annotations

import pytest

from actionrunner.runner import run_workflow
from actionrunner.secrets import SecretStore
from actionrunner.steps import ActionRegistry, StepResult, default_registry
from actionrunner.ui.console import Console

SCOPE = "acme/widgets"


@pytest.fixture
def console():
    return Console(quiet=True)


@pytest.fixture
def store():
    return SecretStore()


@pytest.fixture
def registry() -> ActionRegistry:
    reg = default_registry()

    @reg.register("fail")
    def _fail(call):
        return StepResult(exit_code=3, stderr="boom\n")

    return reg


@pytest.fixture
def run(tmp_path, store, registry, console):
    """Run a definition with test defaults; keyword arguments override them."""

    def _run(definition, **kwargs):
        kwargs.setdefault("secrets", store)
        kwargs.setdefault("scope", SCOPE)
        kwargs.setdefault("workspace", tmp_path)
        kwargs.setdefault("registry", registry)
        kwargs.setdefault("console", console)
        kwargs.setdefault("max_workers", 4)
        return run_workflow(definition, **kwargs)

    return _run
