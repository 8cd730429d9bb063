from .dsl import job, sh, uses, matrix, wf, workflow, JobBuilder, build
from .dag import build_graph
from .matrix import expand
from .model import JobSpec, StepSpec, MatrixSpec, WorkflowDefinition, RunResult, RunStatus, JobState
from .runner import load_workflow, run_workflow
from .scheduler import CancellationToken, Scheduler
from .secrets import SecretStore

__all__ = [
    "job", "sh", "uses", "matrix", "wf", "workflow", "JobBuilder", "build",
    "build_graph", "expand",
    "JobSpec", "StepSpec", "MatrixSpec", "WorkflowDefinition", "RunResult", "RunStatus", "JobState",
    "load_workflow", "run_workflow",
    "CancellationToken", "Scheduler", "SecretStore",
]
