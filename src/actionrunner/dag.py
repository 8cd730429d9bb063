# dag.py
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Set, Tuple

from . import expressions
from .errors import CyclicDependency, DuplicateJob, UnknownDependency
from .matrix import expand
from .model import InstanceKey, JobInstance, JobSpec, WorkflowDefinition


@dataclass
class WorkflowGraph:
    """
    Job instances plus their dependency edges.

    instances    declaration order (job order, then matrix order)
    dependencies key -> keys that must succeed before it may start
    dependents   key -> keys waiting on it
    """
    instances: List[JobInstance]
    dependencies: Dict[InstanceKey, Set[InstanceKey]]
    dependents: Dict[InstanceKey, Set[InstanceKey]]
    _by_key: Dict[InstanceKey, JobInstance] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._by_key = {i.key: i for i in self.instances}

    def __len__(self) -> int:
        return len(self.instances)

    def instance(self, key: InstanceKey) -> JobInstance:
        return self._by_key[key]

    def of_job(self, name: str) -> List[JobInstance]:
        return [i for i in self.instances if i.key.job == name]

    def levels(self) -> List[List[JobInstance]]:
        """
        Topological "levels" (stages). Everything in a stage may run in parallel.
        """
        by_key = self._by_key
        indeg = {k: len(d) for k, d in self.dependencies.items()}
        q = deque(i.key for i in self.instances if indeg[i.key] == 0)

        levels: List[List[JobInstance]] = []
        while q:
            level_size = len(q)
            level: List[JobInstance] = []
            for _ in range(level_size):
                key = q.popleft()
                level.append(by_key[key])
                for child in sorted(self.dependents[key], key=lambda k: by_key[k].order):
                    indeg[child] -= 1
                    if indeg[child] == 0:
                        q.append(child)
            levels.append(level)
        return levels


# ----------------------------------------------------------------------
# Static validation (job-name level)
# ----------------------------------------------------------------------

def _find_cycle(needs: Mapping[str, Tuple[str, ...]], stuck: Set[str]) -> List[str]:
    """Walk `needs` edges among the stuck jobs until a job repeats."""
    start = min(stuck)
    path: List[str] = []
    seen: Dict[str, int] = {}
    node = start
    while node not in seen:
        seen[node] = len(path)
        path.append(node)
        # every stuck job has at least one stuck dependency
        node = sorted(d for d in needs[node] if d in stuck)[0]
    return path[seen[node]:] + [node]


def validate_jobs(jobs: List[JobSpec]) -> None:
    """
    Reject duplicate names, unknown `needs` and dependency cycles.

    Kahn's algorithm over job names: whatever never reaches in-degree zero
    sits on (or behind) a cycle.
    """
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        raise DuplicateJob(sorted({n for n in names if names.count(n) > 1}))

    name_set = set(names)
    needs: Dict[str, Tuple[str, ...]] = {}
    indeg: Dict[str, int] = {n: 0 for n in names}
    adj: Dict[str, Set[str]] = {n: set() for n in names}

    for job in jobs:
        needs[job.name] = tuple(dict.fromkeys(job.needs))
        for dep in needs[job.name]:
            if dep not in name_set:
                raise UnknownDependency(job.name, dep, names)
            adj[dep].add(job.name)
            indeg[job.name] += 1

    q = deque(n for n in names if indeg[n] == 0)
    processed = 0
    while q:
        node = q.popleft()
        processed += 1
        for child in adj[node]:
            indeg[child] -= 1
            if indeg[child] == 0:
                q.append(child)

    if processed != len(names):
        stuck = {n for n, d in indeg.items() if d > 0}
        raise CyclicDependency(_find_cycle(needs, stuck))


# ----------------------------------------------------------------------
# Build
# ----------------------------------------------------------------------

def _bind(job: JobSpec, binding: Mapping, workflow_env: Mapping[str, str]) -> JobSpec:
    def r(text):
        return expressions.render(text, "matrix", binding)

    env = {**workflow_env, **job.env}
    return replace(
        job,
        runs_on=r(job.runs_on),
        env={k: r(v) for k, v in env.items()},
        steps=tuple(s.bind_matrix(binding) for s in job.steps),
    )


def build_graph(definition: WorkflowDefinition) -> WorkflowGraph:
    """
    Turn a workflow definition into a DAG of job instances.

    Raises ValidationError subclasses (UnknownDependency, CyclicDependency,
    InvalidMatrix, ...) before anything runs.

    Fan-in: every instance of B that needs A depends on *all* instances of A.
    """
    jobs = list(definition.jobs.values())
    validate_jobs(jobs)

    instances: List[JobInstance] = []
    by_job: Dict[str, List[InstanceKey]] = {}
    for job in jobs:
        by_job[job.name] = []
        for binding in expand(job.matrix):
            key = InstanceKey(job=job.name, matrix=tuple(binding.items()))
            spec = _bind(job, binding, definition.env)
            instances.append(JobInstance(key=key, spec=spec, order=len(instances)))
            by_job[job.name].append(key)

    dependencies: Dict[InstanceKey, Set[InstanceKey]] = {i.key: set() for i in instances}
    dependents: Dict[InstanceKey, Set[InstanceKey]] = {i.key: set() for i in instances}
    for inst in instances:
        for dep_job in inst.spec.needs:
            for dep_key in by_job[dep_job]:
                dependencies[inst.key].add(dep_key)
                dependents[dep_key].add(inst.key)

    return WorkflowGraph(instances=instances, dependencies=dependencies, dependents=dependents)
