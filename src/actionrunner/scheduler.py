# scheduler.py
from __future__ import annotations

import os
import threading
from collections import Counter, deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional, Tuple

from .dag import WorkflowGraph
from .errors import SchedulerInternalError
from .model import InstanceKey, JobInstance, JobOutcome, JobState, RunResult, RunStatus
from .ui.console import Console

RunJob = Callable[[JobInstance], JobOutcome]

# Allowed state transitions. Anything else is a scheduler bug.
TRANSITIONS = {
    JobState.PENDING: {JobState.READY, JobState.SKIPPED, JobState.CANCELLED},
    JobState.READY: {JobState.RUNNING, JobState.CANCELLED},
    JobState.RUNNING: {JobState.SUCCEEDED, JobState.FAILED},
}


def default_concurrency() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


class CancellationToken:
    """Cooperative cancel signal, safe to trip from any thread."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class Scheduler:
    """
    Walks a WorkflowGraph and runs ready job instances on a thread pool.

    - an instance becomes Ready once every dependency Succeeded
    - ready instances start in declaration order, at most `max_concurrency`
      at a time (and at most `max_parallel` per job)
    - a Failed instance turns all of its transitive dependents Skipped
    - cancel() turns Pending/Ready instances Cancelled; running ones finish
      and are recorded, but unblock nothing

    The coordinating thread is the only one that changes instance state, and
    it does so only through _transition().
    """

    POLL_INTERVAL = 0.05

    def __init__(
        self,
        run_job: RunJob,
        *,
        max_concurrency: Optional[int] = None,
        fail_fast: bool = False,
        token: Optional[CancellationToken] = None,
        console: Optional[Console] = None,
        redact: Optional[Callable[[str], str]] = None,
    ):
        self.run_job = run_job
        self.max_concurrency = max_concurrency if max_concurrency is not None else default_concurrency()
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.fail_fast = fail_fast
        self.token = token or CancellationToken()
        self.console = console
        self.redact = redact or (lambda s: s)

        self._lock = threading.Lock()
        self._states: Dict[InstanceKey, JobState] = {}
        self._outcomes: Dict[InstanceKey, JobOutcome] = {}
        self.transitions: List[Tuple[InstanceKey, JobState]] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        self.token.cancel()

    def states(self) -> Dict[InstanceKey, JobState]:
        with self._lock:
            return dict(self._states)

    def run(self, graph: WorkflowGraph) -> RunResult:
        self._graph = graph
        self._ready: List[InstanceKey] = []
        self._running: Counter = Counter()
        self._cancelled = False
        self._stopped = False
        with self._lock:
            self._states = {i.key: JobState.PENDING for i in graph.instances}
            self._outcomes = {}
            self.transitions = []

        in_flight: Dict[Future, InstanceKey] = {}
        pool = ThreadPoolExecutor(max_workers=self.max_concurrency, thread_name_prefix="actionrunner")
        try:
            for inst in graph.instances:
                if not graph.dependencies[inst.key]:
                    self._make_ready(inst.key)

            while True:
                self._apply_cancel()
                if not self._stopped:
                    self._dispatch(pool, in_flight)
                if not in_flight:
                    break

                # wait for a completion (or a cancel), then schedule newly-ready jobs
                done, _ = wait(list(in_flight), timeout=self.POLL_INTERVAL, return_when=FIRST_COMPLETED)
                for fut in sorted(done, key=lambda f: graph.instance(in_flight[f]).order):
                    self._complete(in_flight.pop(fut), fut)

            self._check_drained()
        except SchedulerInternalError as e:
            pool.shutdown(wait=True)
            self._abort(str(e))
            raise SchedulerInternalError(str(e), result=self._result()) from e
        finally:
            pool.shutdown(wait=True)

        return self._result()

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(self, key: InstanceKey, new: JobState) -> None:
        with self._lock:
            old = self._states.get(key)
            if old is None or new not in TRANSITIONS.get(old, ()):
                raise SchedulerInternalError(f"illegal transition for {key}: {old} -> {new}")
            self._states[key] = new
            self.transitions.append((key, new))

    def _state(self, key: InstanceKey) -> JobState:
        with self._lock:
            return self._states[key]

    def _finish_without_running(self, key: InstanceKey, state: JobState, reason: str) -> None:
        self._transition(key, state)
        self._outcomes[key] = JobOutcome(key=key, state=state, error=reason)
        if self.console is not None:
            if state == JobState.SKIPPED:
                self.console.print_job_skipped(str(key), reason)
            else:
                self.console.print_job_cancelled(str(key), reason)

    def _make_ready(self, key: InstanceKey) -> None:
        self._transition(key, JobState.READY)
        self._ready.append(key)
        self._ready.sort(key=lambda k: self._graph.instance(k).order)

    # ------------------------------------------------------------------
    # Dispatch / completion
    # ------------------------------------------------------------------

    def _dispatch(self, pool: ThreadPoolExecutor, in_flight: Dict[Future, InstanceKey]) -> None:
        while self._ready and len(in_flight) < self.max_concurrency:
            key = next((k for k in self._ready if self._has_job_slot(k)), None)
            if key is None:
                return
            self._ready.remove(key)
            self._transition(key, JobState.RUNNING)
            self._running[key.job] += 1
            in_flight[pool.submit(self._run_one, self._graph.instance(key))] = key

    def _has_job_slot(self, key: InstanceKey) -> bool:
        limit = self._graph.instance(key).spec.max_parallel
        return limit is None or self._running[key.job] < limit

    def _run_one(self, instance: JobInstance) -> JobOutcome:
        if self.console is not None:
            self.console.print_job_start(str(instance.key))
        return self.run_job(instance)

    def _complete(self, key: InstanceKey, fut: Future) -> None:
        self._running[key.job] -= 1
        try:
            outcome = fut.result()
        except Exception as e:
            outcome = JobOutcome(
                key=key,
                state=JobState.FAILED,
                error=self.redact(f"{type(e).__name__}: {e}"),
                error_kind=type(e).__name__,
            )

        if not isinstance(outcome, JobOutcome) or outcome.state not in (JobState.SUCCEEDED, JobState.FAILED):
            raise SchedulerInternalError(f"job runner returned an unusable outcome for {key}: {outcome!r}")

        self._outcomes[key] = outcome
        self._transition(key, outcome.state)
        if self.console is not None:
            self.console.print_job_finished(str(key), outcome.state.value, outcome.duration)

        # a cancel that arrived while this job ran wins over unblocking
        self._apply_cancel()
        if self._stopped:
            return

        if outcome.state == JobState.SUCCEEDED:
            for dep in self._dependents_in_order(key):
                if self._state(dep) == JobState.PENDING and self._deps_succeeded(dep):
                    self._make_ready(dep)
        else:
            self._skip_dependents(key)
            if self.fail_fast:
                self._stop_pending(f"fail-fast: {key} failed")

    def _dependents_in_order(self, key: InstanceKey) -> List[InstanceKey]:
        return sorted(self._graph.dependents[key], key=lambda k: self._graph.instance(k).order)

    def _deps_succeeded(self, key: InstanceKey) -> bool:
        return all(self._state(d) == JobState.SUCCEEDED for d in self._graph.dependencies[key])

    def _skip_dependents(self, failed: InstanceKey) -> None:
        q = deque([failed])
        while q:
            cur = q.popleft()
            for dep in self._dependents_in_order(cur):
                if self._state(dep) == JobState.PENDING:
                    self._finish_without_running(dep, JobState.SKIPPED, f"dependency {failed} failed")
                    q.append(dep)

    def _stop_pending(self, reason: str) -> None:
        self._stopped = True
        self._ready.clear()
        for inst in self._graph.instances:
            if self._state(inst.key) in (JobState.PENDING, JobState.READY):
                self._finish_without_running(inst.key, JobState.CANCELLED, reason)

    def _apply_cancel(self) -> None:
        if self.token.cancelled and not self._cancelled:
            self._cancelled = True
            self._stop_pending("run cancelled")

    # ------------------------------------------------------------------
    # End of run
    # ------------------------------------------------------------------

    def _check_drained(self) -> None:
        stuck = [str(k) for k, s in self.states().items() if not s.terminal]
        if stuck:
            raise SchedulerInternalError(f"run ended with unfinished instances: {stuck}")

    def _abort(self, reason: str) -> None:
        # the state machine can no longer be trusted: force, don't transition
        with self._lock:
            for key, state in self._states.items():
                if not state.terminal:
                    self._states[key] = JobState.CANCELLED
                    self._outcomes[key] = JobOutcome(
                        key=key, state=JobState.CANCELLED, error=f"scheduler error: {reason}"
                    )
        self._cancelled = True

    def _result(self) -> RunResult:
        outcomes = {i.key: self._outcomes[i.key] for i in self._graph.instances if i.key in self._outcomes}
        if self._cancelled:
            status = RunStatus.CANCELLED
        elif any(o.state == JobState.FAILED for o in outcomes.values()):
            status = RunStatus.FAILURE
        else:
            status = RunStatus.SUCCESS
        return RunResult(status=status, outcomes=outcomes)