"""
The build orchestration engine: a fixed graph of named tasks, composed into
named pipelines of series and parallel stages.
"""
from __future__ import annotations

import threading
import typing as t
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import PurePosixPath

from .pretty_utils import print_with_style, report_error, timed

if t.TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


class GraphError(ValueError):
    """
    Exception raised when a task graph or pipeline is malformed: unknown or
    duplicate tasks, cycles, or concurrent tasks with overlapping outputs.
    """


@dataclass(frozen=True)
class BuildRun:
    """
    Per-invocation parameters handed to every task body.
    """
    pipeline: str
    production: bool = False


@dataclass(frozen=True)
class OutputClaim:
    """
    A declared write target: everything under @root (a POSIX path relative to
    the project root), optionally limited to files with one of @suffixes, and
    minus the subtrees in @excludes.
    """
    root: str
    suffixes: frozenset[str] | None = None
    excludes: frozenset[str] = frozenset()

    @staticmethod
    def _within(inner: str, outer: str):
        return PurePosixPath(inner).is_relative_to(PurePosixPath(outer))

    def overlaps(self, other: OutputClaim) -> bool:
        if self._within(other.root, self.root):
            outer, inner = self, other
        elif self._within(self.root, other.root):
            outer, inner = other, self
        else:
            return False
        if any(self._within(inner.root, ex) for ex in outer.excludes):
            return False
        if outer.suffixes is not None and inner.suffixes is not None:
            return bool(outer.suffixes & inner.suffixes)
        return True


TaskBody = t.Callable[[BuildRun], object]


@dataclass(frozen=True)
class Task:
    """
    A unit of build work. @body raises to signal failure. Exclusive tasks never
    run alongside any other task of the same graph.
    """
    name: str
    body: TaskBody = field(compare=False)
    predecessors: frozenset[str] = frozenset()
    exclusive: bool = False
    writes: tuple[OutputClaim, ...] = ()


@dataclass(frozen=True)
class Series:
    """
    Pipeline stages run one after another.
    """
    stages: tuple[Stage, ...]

    def __init__(self, *stages: Stage):
        object.__setattr__(self, 'stages', stages)


@dataclass(frozen=True)
class Parallel:
    """
    Pipeline stages that may run concurrently.
    """
    stages: tuple[Stage, ...]

    def __init__(self, *stages: Stage):
        object.__setattr__(self, 'stages', stages)


Stage = t.Union[str, Series, Parallel]


@dataclass(frozen=True)
class TaskFailure:
    task: str
    cause: BaseException


@dataclass
class PipelineResult:
    """
    Outcome of one pipeline run. @completed lists successful tasks in the
    order they finished.
    """
    name: str
    completed: list[str] = field(default_factory=list)
    failure: TaskFailure | None = None

    @property
    def ok(self):
        return self.failure is None


class _ExclusiveGate:
    """
    Shared/exclusive lock: any number of shared holders, or one exclusive
    holder.
    """
    def __init__(self):
        self._cond = threading.Condition()
        self._shared = 0
        self._exclusive = False

    @contextmanager
    def hold(self, exclusive: bool):
        with self._cond:
            if exclusive:
                self._cond.wait_for(lambda: not self._exclusive and not self._shared)
                self._exclusive = True
            else:
                self._cond.wait_for(lambda: not self._exclusive)
                self._shared += 1
        try:
            yield
        finally:
            with self._cond:
                if exclusive:
                    self._exclusive = False
                else:
                    self._shared -= 1
                self._cond.notify_all()


def _flatten(stage: Stage) -> list[str]:
    if isinstance(stage, str):
        return [stage]
    return [name for sub in stage.stages for name in _flatten(sub)]


def _link(stage: Stage, after: frozenset[str], preds: dict[str, set[str]]) -> frozenset[str]:
    """
    Record the structural predecessors of every task in @stage, given the set
    of tasks that must finish before it starts. Returns the stage's exit
    tasks.
    """
    if isinstance(stage, str):
        preds[stage] = set(after)
        return frozenset({stage})
    if isinstance(stage, Series):
        for sub in stage.stages:
            after = _link(sub, after, preds)
        return after
    exits: frozenset[str] = frozenset()
    for sub in stage.stages:
        exits |= _link(sub, after, preds)
    return exits


def _check_acyclic(preds: Mapping[str, t.Iterable[str]], label: str):
    # Kahn's algorithm; whatever is left over sits on a cycle.
    remaining = {name: set(p) for name, p in preds.items()}
    ready = [name for name, p in remaining.items() if not p]
    while ready:
        name = ready.pop()
        del remaining[name]
        for other, p in remaining.items():
            if name in p:
                p.discard(name)
                if not p:
                    ready.append(other)
    if remaining:
        raise GraphError(f'Cycle in {label} among: {", ".join(sorted(remaining))}')


class TaskGraph:
    """
    An immutable set of tasks plus named pipelines over them. Every invariant
    is checked at construction, so a constructed graph can always run.
    """
    def __init__(self,
                 tasks: Iterable[Task],
                 pipelines: Mapping[str, Stage],
                 max_workers: int | None = None):
        self.tasks: dict[str, Task] = {}
        for task in tasks:
            if task.name in self.tasks:
                raise GraphError(f'Duplicate task {task.name!r}')
            self.tasks[task.name] = task
        for task in self.tasks.values():
            unknown = task.predecessors - self.tasks.keys()
            if unknown:
                raise GraphError(f'Task {task.name!r} has unknown predecessors: {sorted(unknown)}')
        _check_acyclic({n: tk.predecessors for n, tk in self.tasks.items()}, 'task graph')

        self.pipelines = dict(pipelines)
        self.max_workers = max_workers
        self._plans: dict[str, dict[str, frozenset[str]]] = {}
        self._gate = _ExclusiveGate()
        for name in self.pipelines:
            self._plans[name] = self._build_plan(name)
            self._check_claims(name)

    def _build_plan(self, name: str):
        names = _flatten(self.pipelines[name])
        for task_name in names:
            if task_name not in self.tasks:
                raise GraphError(f'Pipeline {name!r} references unknown task {task_name!r}')
        if len(set(names)) != len(names):
            raise GraphError(f'Pipeline {name!r} lists a task more than once')

        preds: dict[str, set[str]] = {}
        _link(self.pipelines[name], frozenset(), preds)
        for task_name in names:
            # Declared predecessors outside the pipeline are assumed to have
            # been satisfied by an earlier run.
            preds[task_name] |= self.tasks[task_name].predecessors & preds.keys()
        _check_acyclic(preds, f'pipeline {name!r}')
        return {task_name: frozenset(preds[task_name]) for task_name in names}

    def plan(self, name: str) -> dict[str, frozenset[str]]:
        """
        Return every task of pipeline @name mapped to the tasks that must
        finish successfully before it starts, in declaration order.
        """
        try:
            return self._plans[name]
        except KeyError:
            raise KeyError(f'Unknown pipeline {name!r}') from None

    def ancestors(self, name: str, task: str) -> set[str]:
        plan = self.plan(name)
        found: set[str] = set()
        stack = list(plan[task])
        while stack:
            current = stack.pop()
            if current not in found:
                found.add(current)
                stack.extend(plan[current])
        return found

    def concurrent_pairs(self, name: str) -> list[tuple[str, str]]:
        """
        List the pairs of tasks in pipeline @name with no ordering between
        them, which may therefore run at the same time.
        """
        names = list(self.plan(name))
        ancestry = {n: self.ancestors(name, n) for n in names}
        return [
            (a, b)
            for i, a in enumerate(names)
            for b in names[i + 1:]
            if a not in ancestry[b] and b not in ancestry[a]
        ]

    def _check_claims(self, name: str):
        for a, b in self.concurrent_pairs(name):
            for claim_a in self.tasks[a].writes:
                for claim_b in self.tasks[b].writes:
                    if claim_a.overlaps(claim_b):
                        raise GraphError(
                            f'Tasks {a!r} and {b!r} may run concurrently in '
                            f'pipeline {name!r} but both write {claim_a.root!r}/{claim_b.root!r}'
                        )

    def pipelines_overlap(self, a: str, b: str) -> bool:
        """
        Return whether pipelines @a and @b share a task or write overlapping
        outputs, so that running them at the same time is unsafe.
        """
        tasks_a, tasks_b = self.plan(a).keys(), self.plan(b).keys()
        if tasks_a & tasks_b:
            return True
        return any(
            claim_a.overlaps(claim_b)
            for name_a in tasks_a
            for name_b in tasks_b
            for claim_a in self.tasks[name_a].writes
            for claim_b in self.tasks[name_b].writes
        )

    def _execute(self, task: Task, run: BuildRun):
        with self._gate.hold(task.exclusive):
            with timed(task.name):
                task.body(run)

    def run_pipeline(self, name: str, production: bool = False) -> PipelineResult:
        """
        Run pipeline @name. A task starts once all of its predecessors have
        succeeded. After the first failure nothing new starts; tasks already
        running are allowed to finish.
        """
        plan = self.plan(name)
        run = BuildRun(pipeline=name, production=production)
        result = PipelineResult(name)
        print_with_style(
            f'Running {name} ({"production" if production else "development"})',
            style='bold'
        )

        waiting = dict(plan)
        done: set[str] = set()
        running: dict[Future, str] = {}
        with ThreadPoolExecutor(self.max_workers, thread_name_prefix=f'pagewright-{name}') as pool:
            while True:
                if result.failure is None:
                    self._start_ready(pool, run, waiting, done, running)
                if not running:
                    break
                finished, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in finished:
                    task_name = running.pop(future)
                    exc = future.exception()
                    if exc is not None:
                        report_error(f'{task_name} failed', exc)
                        if result.failure is None:
                            result.failure = TaskFailure(task_name, exc)
                    else:
                        done.add(task_name)
                        result.completed.append(task_name)

        if result.ok:
            print_with_style(f'✓ {name} finished', style='bold green')
        else:
            skipped = sorted(waiting)
            if skipped:
                print_with_style(f'Not started: {", ".join(skipped)}', style='yellow')
            report_error(f'{name} failed in {result.failure.task}', result.failure.cause)
        return result

    def _start_ready(self,
                     pool: ThreadPoolExecutor,
                     run: BuildRun,
                     waiting: dict[str, frozenset[str]],
                     done: set[str],
                     running: dict[Future, str]):
        if any(self.tasks[n].exclusive for n in running.values()):
            return
        for task_name, preds in list(waiting.items()):
            if not preds <= done:
                continue
            task = self.tasks[task_name]
            if task.exclusive and running:
                return
            del waiting[task_name]
            running[pool.submit(self._execute, task, run)] = task_name
            if task.exclusive:
                return
