"""
Incremental rebuilds: filesystem events are classified against a fixed table
of glob bindings, and each binding re-runs its pipeline, then asks connected
browsers to reload.
"""
from __future__ import annotations

import os
import threading
import typing as t
from dataclasses import dataclass
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .paths import glob_base, glob_match
from .pretty_utils import print_with_style, report_error

if t.TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from .graph import PipelineResult
    from .site import SiteLayout


ReloadKind = t.Literal['page', 'css']
HANDLED_EVENTS = {'created', 'modified', 'deleted', 'moved'}


@dataclass(frozen=True)
class WatchBinding:
    """
    Run @pipeline when a path matching the glob @pattern changes, then send a
    @reload notification.
    """
    pattern: str
    pipeline: str
    reload: ReloadKind = 'page'

    def matches(self, rel_path: str) -> bool:
        return glob_match(self.pattern, rel_path)


class WatchDispatchError(Exception):
    """
    Raised (and reported, never propagated) for an event that matches no
    binding.
    """
    def __init__(self, path: str):
        self.path = path
        super().__init__(f'No watch binding for {path}')


def site_bindings(layout: SiteLayout) -> list[WatchBinding]:
    """
    The binding table for a site, most specific first.
    """
    rel = layout.rel
    src = rel(layout.src)
    bindings = [
        WatchBinding(f'{rel(layout.pages)}/**/*.html', 'pages'),
        WatchBinding(f'{src}/{{layouts,partials,data,helpers}}/**', 'templates'),
        WatchBinding(f'{rel(layout.blocks)}/**/*.{{css,scss,sass}}', 'block-styles', 'css'),
        WatchBinding(f'{rel(layout.blocks)}/**', 'blocks'),
        WatchBinding(f'{rel(layout.styles_dir)}/**/*.{{css,scss,sass}}', 'styles', 'css'),
        WatchBinding(f'{rel(layout.scripts_dir)}/**/*.js', 'scripts'),
        WatchBinding(f'{rel(layout.images)}/**', 'images'),
        WatchBinding(f'{rel(layout.styleguide)}/**', 'styleguide'),
    ]
    bindings.extend(
        WatchBinding(pattern, 'copy')
        for pattern in layout.config.paths.assets
        if not pattern.startswith('!')
    )
    return bindings


def watch_directories(root: Path, bindings: Iterable[WatchBinding]) -> list[Path]:
    """
    The existing directories that cover every binding's pattern, without
    nested duplicates.
    """
    candidates = sorted({root / glob_base(b.pattern) for b in bindings})
    found: list[Path] = []
    for path in candidates:
        if not path.is_dir():
            continue
        if any(path.is_relative_to(parent) for parent in found):
            continue
        found.append(path)
    return found


def pipeline_lanes(pipelines: Iterable[str],
                   conflicts: t.Callable[[str, str], bool] | None = None) -> dict[str, str]:
    """
    Map each of @pipelines to the name of its lane. Pipelines that
    @conflicts reports as unsafe to run together, directly or through a
    third pipeline, share a lane; without @conflicts every pipeline is its own
    lane.
    """
    names = list(dict.fromkeys(pipelines))
    parent = {name: name for name in names}

    def find(name: str):
        while parent[name] != name:
            name = parent[name]
        return name

    if conflicts is not None:
        for i, a in enumerate(names):
            for b in names[i + 1:]:
                if find(a) != find(b) and conflicts(a, b):
                    parent[find(b)] = find(a)
    return {name: find(name) for name in names}


class _LaneRunner:
    """
    Serializes the runs of the pipelines in one lane. Triggers inside the
    debounce window or during a run collapse into a single queued run per
    pipeline.
    """
    def __init__(self,
                 run_pipeline: t.Callable[[str], PipelineResult],
                 notify_reload: t.Callable[[ReloadKind], object],
                 debounce: float,
                 idle: threading.Condition):
        self.run_pipeline = run_pipeline
        self.notify_reload = notify_reload
        self.debounce = debounce
        self.idle = idle
        self.running = False
        self.queued: dict[str, ReloadKind] = {}
        self.timer: threading.Timer | None = None

    @property
    def busy(self):
        return self.running or self.timer is not None

    def trigger(self, binding: WatchBinding):
        with self.idle:
            previous = self.queued.get(binding.pipeline)
            # A full page reload also picks up new stylesheets.
            self.queued[binding.pipeline] = 'page' if 'page' in (previous, binding.reload) else 'css'
            if self.running or self.timer is not None:
                return
            if self.debounce > 0:
                self.timer = threading.Timer(self.debounce, self._begin)
                self.timer.daemon = True
                self.timer.start()
            else:
                self.running = True
                threading.Thread(target=self._loop, daemon=True).start()

    def _begin(self):
        with self.idle:
            self.timer = None
            self.running = True
        self._loop()

    def _run(self, pipeline: str, reload: ReloadKind):
        try:
            result = self.run_pipeline(pipeline)
            if not result.ok:
                print_with_style('Rebuild failed; reloading with partial output', style='yellow')
        except Exception as e:
            report_error(f'watch pipeline {pipeline} crashed', e)
        try:
            self.notify_reload(reload)
        except Exception as e:
            report_error('reload notification failed', e)

    def _loop(self):
        while True:
            with self.idle:
                batch, self.queued = self.queued, {}
                if not batch:
                    self.running = False
                    self.idle.notify_all()
                    return
            for pipeline, reload in batch.items():
                self._run(pipeline, reload)


class _EventHandler(FileSystemEventHandler):
    def __init__(self, controller: WatchController):
        self.controller = controller

    def on_any_event(self, event: FileSystemEvent):
        if event.is_directory or event.event_type not in HANDLED_EVENTS:
            return
        path = event.dest_path if event.event_type == 'moved' else event.src_path
        self.controller.dispatch(Path(os.fsdecode(path)))


class WatchController:
    """
    Dispatch filesystem changes to pipelines.

    :param run_pipeline: Runs a pipeline by name and returns its result.
    :param notify_reload: Called with the binding's reload kind after every
        run, whether it succeeded or not.
    :param root: Event paths are matched relative to this directory.
    :param debounce: Seconds to wait after the first event before running.
    :param ignore: Directories whose events are dropped silently, such as the
        build output.
    :param conflicts: Reports whether two pipelines are unsafe to run at the
        same time, such as `TaskGraph.pipelines_overlap`. Conflicting
        pipelines are run one after another. A pipeline never overlaps itself.
    """
    def __init__(self,
                 run_pipeline: t.Callable[[str], PipelineResult],
                 notify_reload: t.Callable[[ReloadKind], object],
                 root: Path,
                 debounce: float = 0.1,
                 ignore: Sequence[Path] = (),
                 conflicts: t.Callable[[str, str], bool] | None = None):
        self.run_pipeline = run_pipeline
        self.notify_reload = notify_reload
        self.root = root
        self.debounce = debounce
        self.ignore = list(ignore)
        self.conflicts = conflicts
        self.bindings: list[WatchBinding] = []
        self._idle = threading.Condition()
        self._runners: dict[str, _LaneRunner] = {}
        self._observer = None

    def start(self, bindings: Sequence[WatchBinding], directories: Iterable[Path] = ()):
        """
        Install @bindings and begin observing @directories recursively.
        Without directories, events only arrive through `dispatch()`.
        """
        self.bindings = list(bindings)
        lanes = pipeline_lanes((b.pipeline for b in self.bindings), self.conflicts)
        lane_runners = {
            lane: _LaneRunner(self.run_pipeline, self.notify_reload, self.debounce, self._idle)
            for lane in set(lanes.values())
        }
        self._runners = {pipeline: lane_runners[lane] for pipeline, lane in lanes.items()}
        directories = list(directories)
        if directories:
            self._observer = Observer()
            handler = _EventHandler(self)
            for directory in directories:
                self._observer.schedule(handler, str(directory), recursive=True)
                print_with_style(f'Watching {directory}', style='cyan')
            self._observer.start()
        return self

    def classify(self, path: Path) -> WatchBinding | None:
        """
        Return the first binding matching @path, in declared order.
        """
        rel = path.relative_to(self.root) if path.is_absolute() else path
        rel_path = rel.as_posix()
        for binding in self.bindings:
            if binding.matches(rel_path):
                return binding
        return None

    def dispatch(self, path: Path) -> WatchBinding | None:
        """
        Schedule the pipeline bound to @path. Unmatched paths are reported and
        otherwise ignored.
        """
        if path.is_absolute():
            if not path.is_relative_to(self.root):
                return None
            if any(path.is_relative_to(ignored) for ignored in self.ignore):
                return None
        binding = self.classify(path)
        if binding is None:
            report_error('watch', WatchDispatchError(str(path)))
            return None
        print_with_style(f'Changed: {path} → {binding.pipeline}', style='cyan')
        self._runners[binding.pipeline].trigger(binding)
        return binding

    def wait_idle(self, timeout: float | None = None) -> bool:
        """
        Wait until no binding is running or scheduled.
        """
        with self._idle:
            return self._idle.wait_for(
                lambda: not any(r.busy for r in self._runners.values()),
                timeout,
            )

    def stop(self, timeout: float | None = None):
        """
        Stop observing and let in-flight runs finish.
        """
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        self.wait_idle(timeout)
