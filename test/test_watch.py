from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

import pagewright.watch
from pagewright.graph import PipelineResult, TaskFailure
from pagewright.site import SiteLayout, build_graph
from pagewright.test_harness import load_example
from pagewright.watch import (
    WatchBinding,
    WatchController,
    WatchDispatchError,
    pipeline_lanes,
    site_bindings,
    watch_directories,
)


EXAMPLE_PATH = Path(__file__).parent.parent / 'examples' / 'starter'
ROOT = Path('/project')


class FakeBuild:
    def __init__(self, fail: bool = False, block: bool = False):
        self.runs: list[str] = []
        self.reloads: list[str] = []
        self.fail = fail
        self.lock = threading.Lock()
        self.active = 0
        self.peak = 0
        self.started = threading.Event()
        self.release = threading.Event()
        if not block:
            self.release.set()

    def run_pipeline(self, name: str):
        with self.lock:
            self.runs.append(name)
            self.active += 1
            self.peak = max(self.peak, self.active)
        self.started.set()
        assert self.release.wait(5)
        with self.lock:
            self.active -= 1
        result = PipelineResult(name)
        if self.fail:
            result.failure = TaskFailure(name, RuntimeError('boom'))
        return result

    def notify_reload(self, kind: str):
        self.reloads.append(kind)


BINDINGS = [
    WatchBinding('src/pages/**/*.html', 'pages'),
    WatchBinding('src/assets/css/**/*.css', 'styles', 'css'),
    WatchBinding('src/**', 'copy'),
]


def make_controller(build: FakeBuild, debounce: float = 0.05, **kw):
    return WatchController(build.run_pipeline, build.notify_reload, ROOT, debounce=debounce, **kw).start(BINDINGS)


def test_events_in_debounce_window_run_once():
    build = FakeBuild()
    controller = make_controller(build, debounce=0.2)
    for _ in range(3):
        controller.dispatch(ROOT / 'src' / 'pages' / 'index.html')
    assert controller.wait_idle(5)
    assert build.runs == ['pages']
    assert build.reloads == ['page']


def test_events_during_run_coalesce():
    build = FakeBuild(block=True)
    controller = make_controller(build)
    controller.dispatch(ROOT / 'src' / 'pages' / 'index.html')
    assert build.started.wait(5)

    for _ in range(3):
        controller.dispatch(ROOT / 'src' / 'pages' / 'about.html')
    build.release.set()

    assert controller.wait_idle(5)
    assert build.runs == ['pages', 'pages']
    assert build.reloads == ['page', 'page']


def test_bindings_run_independently():
    build = FakeBuild(block=True)
    controller = make_controller(build, debounce=0)
    controller.dispatch(ROOT / 'src' / 'pages' / 'index.html')
    assert build.started.wait(5)
    controller.dispatch(ROOT / 'src' / 'assets' / 'css' / 'app.css')
    # The second binding starts while the first is still running.
    deadline = time.monotonic() + 5
    while len(build.runs) < 2 and time.monotonic() < deadline:
        time.sleep(0.01)
    assert sorted(build.runs) == ['pages', 'styles']
    build.release.set()
    assert controller.wait_idle(5)


@pytest.mark.parametrize('path,pipeline', [
    ('src/pages/index.html', 'pages'),
    ('src/pages/a/b.html', 'pages'),
    ('src/pages/notes.txt', 'copy'),
    ('src/assets/css/app.css', 'styles'),
    ('src/assets/js/app.js', 'copy'),
])
def test_first_match_wins(path: str, pipeline: str):
    controller = make_controller(FakeBuild())
    assert controller.classify(ROOT / path).pipeline == pipeline
    assert controller.classify(Path(path)).pipeline == pipeline


def test_unmatched_event_runs_nothing(monkeypatch: pytest.MonkeyPatch):
    reported = []
    monkeypatch.setattr(pagewright.watch, 'report_error', lambda message, cause=None: reported.append(cause))
    build = FakeBuild()
    controller = make_controller(build)

    assert controller.dispatch(ROOT / 'README.md') is None
    assert controller.wait_idle(5)

    assert build.runs == []
    assert build.reloads == []
    [error] = reported
    assert isinstance(error, WatchDispatchError)
    assert error.path == str(ROOT / 'README.md')


def test_ignored_directories_are_dropped():
    build = FakeBuild()
    controller = make_controller(build, ignore=[ROOT / 'src' / 'dist'])
    assert controller.dispatch(ROOT / 'src' / 'dist' / 'index.html') is None
    assert controller.dispatch(Path('/elsewhere/file.html')) is None
    assert controller.wait_idle(5)
    assert build.runs == []


def test_reload_after_failed_run():
    build = FakeBuild(fail=True)
    controller = make_controller(build)
    controller.dispatch(ROOT / 'src' / 'assets' / 'css' / 'app.css')
    assert controller.wait_idle(5)
    assert build.runs == ['styles']
    assert build.reloads == ['css']


def test_reload_after_crashed_run():
    reloads = []

    def crash(name: str):
        raise RuntimeError('crash')

    controller = WatchController(crash, reloads.append, ROOT, debounce=0).start(BINDINGS)
    controller.dispatch(ROOT / 'src' / 'pages' / 'index.html')
    assert controller.wait_idle(5)
    assert reloads == ['page']


def test_bindings_sharing_a_pipeline_never_overlap():
    build = FakeBuild(block=True)
    bindings = [
        WatchBinding('src/building-blocks/**/*.css', 'styles', 'css'),
        WatchBinding('src/assets/css/**/*.css', 'styles', 'css'),
    ]
    controller = WatchController(build.run_pipeline, build.notify_reload, ROOT, debounce=0).start(bindings)
    controller.dispatch(ROOT / 'src' / 'assets' / 'css' / 'app.css')
    assert build.started.wait(5)
    controller.dispatch(ROOT / 'src' / 'building-blocks' / 'card' / 'card.css')
    time.sleep(0.1)
    assert build.runs == ['styles']
    build.release.set()

    assert controller.wait_idle(5)
    assert build.runs == ['styles', 'styles']
    assert build.peak == 1
    assert build.reloads == ['css', 'css']


def test_conflicting_pipelines_run_one_after_another():
    build = FakeBuild(block=True)
    bindings = [
        WatchBinding('src/layouts/**', 'templates'),
        WatchBinding('src/building-blocks/**', 'blocks'),
        *BINDINGS,
    ]
    controller = WatchController(
        build.run_pipeline,
        build.notify_reload,
        ROOT,
        debounce=0,
        conflicts=lambda a, b: {a, b} == {'templates', 'blocks'},
    ).start(bindings)
    controller.dispatch(ROOT / 'src' / 'layouts' / 'default.html')
    assert build.started.wait(5)
    controller.dispatch(ROOT / 'src' / 'building-blocks' / 'card' / 'card.html')
    time.sleep(0.1)
    assert build.runs == ['templates']
    build.release.set()

    assert controller.wait_idle(5)
    assert build.runs == ['templates', 'blocks']
    assert build.peak == 1


def test_queued_reload_kind_prefers_page():
    build = FakeBuild(block=True)
    bindings = [
        WatchBinding('src/assets/css/**', 'styles', 'css'),
        WatchBinding('src/**', 'styles'),
    ]
    controller = WatchController(build.run_pipeline, build.notify_reload, ROOT, debounce=0).start(bindings)
    controller.dispatch(ROOT / 'src' / 'index.html')
    assert build.started.wait(5)
    controller.dispatch(ROOT / 'src' / 'assets' / 'css' / 'app.css')
    controller.dispatch(ROOT / 'src' / 'index.html')
    build.release.set()
    assert controller.wait_idle(5)
    assert build.reloads == ['page', 'page']


def test_pipeline_lanes():
    def conflicts(a: str, b: str):
        return {a, b} in ({'a', 'b'}, {'b', 'c'})

    lanes = pipeline_lanes(['a', 'b', 'c', 'd', 'a'], conflicts)
    assert set(lanes) == {'a', 'b', 'c', 'd'}
    assert lanes['a'] == lanes['b'] == lanes['c'] != lanes['d']
    assert pipeline_lanes(['a', 'b']) == {'a': 'a', 'b': 'b'}


@pytest.fixture
def starter_config(tmp_path: Path):
    return load_example(EXAMPLE_PATH, tmp_path)


@pytest.mark.parametrize('path,pipeline,reload', [
    ('src/pages/index.html', 'pages', 'page'),
    ('src/pages/about/team.html', 'pages', 'page'),
    ('src/layouts/default.html', 'templates', 'page'),
    ('src/partials/header.html', 'templates', 'page'),
    ('src/data/site.yml', 'templates', 'page'),
    ('src/helpers/shout.py', 'templates', 'page'),
    ('src/building-blocks/card/card.css', 'block-styles', 'css'),
    ('src/building-blocks/card/card.html', 'blocks', 'page'),
    ('src/building-blocks/card/card.yml', 'blocks', 'page'),
    ('src/assets/css/app.css', 'styles', 'css'),
    ('src/assets/js/app.js', 'scripts', 'page'),
    ('src/assets/img/logo.svg', 'images', 'page'),
    ('src/styleguide/index.md', 'styleguide', 'page'),
    ('src/assets/fonts/readme.txt', 'copy', 'page'),
])
def test_site_bindings(starter_config, path: str, pipeline: str, reload: str):
    controller = WatchController(print, print, starter_config.root)
    controller.start(site_bindings(SiteLayout(starter_config)))
    binding = controller.classify(starter_config.root / path)
    assert (binding.pipeline, binding.reload) == (pipeline, reload)


def test_watch_directories(starter_config):
    bindings = site_bindings(SiteLayout(starter_config))
    assert watch_directories(starter_config.root, bindings) == [starter_config.root / 'src']


def test_filesystem_events(tmp_path: Path):
    pages = tmp_path / 'src' / 'pages'
    pages.mkdir(parents=True)
    build = FakeBuild()
    controller = WatchController(build.run_pipeline, build.notify_reload, tmp_path, debounce=0.05)
    controller.start(BINDINGS, [tmp_path / 'src'])
    try:
        (pages / 'new.html').write_text('hi')
        deadline = time.monotonic() + 5
        while not build.runs and time.monotonic() < deadline:
            time.sleep(0.05)
    finally:
        controller.stop(5)
    assert 'pages' in build.runs


def test_site_lanes(starter_config):
    graph = build_graph(starter_config)
    bindings = site_bindings(SiteLayout(starter_config))
    lanes = pipeline_lanes((b.pipeline for b in bindings), graph.pipelines_overlap)

    shared = {lanes[name] for name in ('pages', 'templates', 'blocks', 'block-styles')}
    assert len(shared) == 1
    separate = {lanes[name] for name in ('styles', 'scripts', 'images', 'copy', 'styleguide')}
    assert len(separate) == 5
    assert not shared & separate


def test_site_watch_runs_do_not_collide(starter_config):
    graph = build_graph(starter_config)
    results = []

    def run_pipeline(name: str):
        result = graph.run_pipeline(name)
        results.append(result)
        return result

    controller = WatchController(
        run_pipeline,
        lambda kind: None,
        starter_config.root,
        debounce=0,
        conflicts=graph.pipelines_overlap,
    ).start(site_bindings(SiteLayout(starter_config)))
    changed = [
        'src/layouts/default.html',
        'src/building-blocks/card/card.html',
        'src/building-blocks/card/card.css',
        'src/assets/css/app.css',
    ]
    for _ in range(5):
        for path in changed:
            controller.dispatch(starter_config.root / path)
    assert controller.wait_idle(60)

    assert {r.name for r in results} == {'templates', 'blocks', 'block-styles', 'styles'}
    assert all(r.ok for r in results), [r.failure for r in results if not r.ok]
