"""
pagewright's command line interface: one-off builds, the development loop,
and an audit of optional transforms.
"""
from __future__ import annotations

import argparse
import time
import typing as t
from pathlib import Path

from .config import DEFAULT_CONFIG_NAME, Config, ConfigError, load_config
from .core import Step, StepUnavailableException
from .pretty_utils import print_with_style, report_error
from .site import SiteLayout, build_graph
from .watch import WatchController, site_bindings, watch_directories

if t.TYPE_CHECKING:
    from .graph import PipelineResult, TaskGraph
    from .server import DevServer


STANDARD_BUILD = 'standard-build'
BLOCK_BUILD = 'building-block-build'

EXIT_OK = 0
EXIT_BUILD_FAILED = 1
EXIT_CONFIG_ERROR = 2


def pprint_step(step: t.Type[Step]):
    """
    Prettily display dependency information for the given Step class.
    """
    missing = [str(d) for d in step.get_dependencies() if not d.satisfied]
    if missing:
        text = ', '.join(missing)
        print_with_style(f'✗ {step.__name__} (missing: {text})', style='red')
    else:
        print_with_style(f'✓ {step.__name__}', style='green')


def pprint_missing_deps(step: Step):
    """
    Prettily display an error for the given Step with missing dependencies.
    """
    print_with_style(
        f'{step.__class__.__name__} is unavailable due to missing dependencies!',
        file='stderr',
        style='red'
    )
    for dep in step.get_dependencies():
        if dep.satisfied:
            print_with_style(f'✓ {dep}', style='green')
        else:
            print_with_style(f'✗ {dep}: {dep.install_hint}', style='red')


def build_pipeline_name(blocks: bool):
    return BLOCK_BUILD if blocks else STANDARD_BUILD


def report_result(result: PipelineResult):
    if result.failure is not None and isinstance(result.failure.cause, StepUnavailableException):
        pprint_missing_deps(result.failure.cause.step)


def run_build(graph: TaskGraph, blocks: bool, production: bool) -> int:
    result = graph.run_pipeline(build_pipeline_name(blocks), production=production)
    report_result(result)
    return EXIT_OK if result.ok else EXIT_BUILD_FAILED


def wait_for_interrupt():
    """
    Block until the user presses Ctrl+C.
    """
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print_with_style('Stopping...', style='yellow')


def run_dev(config: Config, graph: TaskGraph, args: argparse.Namespace) -> int:
    """
    Build once, then serve the output and rebuild on changes until
    interrupted. Returns the exit code of the initial build.
    """
    code = run_build(graph, args.blocks, args.production)

    server: DevServer | None = None
    if args.serve:
        from .server import DevServer
        server = DevServer(config.paths.dist, args.port or config.port).start()

    def run_pipeline(name: str):
        result = graph.run_pipeline(name, production=args.production)
        report_result(result)
        return result

    def notify_reload(kind):
        if server is not None:
            server.notify(kind)

    layout = SiteLayout(config)
    bindings = site_bindings(layout)
    controller = WatchController(
        run_pipeline,
        notify_reload,
        config.root,
        ignore=[config.paths.dist, config.paths.build],
        conflicts=graph.pipelines_overlap,
    ).start(bindings, watch_directories(config.root, bindings))
    try:
        wait_for_interrupt()
    finally:
        controller.stop()
        if server is not None:
            server.stop()
    return code


def run_audit() -> int:
    all_steps = set(Step.get_all_steps())
    available_steps = {s for s in all_steps if s.is_available()}
    groups = {
        'Available steps': available_steps,
        'Unavailable steps': all_steps - available_steps,
    }
    for group_label, step_group in groups.items():
        print_with_style(f'{group_label} ({len(step_group)})', style='bold')
        for step in sorted(step_group, key=lambda s: s.__name__):
            pprint_step(step)
    return EXIT_OK


def make_parser():
    parser = argparse.ArgumentParser(prog='pagewright', description='Build a pagewright site.')
    commands = parser.add_subparsers(dest='command', required=True)

    def add_build_options(sub: argparse.ArgumentParser):
        sub.add_argument('-c', '--config',
                         help='path to the YAML config file',
                         type=Path,
                         default=Path(DEFAULT_CONFIG_NAME))
        sub.add_argument('--production',
                         help='minify and optimize output',
                         action='store_true')
        sub.add_argument('--blocks',
                         help='run the building-block build instead of the standard one',
                         action='store_true')

    build = commands.add_parser('build', help='build the site once')
    add_build_options(build)

    dev = commands.add_parser('dev', help='build, serve and rebuild on changes')
    add_build_options(dev)
    dev.add_argument('-p', '--port',
                     help='port to serve from; defaults to the config PORT',
                     type=int,
                     default=None)
    dev.add_argument('--no-serve',
                     help='watch and rebuild without serving',
                     action='store_false',
                     dest='serve')

    commands.add_parser('audit', help='show which optional transforms are installed')
    return parser


def main(arguments: list[str] | None = None) -> int:
    """
    pagewright main function. Returns the process exit code.
    """
    args = make_parser().parse_args(arguments)
    if args.command == 'audit':
        return run_audit()

    try:
        config = load_config(args.config)
    except ConfigError as e:
        report_error('Invalid configuration', e)
        return EXIT_CONFIG_ERROR
    graph = build_graph(config)

    if args.command == 'build':
        return run_build(graph, args.blocks, args.production)
    return run_dev(config, graph, args)
