"""
The site build: the fixed table of tasks and pipelines, bound to a `Config`.
"""
from __future__ import annotations

import typing as t
from pathlib import Path

from .blocks import IFRAME_SUFFIX, collect_blocks, load_block_metadata, write_block_metadata, write_block_indices
from .composer import RenderContext, TemplateComposer
from .config import Config
from .css import LintError, find_unused_symbols, lint_stylesheets, style_compiler_for
from .graph import BuildRun, OutputClaim, Parallel, Series, Task, TaskGraph
from .images import PillowStep
from .paths import expand_globs, find_files, to_output_path
from .pretty_utils import report_notice
from .scripts import ScriptBundleStep
from .simple import DirectCopyStep, remove_tree
from .styleguide import StyleguideStep


STYLE_SUFFIXES = {'.css', '.scss', '.sass'}
LINT_SUFFIXES = {'.css', '.scss'}
SCRIPT_BUNDLE_NAME = 'app.js'

BLOCK_CHAIN = Series(
    'block-metadata',
    Parallel('block-styles', 'block-scripts'),
    'block-page',
    'block-iframe',
    'block-indices',
)
ASSET_STAGE = Parallel('styles', 'scripts', 'images', 'copy')

PIPELINES = {
    'clean': Series('clean'),
    'lint': Series('lint'),
    'standard-build': Series(
        'clean',
        'lint',
        Parallel('pages', 'styles', 'scripts', 'images', 'copy'),
        'styleguide',
    ),
    'building-block-build': Series('clean', BLOCK_CHAIN, ASSET_STAGE),
    # Watch reactions. None of them cleans.
    'pages': Series('pages'),
    'templates': Parallel('pages', BLOCK_CHAIN),
    'blocks': BLOCK_CHAIN,
    'styles': Series('styles'),
    'block-styles': Series('block-styles'),
    'scripts': Series('scripts'),
    'images': Series('images'),
    'copy': Series('copy'),
    'styleguide': Series('styleguide'),
}


class SiteLayout:
    """
    Source and output locations derived from a `Config`.
    """
    def __init__(self, config: Config):
        self.config = config
        paths = config.paths
        self.src = paths.src
        self.dist = paths.dist
        self.build = paths.build
        self.pages = self.src / 'pages'
        self.layouts = self.src / 'layouts'
        self.partials = self.src / 'partials'
        self.data = self.src / 'data'
        self.helpers = self.src / 'helpers'
        self.blocks = self.src / 'building-blocks'
        self.styleguide = self.src / 'styleguide'
        self.styles_dir = paths.styles.parent
        self.scripts_dir = self.src / 'assets' / 'js'
        self.images = self.src / 'assets' / 'img'
        self.build_data = self.build / 'data'
        self.dist_assets = self.dist / 'assets'
        self.dist_blocks = self.dist / 'building-block'

    def rel(self, path: Path):
        return self.config.relative(path)

    def page_context(self):
        return RenderContext(
            pages_root=self.pages,
            layouts_root=self.layouts,
            partials_root=self.partials,
            data_roots=(self.data,),
            helpers_root=self.helpers,
            output_dir=self.dist,
        )

    def block_page_context(self):
        return RenderContext(
            pages_root=self.blocks,
            layouts_root=self.layouts / 'building-blocks' / 'page',
            partials_root=self.partials,
            data_roots=(self.data, self.build_data),
            helpers_root=self.helpers,
            output_dir=self.dist_blocks,
        )

    def block_iframe_context(self):
        return RenderContext(
            pages_root=self.blocks,
            layouts_root=self.layouts / 'building-blocks' / 'iframe',
            partials_root=self.partials / 'building-block',
            data_roots=(self.data,),
            helpers_root=self.helpers,
            output_dir=self.dist_blocks,
            name_suffix=IFRAME_SUFFIX,
        )


class SiteTasks:
    """
    Task bodies for a site. Every body builds its Steps and composers afresh,
    so no state survives from one run to the next.
    """
    def __init__(self, config: Config):
        self.config = config
        self.layout = SiteLayout(config)

    def clean(self, run: BuildRun):
        remove_tree(self.layout.dist)
        remove_tree(self.layout.build)

    def lint(self, run: BuildRun):
        issues = lint_stylesheets(find_files(self.layout.styles_dir, LINT_SUFFIXES))
        if issues:
            raise LintError(issues)

    def pages(self, run: BuildRun):
        TemplateComposer(self.layout.page_context()).render()

    def _unused_symbols(self, path: Path) -> set[str] | None:
        if not self.config.uncss:
            return None
        options = self.config.uncss_options
        html = [p for p, _base in expand_globs(options.get('html', []), self.config.root)]
        css = style_compiler_for(path, include_paths=self.config.paths.sass).compile(path)
        return find_unused_symbols(css, html, options.get('ignore', []))

    def styles(self, run: BuildRun):
        entry = self.config.paths.styles
        if not entry.is_file():
            report_notice(f'No stylesheet entry at {self.layout.rel(entry)}, skipping')
            return
        unused = self._unused_symbols(entry) if run.production else None
        step = style_compiler_for(
            entry,
            include_paths=self.config.paths.sass,
            browsers=self.config.compatibility,
            production=run.production,
            unused_symbols=unused,
        )
        step(entry, self.layout.dist_assets / 'css' / f'{entry.stem}.css')

    def scripts(self, run: BuildRun):
        sources = [p for p, _base in expand_globs(self.config.paths.javascript, self.config.root)]
        if not sources:
            report_notice('No script entries matched, skipping')
            return
        ScriptBundleStep(run.production)(sources, self.layout.dist_assets / 'js' / SCRIPT_BUNDLE_NAME)

    def images(self, run: BuildRun):
        step = PillowStep(run.production)
        for path in find_files(self.layout.images):
            step(path, to_output_path(path, self.layout.images, self.layout.dist_assets / 'img'))

    def copy(self, run: BuildRun):
        step = DirectCopyStep(run.production)
        for path, base in expand_globs(self.config.paths.assets, self.config.root):
            step(path, to_output_path(path, base, self.layout.dist_assets))

    def styleguide(self, run: BuildRun):
        source = self.layout.styleguide / 'index.md'
        template = self.layout.styleguide / 'template.html'
        if not (source.is_file() and template.is_file()):
            report_notice('No styleguide sources, skipping')
            return
        StyleguideStep(template, run.production)(source, self.layout.dist / 'styleguide.html')

    def block_metadata(self, run: BuildRun):
        write_block_metadata(collect_blocks(self.layout.blocks), self.layout.build_data)

    def block_styles(self, run: BuildRun):
        for path in find_files(self.layout.blocks, STYLE_SUFFIXES):
            if path.name.startswith('_'):
                continue
            step = style_compiler_for(
                path,
                include_paths=self.config.paths.sass,
                browsers=self.config.compatibility,
                production=run.production,
            )
            step(path, to_output_path(path, self.layout.blocks, self.layout.dist_blocks, '.css'))

    def block_scripts(self, run: BuildRun):
        step = DirectCopyStep(run.production)
        for path in find_files(self.layout.blocks, {'.js'}):
            step(path, to_output_path(path, self.layout.blocks, self.layout.dist_blocks))

    def block_page(self, run: BuildRun):
        TemplateComposer(self.layout.block_page_context()).render()

    def block_iframe(self, run: BuildRun):
        TemplateComposer(self.layout.block_iframe_context()).render()

    def block_indices(self, run: BuildRun):
        blocks = load_block_metadata(self.layout.build_data)
        template = self.layout.layouts / 'building-blocks' / 'index.html'
        write_block_indices(blocks, self.layout.dist_blocks, template)

    def tasks(self) -> list[Task]:
        lay = self.layout
        dist = lay.rel(lay.dist)
        assets = lay.rel(lay.dist_assets)
        blocks = lay.rel(lay.dist_blocks)

        def claim(root: str, suffixes: t.Iterable[str] | None = None, excludes: t.Iterable[str] = ()):
            return OutputClaim(
                root,
                frozenset(suffixes) if suffixes is not None else None,
                frozenset(excludes),
            )

        return [
            Task('clean', self.clean, exclusive=True,
                 writes=(claim(dist), claim(lay.rel(lay.build)))),
            Task('lint', self.lint),
            Task('pages', self.pages,
                 writes=(claim(dist, {'.html'}, {assets, blocks, f'{dist}/styleguide.html'}),)),
            Task('styles', self.styles, writes=(claim(f'{assets}/css'),)),
            Task('scripts', self.scripts, writes=(claim(f'{assets}/js'),)),
            Task('images', self.images, writes=(claim(f'{assets}/img'),)),
            Task('copy', self.copy,
                 writes=(claim(assets, excludes={f'{assets}/css', f'{assets}/js', f'{assets}/img'}),)),
            Task('styleguide', self.styleguide, writes=(claim(f'{dist}/styleguide.html'),)),
            Task('block-metadata', self.block_metadata, writes=(claim(lay.rel(lay.build_data)),)),
            Task('block-styles', self.block_styles, writes=(claim(blocks, {'.css'}),)),
            Task('block-scripts', self.block_scripts, writes=(claim(blocks, {'.js'}),)),
            Task('block-page', self.block_page, predecessors=frozenset({'block-metadata'}),
                 writes=(claim(blocks, {'.html'}),)),
            Task('block-iframe', self.block_iframe, writes=(claim(blocks, {'.html'}),)),
            Task('block-indices', self.block_indices, predecessors=frozenset({'block-metadata'}),
                 writes=(claim(blocks, {'.html', '.json'}),)),
        ]


def build_graph(config: Config, max_workers: int | None = None) -> TaskGraph:
    """
    Build the site's TaskGraph for @config.
    """
    return TaskGraph(SiteTasks(config).tasks(), PIPELINES, max_workers)
