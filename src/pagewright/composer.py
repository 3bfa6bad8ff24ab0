"""
Page composition: page templates rendered with Jinja, wrapped in a layout,
with partials, helpers and global data resolved from a `RenderContext`.
"""
from __future__ import annotations

import json
import runpy
import typing as t
from dataclasses import dataclass
from pathlib import Path

from jinja2 import BaseLoader, Environment, TemplateError, TemplateNotFound, TemplateSyntaxError, select_autoescape
from markupsafe import Markup
from ruamel.yaml.error import YAMLError

from .components.frontmatter import load_yaml, split_front_matter
from .paths import find_files, stem_suffixer, to_output_path


DATA_SUFFIXES = ('.yml', '.yaml', '.json')
TEMPLATE_SUFFIXES = ('.html', '.htm', '.j2', '.jinja')
# Set by the composer for every page.
RESERVED_KEYS = frozenset({'page', 'root', 'body'})


class CompositionError(Exception):
    """
    Base exception for failures while composing a page.
    """
    def __init__(self, message: str, path: Path | None = None):
        self.path = path
        super().__init__(f'{path}: {message}' if path else message)


class MissingLayout(CompositionError):
    pass


class MissingPartial(CompositionError):
    pass


class MalformedData(CompositionError):
    pass


@dataclass(frozen=True)
class RenderContext:
    """
    The roots used for one composition pass.

    :param pages_root: Directory searched for page templates.
    :param layouts_root: Directory holding `<layout>.html` files.
    :param partials_root: Directory searched recursively for partials.
    :param data_roots: Directories whose data files become global template
        data. Later roots win on conflicting file stems.
    :param helpers_root: Directory of helper modules, or None.
    :param output_dir: Where rendered pages are written.
    :param name_suffix: Appended to each output file's stem.
    :param default_layout: Layout used by pages that don't name one.
    :param page_suffixes: File suffixes treated as pages under @pages_root.
    """
    pages_root: Path
    layouts_root: Path
    partials_root: Path
    data_roots: tuple[Path, ...]
    helpers_root: Path | None
    output_dir: Path
    name_suffix: str = ''
    default_layout: str = 'default'
    page_suffixes: tuple[str, ...] = ('.html',)


def merge_data(global_data: t.Mapping[str, t.Any], page_data: t.Mapping[str, t.Any]) -> dict[str, t.Any]:
    """
    Combine global and page data. The merge is shallow: a page key replaces
    the global value outright, nested mappings included.
    """
    return {**global_data, **page_data}


def load_data_file(path: Path) -> t.Any:
    try:
        text = path.read_text('utf-8')
        if path.suffix == '.json':
            return json.loads(text)
        return load_yaml(text)
    except (YAMLError, ValueError) as e:
        raise MalformedData(f'invalid data file: {e}', path) from e


def load_global_data(data_roots: t.Iterable[Path]) -> dict[str, t.Any]:
    """
    Read the data files directly inside each of @data_roots, keyed by file
    stem.
    """
    data: dict[str, t.Any] = {}
    for root in data_roots:
        if not root.is_dir():
            continue
        for path in sorted(root.iterdir()):
            if path.is_file() and path.suffix in DATA_SUFFIXES:
                data[path.stem] = load_data_file(path)
    return data


class PartialLoader(BaseLoader):
    """
    Jinja loader resolving partials by file stem (`'header'`) or by path
    relative to the partials root (`'nav/menu.html'`).
    """
    def __init__(self, root: Path):
        self.index: dict[str, Path] = {}
        for path in find_files(root, TEMPLATE_SUFFIXES):
            rel = path.relative_to(root)
            self.index.setdefault(rel.as_posix(), path)
            self.index.setdefault(rel.with_suffix('').as_posix(), path)
            self.index.setdefault(path.stem, path)

    def get_source(self, environment: Environment, template: str):
        path = self.index.get(template)
        if path is None:
            raise TemplateNotFound(template)
        mtime = path.stat().st_mtime
        return path.read_text('utf-8'), str(path), lambda: path.stat().st_mtime == mtime

    def list_templates(self):
        return sorted(self.index)


class TemplateComposer:
    """
    Renders every page of one `RenderContext`. Each instance owns its Jinja
    environment, partial index and helpers; build a new one per pass.
    """
    encoding = 'utf-8'

    def __init__(self, context: RenderContext):
        self.context = context
        self.env = Environment(
            loader=PartialLoader(context.partials_root),
            autoescape=select_autoescape(default_for_string=True, default=True),
        )
        if context.helpers_root:
            helpers = self._load_helpers(context.helpers_root)
            self.env.filters.update(helpers)
            self.env.globals.update(helpers)
        self.global_data = load_global_data(context.data_roots)

    @staticmethod
    def _load_helpers(root: Path) -> dict[str, t.Callable]:
        helpers = {}
        for path in find_files(root, {'.py'}):
            namespace = runpy.run_path(str(path))
            helper = namespace.get(path.stem)
            if not callable(helper):
                raise CompositionError(f'helper module does not define {path.stem}()', path)
            helpers[path.stem] = helper
        return helpers

    def find_pages(self) -> list[Path]:
        return find_files(self.context.pages_root, self.context.page_suffixes)

    def output_path(self, page: Path) -> Path:
        transform = stem_suffixer(self.context.name_suffix) if self.context.name_suffix else None
        return to_output_path(page, self.context.pages_root, self.context.output_dir, '.html', transform)

    def read_page(self, page: Path) -> tuple[dict[str, t.Any], str]:
        """
        Split a page into its front matter data and template body.
        """
        try:
            text = page.read_text(self.encoding)
        except UnicodeDecodeError as e:
            raise MalformedData(f'not valid {self.encoding}: {e}', page) from e
        raw_meta, body = split_front_matter(text)
        if raw_meta is None:
            return {}, body
        try:
            meta = load_yaml(raw_meta)
        except YAMLError as e:
            raise MalformedData(f'invalid front matter: {e}', page) from e
        if meta is None:
            return {}, body
        if not isinstance(meta, dict):
            raise MalformedData('front matter must be a mapping', page)
        reserved = sorted(RESERVED_KEYS.intersection(meta))
        if reserved:
            raise MalformedData(f'front matter may not set {", ".join(reserved)}', page)
        return meta, body

    def _layout_source(self, name: str, page: Path):
        path = self.context.layouts_root / f'{name}.html'
        if not path.is_file():
            raise MissingLayout(f'layout {name!r} not found in {self.context.layouts_root}', page)
        return path.read_text(self.encoding)

    def render_page(self, page: Path) -> bytes:
        meta, body = self.read_page(page)
        out_rel = self.output_path(page).relative_to(self.context.output_dir)
        data = merge_data(self.global_data, meta)
        data |= {
            'page': page.stem,
            'root': '../' * (len(out_rel.parts) - 1),
        }
        layout = meta.get('layout', self.context.default_layout)

        try:
            html = self.env.from_string(body).render(data)
            if layout is not False:
                html = self.env.from_string(self._layout_source(str(layout), page)).render(
                    data | {'body': Markup(html)}
                )
        except TemplateNotFound as e:
            raise MissingPartial(f'partial {e.name!r} not found in {self.context.partials_root}', page) from e
        except TemplateSyntaxError as e:
            raise CompositionError(f'template syntax error on line {e.lineno}: {e.message}', page) from e
        except TemplateError as e:
            raise CompositionError(str(e), page) from e
        return html.encode(self.encoding)

    def render(self) -> list[tuple[Path, bytes]]:
        """
        Render every page, writing each to its output path. Existing files
        that no page maps to are left alone.
        """
        rendered = []
        for page in self.find_pages():
            output = self.output_path(page)
            html = self.render_page(page)
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_bytes(html)
            rendered.append((output, html))
        return rendered
