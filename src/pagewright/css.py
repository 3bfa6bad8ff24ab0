"""
Stylesheet Steps: compilation, vendor prefixing and minification, linting,
and detection of unused selectors.
"""
from __future__ import annotations

import abc
import re
import typing as t
from pathlib import Path

from .core import FileStep, TransformError
from .dependencies import PipDependency

if t.TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    import tinycss2.ast as c2ast


IMPORT_RE = re.compile(
    r'''@import\s+(?:url\(\s*)?(['"])(?P<target>[^'"]+)\1\s*\)?\s*(?P<media>[^;]*);'''
)
# Rules whose block holds further rules rather than declarations.
NESTING_AT_RULES = {'media', 'supports', 'layer', 'container', 'document'}


class StyleCompiler(FileStep):
    """
    Abstract base class for stylesheet Steps. Subclasses turn a source file
    into plain CSS; lightningcss then adds vendor prefixes for @browsers and,
    in production, minifies and drops @unused_symbols.
    """
    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('lightningcss'),
        }

    def __init__(self,
                 include_paths: Sequence[Path] = (),
                 browsers: Sequence[str] = ('defaults',),
                 production: bool = False,
                 unused_symbols: set[str] | None = None):
        super().__init__(production)
        self.include_paths = list(include_paths)
        self.browsers = list(browsers)
        self.unused_symbols = unused_symbols

    @abc.abstractmethod
    def compile(self, path: Path) -> str:
        """
        Produce plain CSS from the source file at @path.
        """

    def finish(self, css: str, path: Path) -> str:
        import lightningcss
        try:
            return lightningcss.process_stylesheet(
                css,
                filename=str(path),
                parser_flags=lightningcss.calc_parser_flags(),
                unused_symbols=self.unused_symbols if self.production else None,
                browsers_list=self.browsers,
                minify=self.production,
            )
        except Exception as e:
            raise TransformError(self, path, str(e)) from e

    def __call__(self, path: Path, output_path: Path):
        self.ensure_available()
        css = self.finish(self.compile(path), path)
        self.ensure_parent(output_path)
        output_path.write_text(css, self.encoding, newline=self.newline)


class CSSCompiler(StyleCompiler):
    """
    Plain CSS, with local `@import`s inlined. Imports are looked up next to
    the importing file, then in each include path; `name` also finds
    `_name.css` and `name.css`.
    """
    def _resolve(self, target: str, importer: Path):
        rel = Path(target)
        names = [rel]
        if not rel.suffix:
            names += [rel.with_name(f'_{rel.name}.css'), rel.with_name(f'{rel.name}.css')]
        for base in [importer.parent, *self.include_paths]:
            for name in names:
                candidate = base / name
                if candidate.is_file():
                    return candidate
        return None

    def _inline(self, path: Path, stack: tuple[Path, ...]) -> str:
        if path in stack:
            raise TransformError(self, path, 'circular @import')
        text = path.read_text(self.encoding)

        def replace(match: re.Match[str]):
            target = match.group('target')
            if match.group('media').strip() or '//' in target:
                return match.group(0)
            resolved = self._resolve(target, path)
            if resolved is None:
                raise TransformError(self, path, f'cannot resolve @import {target!r}')
            return self._inline(resolved, stack + (path,))

        return IMPORT_RE.sub(replace, text)

    def compile(self, path: Path) -> str:
        return self._inline(path, ())


class SassCompiler(StyleCompiler):
    """
    SCSS and indented Sass through libsass.
    """
    @classmethod
    def get_dependencies(cls):
        return super().get_dependencies() | {
            PipDependency('libsass', check_name='sass'),
        }

    def compile(self, path: Path) -> str:
        self.ensure_available()
        import sass
        try:
            return sass.compile(
                filename=str(path),
                include_paths=[str(p) for p in self.include_paths],
                output_style='expanded',
            )
        except sass.CompileError as e:
            raise TransformError(self, path, str(e)) from e


def style_compiler_for(path: Path, **kw) -> StyleCompiler:
    """
    Pick the StyleCompiler for a source file by its extension.
    """
    if path.suffix in {'.scss', '.sass'}:
        return SassCompiler(**kw)
    return CSSCompiler(**kw)


# Linting

class LintIssue(t.NamedTuple):
    path: Path
    line: int
    column: int
    message: str

    def __str__(self):
        return f'{self.path}:{self.line}:{self.column}: {self.message}'


class LintError(Exception):
    """
    Exception raised when stylesheet sources fail linting.
    """
    def __init__(self, issues: Sequence[LintIssue]):
        self.issues = list(issues)
        lines = '\n'.join(f'  {i}' for i in self.issues)
        super().__init__(f'{len(self.issues)} lint issue(s):\n{lines}')


SCSS_LINE_COMMENT_RE = re.compile(r'(?<![:\w/])//[^\n]*')
SCSS_VARIABLE_RE = re.compile(r'^[ \t]*\$[\w-]+[ \t]*:[^;]*;', re.MULTILINE)


def _blank(match: re.Match[str]):
    # Keep newlines so reported line numbers stay accurate.
    return re.sub(r'[^\n]', ' ', match.group(0))


def prepare_for_lint(text: str, path: Path) -> str:
    """
    Blank out the SCSS-only syntax that a CSS parser can't read: line
    comments and top-level variable declarations.
    """
    if path.suffix == '.scss':
        text = SCSS_LINE_COMMENT_RE.sub(_blank, text)
        text = SCSS_VARIABLE_RE.sub(_blank, text)
    return text


def _walk_rules(nodes: Iterable[c2ast.Node]) -> t.Iterator[c2ast.Node]:
    import tinycss2
    for node in nodes:
        yield node
        if node.type == 'at-rule' and node.lower_at_keyword in NESTING_AT_RULES and node.content:
            yield from _walk_rules(
                tinycss2.parse_rule_list(node.content, skip_comments=True, skip_whitespace=True)
            )


def lint_stylesheet(path: Path) -> list[LintIssue]:
    """
    Report CSS parse errors in the stylesheet at @path.
    """
    import tinycss2
    text = prepare_for_lint(path.read_text('utf-8'), path)
    rules = tinycss2.parse_stylesheet(text, skip_comments=True, skip_whitespace=True)
    return [
        LintIssue(path, node.source_line, node.source_column, node.message)
        for node in _walk_rules(rules)
        if node.type == 'error'
    ]


def lint_stylesheets(paths: Iterable[Path]) -> list[LintIssue]:
    return [issue for path in paths for issue in lint_stylesheet(path)]


# Unused selector detection

HTML_ATTR_RE = re.compile(r'''\b(class|id)\s*=\s*(["'])(.*?)\2''', re.IGNORECASE | re.DOTALL)


def _prelude_symbols(tokens: Iterable[c2ast.Node], found: set[tuple[str, str]]):
    previous = None
    for token in tokens:
        if token.type == 'ident' and previous is not None and previous.type == 'literal' and previous.value == '.':
            found.add(('.', token.value))
        elif token.type == 'hash' and token.is_identifier:
            found.add(('#', token.value))
        elif token.type == 'function':
            _prelude_symbols(token.arguments, found)
        elif token.type in {'[] block', '() block'}:
            _prelude_symbols(token.content, found)
        previous = token


def declared_symbols(css: str) -> set[tuple[str, str]]:
    """
    Collect the class and id names used in a stylesheet's selectors, as
    `('.', name)` and `('#', name)` pairs.
    """
    import tinycss2
    found: set[tuple[str, str]] = set()
    for node in _walk_rules(tinycss2.parse_stylesheet(css, skip_comments=True, skip_whitespace=True)):
        if node.type == 'qualified-rule':
            _prelude_symbols(node.prelude, found)
    return found


def used_symbols(html_paths: Iterable[Path]) -> set[tuple[str, str]]:
    """
    Collect the class and id names referenced by HTML files.
    """
    found: set[tuple[str, str]] = set()
    for path in html_paths:
        for attr, _quote, value in HTML_ATTR_RE.findall(path.read_text('utf-8')):
            prefix = '.' if attr.lower() == 'class' else '#'
            found.update((prefix, name) for name in value.split())
    return found


def find_unused_symbols(css: str, html_paths: Iterable[Path], ignore: Sequence[str] = ()) -> set[str]:
    """
    Names of classes and ids declared in @css but used by none of
    @html_paths. A selector form (`.name` or `#name`) matching any regex in
    @ignore is kept.
    """
    patterns = [re.compile(p) for p in ignore]
    unused = declared_symbols(css) - used_symbols(html_paths)
    return {
        name for prefix, name in unused
        if not any(p.search(prefix + name) for p in patterns)
    }
