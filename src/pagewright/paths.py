"""
Glob matching and output path calculation.

Globs are matched against POSIX paths relative to the project root. They
support `**` (any number of directories), `*`, `?`, `[...]` character classes
and `{a,b}` alternatives. In glob lists, a pattern starting with `!` excludes
whatever it matches.
"""
from __future__ import annotations

import functools
import re
import typing as t
from pathlib import Path


_MAGIC = re.compile(r'[*?\[{]')


def _translate(pattern: str) -> str:
    out: list[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        char = pattern[i]
        if char == '*':
            if pattern.startswith('**', i):
                i += 2
                if pattern.startswith('/', i):
                    # 'a/**/b' also matches 'a/b'.
                    out.append('(?:.*/)?')
                    i += 1
                else:
                    out.append('.*')
                continue
            out.append('[^/]*')
        elif char == '?':
            out.append('[^/]')
        elif char == '[':
            end = pattern.find(']', i + 1)
            if end == -1:
                out.append(re.escape(char))
            else:
                body = pattern[i + 1:end]
                if body.startswith('!'):
                    body = '^' + body[1:]
                out.append(f'[{body}]')
                i = end
        elif char == '{':
            end = _matching_brace(pattern, i)
            if end == -1:
                out.append(re.escape(char))
            else:
                options = _split_options(pattern[i + 1:end])
                out.append('(?:' + '|'.join(_translate(o) for o in options) + ')')
                i = end
        else:
            out.append(re.escape(char))
        i += 1
    return ''.join(out)


def _matching_brace(pattern: str, start: int):
    depth = 0
    for pos in range(start, len(pattern)):
        if pattern[pos] == '{':
            depth += 1
        elif pattern[pos] == '}':
            depth -= 1
            if depth == 0:
                return pos
    return -1


def _split_options(body: str):
    options = []
    depth = 0
    current = ''
    for char in body:
        if char == ',' and depth == 0:
            options.append(current)
            current = ''
            continue
        if char == '{':
            depth += 1
        elif char == '}':
            depth -= 1
        current += char
    options.append(current)
    return options


@functools.lru_cache(maxsize=None)
def compile_glob(pattern: str) -> re.Pattern[str]:
    """
    Compile a glob pattern into an anchored regular expression.
    """
    return re.compile(_translate(pattern) + r'\Z')


def glob_match(pattern: str, rel_path: str | Path) -> bool:
    """
    Check whether the root-relative @rel_path matches @pattern.
    """
    if isinstance(rel_path, Path):
        rel_path = rel_path.as_posix()
    return compile_glob(pattern).match(rel_path) is not None


def glob_base(pattern: str) -> str:
    """
    Return the leading directories of @pattern that contain no glob magic.
    This is the directory that matched files are placed relative to when
    copied.
    """
    parts = pattern.lstrip('!').split('/')
    base: list[str] = []
    for part in parts[:-1]:
        if _MAGIC.search(part):
            break
        base.append(part)
    return '/'.join(base)


def expand_globs(patterns: t.Sequence[str], root: Path) -> list[tuple[Path, Path]]:
    """
    Find the files under @root matching a list of glob @patterns, in pattern
    order, as `(path, base_dir)` pairs. Patterns starting with `!` exclude
    files matched by any positive pattern. Each file is listed once, with the
    base of the first pattern that matched it.
    """
    excludes = [p[1:] for p in patterns if p.startswith('!')]
    seen: set[Path] = set()
    found: list[tuple[Path, Path]] = []
    for pattern in patterns:
        if pattern.startswith('!'):
            continue
        base = root / glob_base(pattern)
        if not _MAGIC.search(pattern):
            candidates = [root / pattern]
        elif base.is_dir():
            candidates = sorted(base.rglob('*'))
        else:
            candidates = []
        for candidate in candidates:
            if candidate in seen or not candidate.is_file():
                continue
            rel = candidate.relative_to(root).as_posix()
            if not glob_match(pattern, rel):
                continue
            if any(glob_match(ex, rel) for ex in excludes):
                continue
            seen.add(candidate)
            found.append((candidate, base))
    return found


def find_files(root: Path, suffixes: t.Iterable[str] | None = None):
    """
    Recursively list the files under @root, sorted, optionally restricted to
    the given @suffixes. A missing @root yields nothing.
    """
    if not root.is_dir():
        return []
    suffixes = set(suffixes) if suffixes is not None else None
    return [
        p for p in sorted(root.rglob('*'))
        if p.is_file() and (suffixes is None or p.suffix in suffixes)
    ]


def to_output_path(path: Path,
                   source_root: Path,
                   dest: Path,
                   ext: str | None = None,
                   transform: t.Callable[[Path], Path] | None = None) -> Path:
    """
    Mirror @path, relative to @source_root, under @dest. If @ext is given it
    replaces the file extension; @transform may further adjust the relative
    path before it is joined to @dest.
    """
    rel = path.relative_to(source_root)
    if ext is not None:
        rel = rel.with_suffix(ext)
    if transform:
        rel = transform(rel)
    return dest / rel


def stem_suffixer(suffix: str) -> t.Callable[[Path], Path]:
    """
    Build a transform for `to_output_path()` that appends @suffix to a path's
    stem: `foo/bar.html` becomes `foo/bar<suffix>.html`.
    """
    def transform(rel: Path):
        return rel.with_name(f'{rel.stem}{suffix}{rel.suffix}')
    return transform
