"""
Script bundling: ordered concatenation, minified in production.
"""
from __future__ import annotations

import json
import os
import typing as t
from pathlib import Path

from .core import BundleStep, TransformError
from .dependencies import PipDependency

if t.TYPE_CHECKING:
    from collections.abc import Sequence


JS_MIMETYPE = 'application/javascript'
BASE64_DIGITS = 'ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/'

# (source index, source line) for each bundle line, None for added lines.
LineOrigins = list[t.Optional[tuple[int, int]]]


def encode_vlq(value: int) -> str:
    """
    Encode @value as a source map base64 VLQ.
    """
    value = (-value << 1) | 1 if value < 0 else value << 1
    encoded = ''
    while True:
        digit = value & 31
        value >>= 5
        if value:
            digit |= 32
        encoded += BASE64_DIGITS[digit]
        if not value:
            return encoded


def encode_mappings(origins: LineOrigins) -> str:
    """
    Build the `mappings` field of a version 3 source map that maps the start
    of each bundle line to the start of its source line.
    """
    lines = []
    last_source = last_line = 0
    for origin in origins:
        if origin is None:
            lines.append('')
            continue
        source, line = origin
        lines.append(''.join([
            encode_vlq(0),
            encode_vlq(source - last_source),
            encode_vlq(line - last_line),
            encode_vlq(0),
        ]))
        last_source, last_line = source, line
    return ';'.join(lines)


class ScriptBundleStep(BundleStep):
    """
    Join script sources, in the given order, into one file. Development
    builds mark where each source starts and get a `.map` source map beside
    the bundle; production builds are minified with tdewolff-minify.
    """
    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('tdewolff-minify', check_name='minify'),
        }

    def _lines(self, paths: Sequence[Path]) -> tuple[list[str], LineOrigins]:
        lines: list[str] = []
        origins: LineOrigins = []
        for index, path in enumerate(paths):
            if index:
                lines.append('')
                origins.append(None)
            if not self.production:
                lines.append(f'/* {path.name} */')
                origins.append(None)
            text = path.read_text(self.encoding).rstrip()
            if not text:
                continue
            source_lines = text.split('\n')
            lines.extend(source_lines)
            origins.extend((index, n) for n in range(len(source_lines)))
            # Terminate each source so it cannot run into the next.
            if not text.endswith(';'):
                lines.append(';')
                origins.append(None)
        return lines, origins

    def bundle(self, paths: Sequence[Path]) -> str:
        lines, _origins = self._lines(paths)
        return '\n'.join(lines) + '\n'

    def source_map(self, paths: Sequence[Path], output_path: Path) -> dict[str, t.Any]:
        _lines, origins = self._lines(paths)
        return {
            'version': 3,
            'file': output_path.name,
            'sources': [Path(os.path.relpath(p, output_path.parent)).as_posix() for p in paths],
            'names': [],
            'mappings': encode_mappings(origins),
        }

    def minify(self, data: str) -> str:
        self.ensure_available()
        import minify
        try:
            return minify.string(JS_MIMETYPE, data)
        except ValueError as e:
            raise TransformError(self, None, str(e)) from e

    def __call__(self, paths: Sequence[Path], output_path: Path):
        data = self.bundle(paths)
        self.ensure_parent(output_path)
        if self.production:
            data = self.minify(data)
        else:
            map_path = output_path.with_name(f'{output_path.name}.map')
            map_path.write_text(json.dumps(self.source_map(paths, output_path), indent=2), self.encoding)
            data += f'//# sourceMappingURL={map_path.name}\n'
        output_path.write_text(data, self.encoding, newline=self.newline)
