"""
Styleguide generation: a Markdown document split into sections and rendered
into a Jinja template.
"""
from __future__ import annotations

import re
import typing as t
from pathlib import Path

from .core import FileStep
from .dependencies import PipDependency


SECTION_SPLIT_RE = re.compile(r'^={4,}[ \t]*$', re.MULTILINE)
HEADING_RE = re.compile(r'^#{1,6}[ \t]+(.+?)[ \t#]*$', re.MULTILINE)


def slugify(text: str) -> str:
    return re.sub(r'[^a-z0-9]+', '-', text.lower()).strip('-')


class StyleguideStep(FileStep):
    """
    Render a Markdown styleguide. Sections are separated by lines of four or
    more `=`; each section's first heading becomes its title and anchor. The
    Jinja @template receives `sections`, a list of dicts with `title`,
    `anchor` and rendered `body`.
    """
    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('jinja2'),
            PipDependency('markdown-it-py', check_name='markdown_it'),
        }

    def __init__(self, template: Path, production: bool = False):
        super().__init__(production)
        self.template = template

    def split_sections(self, text: str) -> list[dict[str, t.Any]]:
        from markdown_it import MarkdownIt
        from markupsafe import Markup

        processor = MarkdownIt('commonmark').enable('table')
        sections = []
        for chunk in SECTION_SPLIT_RE.split(text):
            if not chunk.strip():
                continue
            heading = HEADING_RE.search(chunk)
            title = heading.group(1) if heading else f'Section {len(sections) + 1}'
            sections.append({
                'title': title,
                'anchor': slugify(title),
                'body': Markup(processor.render(chunk.strip())),
            })
        return sections

    def __call__(self, path: Path, output_path: Path):
        self.ensure_available()
        from jinja2 import Environment, select_autoescape

        env = Environment(autoescape=select_autoescape(default_for_string=True))
        template = env.from_string(self.template.read_text(self.encoding))
        sections = self.split_sections(path.read_text(self.encoding))
        self.ensure_parent(output_path)
        template.stream(sections=sections).dump(str(output_path), encoding=self.encoding)
