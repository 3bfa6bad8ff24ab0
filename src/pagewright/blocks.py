"""
Building blocks: self-contained components under `src/building-blocks/`, each
a directory holding pages, styles, scripts and optional YAML metadata. Blocks
are rendered twice, as a documentation page and as a bare iframe variant, and
listed in a generated index.
"""
from __future__ import annotations

import json
import typing as t
from pathlib import Path

from jinja2 import Environment, select_autoescape
from ruamel.yaml.error import YAMLError

from .components.frontmatter import load_yaml
from .composer import MalformedData
from .paths import find_files, stem_suffixer, to_output_path


IFRAME_SUFFIX = '-iframe'
METADATA_NAME = 'blocks.json'

DEFAULT_INDEX_TEMPLATE = '''\
<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>Building Blocks</title>
</head>
<body>
  <h1>Building Blocks</h1>
  {% for category, members in categories.items() %}
  <section id="{{ category }}">
    <h2>{{ category | title }}</h2>
    <ul>
      {% for block in members %}
      {% for page in block.pages %}
      <li><a href="{{ page }}">{{ block.title }}</a> (<a href="{{ block.iframes[loop.index0] }}">iframe</a>)</li>
      {% endfor %}
      {% endfor %}
    </ul>
  </section>
  {% endfor %}
</body>
</html>
'''


def _read_meta(block_dir: Path) -> dict[str, t.Any]:
    for name in (f'{block_dir.name}.yml', f'{block_dir.name}.yaml', 'block.yml', 'block.yaml'):
        path = block_dir / name
        if not path.is_file():
            continue
        try:
            meta = load_yaml(path.read_text('utf-8'))
        except YAMLError as e:
            raise MalformedData(f'invalid block metadata: {e}', path) from e
        if meta is None:
            return {}
        if not isinstance(meta, dict):
            raise MalformedData('block metadata must be a mapping', path)
        return meta
    return {}


def collect_blocks(blocks_root: Path, page_suffixes: t.Iterable[str] = ('.html',)) -> list[dict[str, t.Any]]:
    """
    Describe every block directory under @blocks_root. Page and iframe paths
    are relative to the building-block output directory.
    """
    if not blocks_root.is_dir():
        return []
    blocks = []
    suffixer = stem_suffixer(IFRAME_SUFFIX)
    for block_dir in sorted(p for p in blocks_root.iterdir() if p.is_dir()):
        meta = _read_meta(block_dir)
        pages = find_files(block_dir, page_suffixes)
        block = {
            'name': block_dir.name,
            'title': block_dir.name.replace('-', ' ').replace('_', ' ').title(),
            'category': 'uncategorized',
            **meta,
            'pages': [to_output_path(p, blocks_root, Path(), '.html').as_posix() for p in pages],
            'iframes': [to_output_path(p, blocks_root, Path(), '.html', suffixer).as_posix() for p in pages],
        }
        blocks.append(block)
    return blocks


def write_block_metadata(blocks: list[dict[str, t.Any]], data_dir: Path) -> Path:
    """
    Write @blocks where the block page composer picks it up as the `blocks`
    global.
    """
    data_dir.mkdir(parents=True, exist_ok=True)
    path = data_dir / METADATA_NAME
    path.write_text(json.dumps(blocks, indent=2), 'utf-8')
    return path


def load_block_metadata(data_dir: Path) -> list[dict[str, t.Any]]:
    path = data_dir / METADATA_NAME
    if not path.is_file():
        return []
    return json.loads(path.read_text('utf-8'))


def group_by_category(blocks: t.Iterable[dict[str, t.Any]]) -> dict[str, list[dict[str, t.Any]]]:
    categories: dict[str, list[dict[str, t.Any]]] = {}
    for block in blocks:
        categories.setdefault(str(block.get('category', 'uncategorized')), []).append(block)
    return dict(sorted(categories.items()))


def write_block_indices(blocks: list[dict[str, t.Any]], output_dir: Path, template: Path | None = None):
    """
    Write the building-block index page and a JSON listing into @output_dir.
    @template, if it exists, replaces the built-in index template.
    """
    env = Environment(autoescape=select_autoescape(default_for_string=True))
    if template is not None and template.is_file():
        source = template.read_text('utf-8')
    else:
        source = DEFAULT_INDEX_TEMPLATE
    html = env.from_string(source).render(blocks=blocks, categories=group_by_category(blocks))

    output_dir.mkdir(parents=True, exist_ok=True)
    index = output_dir / 'index.html'
    index.write_text(html, 'utf-8')
    listing = output_dir / METADATA_NAME
    listing.write_text(json.dumps(blocks, indent=2), 'utf-8')
    return [index, listing]
