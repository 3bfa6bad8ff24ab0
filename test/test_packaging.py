import ast
import re
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).parent.parent
DISTRIBUTIONS = {
    'PIL': 'pillow',
    'jinja2': 'jinja2',
    'lightningcss': 'lightningcss',
    'markdown_it': 'markdown-it-py',
    'markupsafe': 'markupsafe',
    'minify': 'tdewolff-minify',
    'rich': 'rich',
    'ruamel': 'ruamel.yaml',
    'sass': 'libsass',
    'tinycss2': 'tinycss2',
    'watchdog': 'watchdog',
}


def imported_modules():
    for path in (PROJECT_ROOT / 'src' / 'pagewright').rglob('*.py'):
        for node in ast.walk(ast.parse(path.read_text('utf-8'))):
            if isinstance(node, ast.Import):
                yield from (alias.name.split('.')[0] for alias in node.names)
            elif isinstance(node, ast.ImportFrom) and not node.level:
                yield node.module.split('.')[0]


def requirement_name(requirement: str):
    return re.match(r'[A-Za-z0-9._-]+', requirement).group(0).lower()


def test_third_party_imports_are_declared():
    tomllib = pytest.importorskip('tomllib')
    project = tomllib.loads((PROJECT_ROOT / 'pyproject.toml').read_text('utf-8'))['project']
    declared = {requirement_name(r) for r in project['dependencies']}
    for extra in project['optional-dependencies'].values():
        declared |= {requirement_name(r) for r in extra}

    third_party = {
        name for name in imported_modules()
        if name not in sys.stdlib_module_names and name not in {'__future__', 'pagewright'}
    }
    assert third_party <= DISTRIBUTIONS.keys()
    assert {DISTRIBUTIONS[name] for name in third_party} <= declared
