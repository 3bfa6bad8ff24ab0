from __future__ import annotations

from pathlib import Path

import pytest

from pagewright.paths import expand_globs, find_files, glob_base, glob_match, stem_suffixer, to_output_path


@pytest.mark.parametrize('pattern,path,expected', [
    ('src/*.html', 'src/index.html', True),
    ('src/*.html', 'src/a/index.html', False),
    ('src/**/*.html', 'src/index.html', True),
    ('src/**/*.html', 'src/a/b/index.html', True),
    ('src/**', 'src/a/b/c.txt', True),
    ('src/**', 'srcs/a.txt', False),
    ('src/?.js', 'src/a.js', True),
    ('src/?.js', 'src/ab.js', False),
    ('src/[ab].js', 'src/b.js', True),
    ('src/[!ab].js', 'src/b.js', False),
    ('src/*.{css,scss}', 'src/app.scss', True),
    ('src/*.{css,scss}', 'src/app.sass', False),
    ('src/{a,b/{c,d}}/x', 'src/b/d/x', True),
    ('src/{layouts,partials}/**', 'src/partials/nav/menu.html', True),
    ('src/app.css', 'src/app.css', True),
    ('src/app.css', 'src/appxcss', False),
])
def test_glob_match(pattern: str, path: str, expected: bool):
    assert glob_match(pattern, path) is expected


@pytest.mark.parametrize('pattern,base', [
    ('src/assets/**', 'src/assets'),
    ('!src/assets/css/**', 'src/assets/css'),
    ('src/*/img/*.png', 'src'),
    ('src/{a,b}/x.js', 'src'),
    ('app.js', ''),
    ('src/assets/js/app.js', 'src/assets/js'),
])
def test_glob_base(pattern: str, base: str):
    assert glob_base(pattern) == base


@pytest.fixture
def tree(tmp_path: Path):
    for rel in [
        'src/assets/fonts/a.woff',
        'src/assets/css/app.css',
        'src/assets/js/b.js',
        'src/assets/js/a.js',
        'src/assets/js/vendor/c.js',
        'src/assets/robots.txt',
    ]:
        path = tmp_path / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(rel)
    return tmp_path


def test_expand_globs_with_exclusions(tree: Path):
    found = expand_globs(['src/assets/**', '!src/assets/{css,js}/**'], tree)
    assert found == [
        (tree / 'src/assets/fonts/a.woff', tree / 'src/assets'),
        (tree / 'src/assets/robots.txt', tree / 'src/assets'),
    ]


def test_expand_globs_keeps_pattern_order(tree: Path):
    found = expand_globs(['src/assets/js/b.js', 'src/assets/js/**/*.js', '!src/assets/js/vendor/**'], tree)
    assert [p for p, _base in found] == [
        tree / 'src/assets/js/b.js',
        tree / 'src/assets/js/a.js',
    ]


def test_expand_globs_missing_base(tree: Path):
    assert expand_globs(['nothing/**', 'missing.js'], tree) == []


def test_find_files(tree: Path):
    assert find_files(tree / 'src/assets/js', {'.js'}) == [
        tree / 'src/assets/js/a.js',
        tree / 'src/assets/js/b.js',
        tree / 'src/assets/js/vendor/c.js',
    ]
    assert find_files(tree / 'missing') == []


@pytest.mark.parametrize('args,expected', [
    ((Path('src/pages/a/b.html'), Path('src/pages'), Path('dist')), Path('dist/a/b.html')),
    ((Path('src/blocks/x.scss'), Path('src/blocks'), Path('dist/bb'), '.css'), Path('dist/bb/x.css')),
    ((Path('src/blocks/foo/bar.html'), Path('src/blocks'), Path('dist/bb'), '.html', stem_suffixer('-iframe')),
     Path('dist/bb/foo/bar-iframe.html')),
])
def test_to_output_path(args: tuple, expected: Path):
    assert to_output_path(*args) == expected
