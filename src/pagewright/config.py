"""
Loading and validation of the `config.yml` settings document.
"""
from __future__ import annotations

import typing as t
from dataclasses import dataclass, field
from pathlib import Path

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError


DEFAULT_CONFIG_NAME = 'config.yml'
DEFAULT_STYLES_ENTRY = 'src/assets/scss/app.scss'


class InputPaths(t.TypedDict, total=False):
    """
    TypedDict describing the `PATHS` group of a config file.
    """
    src: str
    dist: str
    build: str
    assets: list[str]
    javascript: list[str]
    sass: list[str]
    styles: str


class InputConfig(t.TypedDict, total=False):
    """
    TypedDict describing a config file as written.
    """
    COMPATIBILITY: list[str]
    PORT: int
    UNCSS_OPTIONS: dict[str, t.Any]
    UNCSS_ENABLED: bool
    PATHS: InputPaths


class ConfigError(Exception):
    """
    Exception raised for a missing or invalid config file or key.
    """
    def __init__(self, message: str, key: str | None = None):
        self.key = key
        super().__init__(message)


@dataclass(frozen=True)
class PathConfig:
    """
    Resolved project paths. Globs stay as strings relative to the project
    root, since they are matched against root-relative paths.
    """
    src: Path
    dist: Path
    build: Path
    styles: Path
    assets: tuple[str, ...]
    javascript: tuple[str, ...]
    sass: tuple[Path, ...]


@dataclass(frozen=True)
class Config:
    """
    Immutable settings for one process run.
    """
    root: Path
    compatibility: tuple[str, ...]
    port: int
    paths: PathConfig
    uncss_options: dict[str, t.Any] = field(default_factory=dict, hash=False)
    uncss: bool = False

    def relative(self, path: Path):
        """
        Return @path relative to the project root, as a POSIX string. Paths
        outside the root stay absolute.
        """
        if path.is_relative_to(self.root):
            return path.relative_to(self.root).as_posix()
        return path.as_posix()


def _require(data: t.Mapping[str, t.Any], key: str, kind: type | tuple[type, ...], label: str | None = None):
    label = label or key
    if key not in data or data[key] is None:
        raise ConfigError(f'Missing required config key {label!r}', label)
    value = data[key]
    # bool is an int subclass, but `PORT: true` is not a port.
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise ConfigError(f'Config key {label!r} has an invalid value: {value!r}', label)
    return value


def _string_list(data: t.Mapping[str, t.Any], key: str, label: str):
    value = _require(data, key, list, label)
    if not all(isinstance(item, str) for item in value):
        raise ConfigError(f'Config key {label!r} must be a list of strings', label)
    return tuple(value)


def parse_config(data: t.Any, root: Path) -> Config:
    """
    Validate a parsed config document and build a `Config` from it, resolving
    paths against @root.
    """
    if not isinstance(data, dict):
        raise ConfigError('Config document must be a mapping')
    data = t.cast(InputConfig, data)

    compatibility = _string_list(data, 'COMPATIBILITY', 'COMPATIBILITY')
    port = _require(data, 'PORT', int)
    if not 0 < port < 65536:
        raise ConfigError(f'Config key \'PORT\' is out of range: {port}', 'PORT')

    raw_paths: InputPaths = _require(data, 'PATHS', dict)
    dist = _require(raw_paths, 'dist', str, 'PATHS.dist')
    paths = PathConfig(
        src=root / raw_paths.get('src', 'src'),
        dist=root / dist,
        build=root / raw_paths.get('build', 'build'),
        styles=root / raw_paths.get('styles', DEFAULT_STYLES_ENTRY),
        assets=_string_list(raw_paths, 'assets', 'PATHS.assets'),
        javascript=_string_list(raw_paths, 'javascript', 'PATHS.javascript'),
        sass=tuple(root / p for p in _string_list(raw_paths, 'sass', 'PATHS.sass')),
    )

    uncss_options = data.get('UNCSS_OPTIONS') or {}
    if not isinstance(uncss_options, dict):
        raise ConfigError('Config key \'UNCSS_OPTIONS\' must be a mapping', 'UNCSS_OPTIONS')
    uncss = data.get('UNCSS_ENABLED', False)
    if not isinstance(uncss, bool):
        raise ConfigError('Config key \'UNCSS_ENABLED\' must be a boolean', 'UNCSS_ENABLED')

    return Config(
        root=root,
        compatibility=compatibility,
        port=port,
        paths=paths,
        uncss_options=uncss_options,
        uncss=uncss,
    )


def load_config(path: Path | str = DEFAULT_CONFIG_NAME) -> Config:
    """
    Read and validate a YAML config file. Relative paths inside it are
    resolved against the file's directory.
    """
    path = Path(path).resolve()
    try:
        text = path.read_text('utf-8')
    except OSError as e:
        raise ConfigError(f'Could not read config file {path}: {e}') from e
    try:
        data = YAML(typ='safe').load(text)
    except YAMLError as e:
        raise ConfigError(f'Could not parse config file {path}: {e}') from e
    return parse_config(data, path.parent)
