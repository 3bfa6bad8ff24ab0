import hashlib
import pathlib
import shutil

import pagewright.cli
from pagewright.config import Config, load_config
from pagewright.graph import PipelineResult
from pagewright.site import build_graph


def copy_example(path: pathlib.Path, tmp_dir: pathlib.Path):
    project = tmp_dir / path.name
    shutil.copytree(path, project)
    return project


def load_example(path: pathlib.Path, tmp_dir: pathlib.Path) -> Config:
    return load_config(copy_example(path, tmp_dir) / 'config.yml')


def run_example(path: pathlib.Path,
                tmp_dir: pathlib.Path,
                pipeline: str = 'standard-build',
                production: bool = False) -> tuple[Config, PipelineResult]:
    config = load_example(path, tmp_dir)
    result = build_graph(config).run_pipeline(pipeline, production=production)
    return config, result


def run_example_cli(path: pathlib.Path, tmp_dir: pathlib.Path, *arguments: str) -> tuple[Config, int]:
    config = load_example(path, tmp_dir)
    code = pagewright.cli.main(['build', '--config', str(config.root / 'config.yml'), *arguments])
    return config, code


def snapshot_tree(root: pathlib.Path):
    """
    Map each file under @root, by POSIX relative path, to the sha1 of its
    contents.
    """
    return {
        path.relative_to(root).as_posix(): hashlib.sha1(path.read_bytes()).hexdigest()
        for path in sorted(root.rglob('*'))
        if path.is_file()
    }
