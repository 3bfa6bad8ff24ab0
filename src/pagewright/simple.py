"""
Simple Steps that move files without transforming them.
"""
from __future__ import annotations

import shutil
from pathlib import Path

from .core import FileStep


class DirectCopyStep(FileStep):
    """
    A simple Step which only copies a file to its output path.
    """
    def __call__(self, path: Path, output_path: Path):
        self.ensure_parent(output_path)
        shutil.copy(path, output_path)


def remove_tree(path: Path):
    """
    Delete @path and everything under it, if it exists.
    """
    if path.is_dir():
        shutil.rmtree(path)
    elif path.exists():
        path.unlink()
