"""
Base classes for the external transforms (style compiler, script bundler,
image processor, ...) that the build tasks drive.
"""
from __future__ import annotations

import abc
import inspect
import typing as t
from pathlib import Path

from .dependencies import Dependency

if t.TYPE_CHECKING:
    from collections.abc import Sequence, Set


class Step(abc.ABC):
    """
    Abstract base class for Steps, single-purpose transforms from source files
    to output files. Steps are constructed for one pipeline run, so
    @production is fixed for their lifetime.
    """
    _step_registry: list[t.Type[Step]] = []

    def __init_subclass__(cls, **kw):
        super().__init_subclass__(**kw)
        cls._step_registry.append(cls)

    def __init__(self, production: bool = False):
        self.production = production

    @classmethod
    def get_all_steps(cls):
        """
        Return a list of all concrete Steps.
        """
        return [s for s in cls._step_registry if not inspect.isabstract(s)]

    @classmethod
    def is_available(cls) -> bool:
        """
        Return whether this Step's requirements are installed.
        """
        return all(d.satisfied for d in cls.get_dependencies())

    @classmethod
    def get_dependencies(cls) -> Set[Dependency]:
        """
        Return the requirements for this Step.
        """
        return set()

    def ensure_available(self):
        """
        Raise `StepUnavailableException` if this Step cannot run here.
        """
        if not self.is_available():
            raise StepUnavailableException(self)

    @staticmethod
    def ensure_parent(path: Path):
        path.parent.mkdir(parents=True, exist_ok=True)


class FileStep(Step):
    """
    A Step turning one source file into one output file.
    """
    encoding = 'utf-8'
    newline = '\n'

    @abc.abstractmethod
    def __call__(self, path: Path, output_path: Path) -> None:
        ...


class BundleStep(Step):
    """
    A Step combining several source files into one output file.
    """
    encoding = 'utf-8'
    newline = '\n'

    @abc.abstractmethod
    def __call__(self, paths: Sequence[Path], output_path: Path) -> None:
        ...


class TransformError(Exception):
    """
    Exception raised when an external compiler, bundler or compressor fails.
    """
    def __init__(self, step: Step, path: Path | None, message: str):
        self.step = step
        self.path = path
        where = f' ({path})' if path else ''
        super().__init__(f'{step.__class__.__name__}{where}: {message}')


class StepUnavailableException(Exception):
    """
    Exception raised when a Step to be used is unavailable due to missing
    dependencies.
    """
    def __init__(self, step: Step, *args: t.Any):
        self.step = step
        hints = '; '.join(
            d.install_hint for d in step.get_dependencies() if not d.satisfied
        )
        super().__init__(f'{step.__class__.__name__} is unavailable ({hints})', *args)
