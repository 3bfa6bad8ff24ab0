from pathlib import Path

import pytest

from pagewright.core import BundleStep, FileStep, Step, StepUnavailableException, TransformError
from pagewright.css import CSSCompiler, SassCompiler, StyleCompiler
from pagewright.dependencies import PipDependency
from pagewright.simple import DirectCopyStep, remove_tree


class DummyStep(FileStep):
    def __call__(self, path: Path, output_path: Path):
        pass


class MissingStep(BundleStep):
    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('not-a-real-package', check_name='pagewright_test_no_such_module'),
            PipDependency('pytest'),
        }

    def __call__(self, paths, output_path: Path):
        self.ensure_available()


def test_get_all_steps():
    steps = Step.get_all_steps()
    assert DummyStep in steps
    assert CSSCompiler in steps
    assert SassCompiler in steps
    assert StyleCompiler not in steps
    assert FileStep not in steps


def test_pip_dependency():
    assert PipDependency('pytest').satisfied
    missing = PipDependency('Not-Real', source='not-real>=2', check_name='pagewright_test_no_such_module')
    assert not missing.satisfied
    assert missing.install_hint == 'pip install not-real>=2'
    assert str(missing) == 'Not-Real'


def test_step_unavailable():
    assert not MissingStep.is_available()
    with pytest.raises(StepUnavailableException) as exc_info:
        MissingStep()([], Path('out'))
    assert 'pip install not-a-real-package' in str(exc_info.value)
    assert 'pytest' not in str(exc_info.value)
    assert isinstance(exc_info.value.step, MissingStep)


def test_transform_error_message():
    error = TransformError(DummyStep(), Path('a.css'), 'bad')
    assert str(error) == 'DummyStep (a.css): bad'
    assert str(TransformError(DummyStep(), None, 'bad')) == 'DummyStep: bad'


def test_direct_copy(tmp_path: Path):
    source = tmp_path / 'a.txt'
    source.write_text('a')
    output = tmp_path / 'deep' / 'er' / 'a.txt'
    DirectCopyStep()(source, output)
    assert output.read_text() == 'a'


def test_remove_tree(tmp_path: Path):
    (tmp_path / 'dir' / 'sub').mkdir(parents=True)
    (tmp_path / 'dir' / 'sub' / 'f').write_text('')
    (tmp_path / 'file').write_text('')
    remove_tree(tmp_path / 'dir')
    remove_tree(tmp_path / 'file')
    remove_tree(tmp_path / 'missing')
    assert list(tmp_path.iterdir()) == []
