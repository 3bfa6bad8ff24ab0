"""
Internal utilities for console reporting.
"""
from __future__ import annotations

import sys
import threading
import time
import typing as t
from contextlib import contextmanager

import rich.console


_consoles = {
    'stdout': rich.console.Console(file=sys.stdout, highlight=False, markup=False),
    'stderr': rich.console.Console(file=sys.stderr, highlight=False, markup=False),
}
_lock = threading.Lock()

StreamName = t.Literal['stdout', 'stderr']


def print_with_style(*args, sep=' ', end='\n', file: StreamName = 'stdout', style=None):
    """
    print() replacement which supports rich console styles. Safe to call from
    task worker threads.
    """
    with _lock:
        _consoles[file].print(*args, sep=sep, end=end, style=style)


def report_error(message: str, cause: BaseException | None = None):
    """
    Print a failure diagnostic to stderr.
    """
    text = f'✗ {message}'
    if cause is not None:
        text += f': {cause.__class__.__name__}: {cause}'
    print_with_style(text, file='stderr', style='red')


def report_notice(message: str):
    print_with_style(message, style='yellow')


@contextmanager
def timed(label: str):
    """
    Report the start and successful end of a unit of work, with its duration.
    """
    print_with_style(f'Starting {label}...', style='cyan')
    start = time.perf_counter()
    yield
    print_with_style(f'✓ {label} ({time.perf_counter() - start:.2f}s)', style='green')
