"""
Pytest configuration for Loom tests.
"""
import sys
import os

import pytest

# Ensure `import loom` works without installing the package
_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
_SRC_DIR = os.path.join(_ROOT, 'src')

if _SRC_DIR not in sys.path:
    sys.path.insert(0, _SRC_DIR)

from loom.vm import VM  # noqa: E402

EXAMPLES_DIR = os.path.join(_ROOT, 'examples')


@pytest.fixture
def output():
    """Collects everything guest code writes."""
    return []


@pytest.fixture
def errors():
    """Collects (fiber, message) pairs reported for aborted fibers."""
    return []


@pytest.fixture
def vm(output, errors):
    machine = VM(
        write=output.append,
        on_error=lambda fiber, message: errors.append((fiber, message)),
    )
    yield machine
    machine.free()


@pytest.fixture
def examples_dir():
    return EXAMPLES_DIR
