"""
Shared pytest fixtures for the cellgather test suite.

Usage in tests:
    def test_something(make_cell, slicer):
        first = make_cell("x = 1")
        slicer.log_execution(first)
"""

import pytest

from cellgather import ExecutionLogSlicer, GatherExecution
from tests.factories import CellFactory


@pytest.fixture
def make_cell():
    """Cell builder with its own execution counter."""
    return CellFactory()


@pytest.fixture
def slicer():
    return ExecutionLogSlicer()


@pytest.fixture
def gatherer():
    """GatherExecution without the explanatory header line."""
    return GatherExecution(include_header=False)
