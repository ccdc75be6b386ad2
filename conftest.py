"""Root conftest.py for powertest.

Registers the project's markers and tags tests that stand in fakes or mocks
for the PPK2 and debug probe with ``uses_mock``, so hardware-free coverage
can be told apart from runs against real instruments.
"""

from __future__ import annotations

import ast
import inspect
import sys
import textwrap
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from _pytest.config import Config
    from _pytest.nodes import Item


# Allow running the suite from a checkout without installing the package
SRC_DIR = Path(__file__).parent / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))


def pytest_configure(config: Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "uses_mock: Test uses mocking or fake instruments (auto-detected or manually marked)",
    )
    config.addinivalue_line(
        "markers",
        "integration: Integration test requiring a PPK2 and a debug probe",
    )
    config.addinivalue_line(
        "markers",
        "slow: Slow-running test",
    )


MOCK_NAMES = frozenset({
    "MagicMock",
    "Mock",
    "patch",
    "create_autospec",
    "mocker",
    "FakePpk2Api",
    "FakeSession",
    "FakeInstrument",
    "FakeTarget",
    "ScriptedSource",
})


def _uses_mock(item: Item) -> bool:
    """Check whether a test function refers to any mock or fake helper."""
    if item.get_closest_marker("uses_mock"):
        return True
    obj = getattr(item, "obj", None)
    if obj is None:
        return False
    try:
        tree = ast.parse(textwrap.dedent(inspect.getsource(obj)))
    except (OSError, TypeError, SyntaxError):
        return False
    for node in ast.walk(tree):
        if isinstance(node, ast.Name) and node.id in MOCK_NAMES:
            return True
        if isinstance(node, ast.Attribute) and node.attr in MOCK_NAMES:
            return True
        if isinstance(node, ast.arg) and ("mock" in node.arg.lower() or node.arg == "mocker"):
            return True
    return False


def pytest_collection_modifyitems(config: Config, items: list[Item]) -> None:
    """Auto-detect and mark tests that use mocking."""
    for item in items:
        if _uses_mock(item):
            item.add_marker(pytest.mark.uses_mock)


def pytest_report_header(config: Config) -> list[str]:
    """Add a project line to the pytest header."""
    lines = ["powertest test suite"]
    if getattr(config.option, "cov_source", None):
        lines.append("Coverage: enabled with mock detection")
    return lines
