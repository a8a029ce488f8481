"""Contract tests for the Robin DD implementation.

These tests are intentionally lightweight and fast. They enforce layout
invariants that prevent regressions during future algorithm work.
"""

from __future__ import annotations

import ast
import re
from pathlib import Path

import pytest


def _robindd_dir() -> Path:
    # .../robindd/tests/schwarz/test_*.py -> parents[2] is .../robindd
    return Path(__file__).resolve().parents[2]


def _rdd_files() -> list[Path]:
    robindd_dir = _robindd_dir()
    rdd_dir = robindd_dir / "schwarz" / "rdd"
    entry = robindd_dir / "schwarz" / "robin_dd.py"

    files = sorted(rdd_dir.glob("*.py"))
    files.append(entry)
    return files


def _parse(path: Path) -> ast.Module:
    return ast.parse(path.read_text(encoding="utf-8"), filename=str(path))


def _has_module_docstring_as_first_stmt(tree: ast.Module) -> bool:
    if not tree.body:
        return False
    first = tree.body[0]
    if isinstance(first, ast.Expr):
        val = first.value
        return isinstance(val, ast.Constant) and isinstance(val.value, str)
    return False


def _top_level_defs(tree: ast.Module):
    for node in tree.body:
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            yield node


def _find_print_calls(tree: ast.Module) -> list[ast.Call]:
    calls: list[ast.Call] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Call) and isinstance(node.func, ast.Name) and node.func.id == "print":
            calls.append(node)
    return calls


@pytest.mark.parametrize("path", _rdd_files())
def test_module_docstring_first_statement(path: Path) -> None:
    tree = _parse(path)
    assert _has_module_docstring_as_first_stmt(tree), (
        f"{path} must start with a module docstring as the first statement"
    )


@pytest.mark.parametrize("path", _rdd_files())
def test_top_level_definitions_have_docstrings(path: Path) -> None:
    tree = _parse(path)
    missing: list[str] = []
    for node in _top_level_defs(tree):
        if ast.get_docstring(node) is None:
            missing.append(f"{node.name} (line {node.lineno})")
    assert not missing, f"{path} missing docstrings for: {', '.join(missing)}"


@pytest.mark.parametrize("path", _rdd_files())
def test_print_policy(path: Path) -> None:
    tree = _parse(path)
    prints = _find_print_calls(tree)
    if path.name == "stats.py":
        return
    assert not prints, f"{path} has print() calls; printing must be confined to rdd/stats.py"


@pytest.mark.parametrize("path", _rdd_files())
def test_no_sentinel_unset_entries(path: Path) -> None:
    """Unset correspondence entries are tracked by a mask, never by -1 stored in a map."""
    text = path.read_text(encoding="utf-8")

    banned_patterns = [
        r"\.target\[[^\]]*\]\s*=\s*-1\b",
        r"\btarget\s*==\s*-1\b",
        r"np\.full\([^)]*-1[^)]*\)\s*#\s*unset",
    ]

    hits: list[str] = []
    for pat in banned_patterns:
        if re.search(pat, text):
            hits.append(pat)

    assert not hits, f"{path} encodes unset map entries with a sentinel: {hits}"


@pytest.mark.parametrize("path", _rdd_files())
def test_no_bare_except(path: Path) -> None:
    tree = _parse(path)
    bare = [node.lineno for node in ast.walk(tree) if isinstance(node, ast.ExceptHandler) and node.type is None]
    assert not bare, f"{path} has bare except clauses at lines {bare}"
