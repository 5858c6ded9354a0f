"""Every public callable in gravstep keeps full annotations.

The jaxtyping+beartype import hook only checks what is annotated, so a missing
parameter or return annotation silently disables the runtime contract.
"""

from __future__ import annotations

import ast
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
PACKAGE_ROOT = PROJECT_ROOT / "gravstep"


def _annotation_gaps(node: ast.FunctionDef | ast.AsyncFunctionDef) -> list[str]:
    args = node.args
    gaps = [
        arg.arg
        for arg in args.posonlyargs + args.args + args.kwonlyargs
        if arg.annotation is None
    ]
    for extra in (args.vararg, args.kwarg):
        if extra is not None and extra.annotation is None:
            gaps.append(extra.arg)
    if node.returns is None:
        gaps.append("return")
    return gaps


def _public_functions(path: Path):
    tree = ast.parse(path.read_text())
    for node in ast.walk(tree):
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            if not node.name.startswith("_"):
                yield node


def test_package_modules_are_scanned() -> None:
    modules = sorted(p.name for p in PACKAGE_ROOT.rglob("*.py"))
    assert "forces.py" in modules
    assert "hermite.py" in modules


def test_all_public_callables_are_fully_annotated() -> None:
    missing = []
    for path in sorted(PACKAGE_ROOT.rglob("*.py")):
        if path.name == "__init__.py":
            continue
        for node in _public_functions(path):
            gaps = _annotation_gaps(node)
            if gaps:
                rel = path.relative_to(PROJECT_ROOT)
                missing.append(f"- {rel}:{node.lineno} `{node.name}` {gaps}")

    assert not missing, (
        "Public callables with incomplete annotations; the runtime type-check "
        "hook cannot validate them:\n" + "\n".join(missing)
    )
