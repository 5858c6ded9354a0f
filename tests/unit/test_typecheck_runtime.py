"""GRAVSTEP_RUNTIME_TYPECHECK switch."""

from __future__ import annotations

import importlib.util
from pathlib import Path

import pytest


def _load_typecheck_module():
    path = Path(__file__).resolve().parents[2] / "gravstep" / "_typecheck.py"
    spec = importlib.util.spec_from_file_location("gravstep_typecheck_copy", path)
    assert spec is not None
    assert spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_runtime_typecheck_disabled_by_default(monkeypatch):
    monkeypatch.delenv("GRAVSTEP_RUNTIME_TYPECHECK", raising=False)
    module = _load_typecheck_module()

    assert module.enable_runtime_typecheck() is False
    assert module.disable_runtime_typecheck() is False


@pytest.mark.parametrize("raw", ["", "0", "false", "No", " off "])
def test_runtime_typecheck_falsy_values(monkeypatch, raw):
    monkeypatch.setenv("GRAVSTEP_RUNTIME_TYPECHECK", raw)
    module = _load_typecheck_module()

    assert module.enable_runtime_typecheck() is False


def test_requested_reads_an_explicit_mapping():
    module = _load_typecheck_module()

    assert module.runtime_typecheck_requested({"GRAVSTEP_RUNTIME_TYPECHECK": "yes"})
    assert not module.runtime_typecheck_requested({})


def test_runtime_typecheck_can_be_enabled_and_removed(monkeypatch):
    monkeypatch.setenv("GRAVSTEP_RUNTIME_TYPECHECK", "1")
    module = _load_typecheck_module()

    assert module.enable_runtime_typecheck() is True
    # Second call reuses the installed hook.
    assert module.enable_runtime_typecheck() is True
    assert module.disable_runtime_typecheck() is True
    assert module.disable_runtime_typecheck() is False
