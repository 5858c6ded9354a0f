"""Opt-in runtime contract checks for gravstep.

Setting ``GRAVSTEP_RUNTIME_TYPECHECK`` to anything but a false-like value
makes every gravstep submodule imported afterwards go through jaxtyping's
import hook, so annotated callables are checked by beartype on each call.
"""

from __future__ import annotations

import os
from typing import Any, Mapping, Optional

ENV_VAR = "GRAVSTEP_RUNTIME_TYPECHECK"
_FALSE_VALUES = frozenset({"", "0", "false", "no", "off"})

_hook: Optional[Any] = None


def runtime_typecheck_requested(environ: Optional[Mapping[str, str]] = None) -> bool:
    """Whether the environment asks for runtime type checks."""
    env = os.environ if environ is None else environ
    return env.get(ENV_VAR, "0").strip().lower() not in _FALSE_VALUES


def enable_runtime_typecheck() -> bool:
    """Install the import hook if requested; return whether it is active."""
    global _hook

    if _hook is not None:
        return True
    if not runtime_typecheck_requested():
        return False

    from jaxtyping import install_import_hook

    # Only submodules imported after this point are instrumented.
    _hook = install_import_hook("gravstep", typechecker="beartype.beartype")
    return True


def disable_runtime_typecheck() -> bool:
    """Remove the import hook; return whether one was installed."""
    global _hook

    if _hook is None:
        return False
    _hook.uninstall()
    _hook = None
    return True


__all__ = [
    "ENV_VAR",
    "disable_runtime_typecheck",
    "enable_runtime_typecheck",
    "runtime_typecheck_requested",
]
