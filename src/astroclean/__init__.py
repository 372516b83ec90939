# src/astroclean/__init__.py
from __future__ import annotations

from importlib import import_module, metadata
from types import ModuleType
from typing import TYPE_CHECKING

__all__ = [
    "__version__",
    "core",
    "io",
    "utils",
    "clean_acb",
]

# Package version
try:
    __version__ = metadata.version("astroclean")
except metadata.PackageNotFoundError:
    __version__ = "0.0.0"

# --- Lazy module proxying ---
# numba compiles on first import of the imaging modules, so they are only
# imported on first access.

_lazy_modules = {
    "core": "astroclean.core",
    "io": "astroclean.io",
    "utils": "astroclean.utils",
}


def __getattr__(name: str) -> ModuleType:
    if name == "clean_acb":
        from astroclean.core.imaging.imager import clean_acb

        globals()[name] = clean_acb
        return clean_acb
    target = _lazy_modules.get(name)
    if target is None:
        raise AttributeError(f"module 'astroclean' has no attribute {name!r}")
    mod = import_module(target)
    globals()[name] = mod
    return mod


def __dir__():
    return sorted(list(globals().keys()) + list(_lazy_modules.keys()) + ["clean_acb"])


if TYPE_CHECKING:
    # These imports are for type checkers/IDE only (no runtime cost)
    from . import core, io, utils
    from .core.imaging.imager import clean_acb
