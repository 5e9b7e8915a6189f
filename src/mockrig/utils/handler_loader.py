"""
Custom handler modules are plain Python files living in the handlers directory.
Each one may export any of get/post/put/patch/delete.
"""

import importlib.util
from pathlib import Path
from types import ModuleType
from typing import Callable, Dict

from mockrig.core.errors import ConfigError

HANDLER_FUNCTIONS = ("get", "post", "put", "patch", "delete")

_module_cache: Dict[Path, ModuleType] = {}


def load_handler_module(path: Path) -> ModuleType:
    path = path.resolve()
    if path in _module_cache:
        return _module_cache[path]
    if not path.is_file():
        raise ConfigError(f"Handler module not found: {path}")

    spec = importlib.util.spec_from_file_location(f"mockrig_handlers.{path.stem}", path)
    if spec is None or spec.loader is None:
        raise ConfigError(f"Cannot import handler module: {path}")
    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise ConfigError(f"Handler module {path.name} failed to import: {e}") from e

    _module_cache[path] = module
    return module


def exported_handlers(path: Path) -> Dict[str, Callable]:
    module = load_handler_module(path)
    return {
        name: getattr(module, name)
        for name in HANDLER_FUNCTIONS
        if callable(getattr(module, name, None))
    }
