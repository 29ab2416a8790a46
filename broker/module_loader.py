"""
Broker - Module Loader.

============================================================
RESPONSIBILITY
============================================================
Loads routing modules requested with ``-m`` while the command
line is being parsed.

- Relative names resolve against the current search directory
- Absolute paths are loaded as-is
- A name with no matching file is a load failure
- A module may expose an ``on_load()`` hook
- A module may export ``GLOBAL_FUNCTIONS``, a mapping of
  name -> callable registered by init_globals()

Each file is loaded once per resolved path, so the same name
under two -l directories yields two distinct modules.

============================================================
"""

import hashlib
import importlib.util
import logging
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Callable, Dict, List, Optional

from core.constants import MODULE_SUFFIX
from core.exceptions import ModuleLoadError

from .base import ModuleLoader


logger = logging.getLogger(__name__)

GLOBAL_FUNCTIONS_ATTR = "GLOBAL_FUNCTIONS"


def module_key(path: Path) -> str:
    """sys.modules name for a module file."""
    digest = hashlib.sha1(str(path).encode("utf-8")).hexdigest()[:12]
    return f"fqd_module_{path.stem}_{digest}"


class PluginModuleLoader(ModuleLoader):
    """Loads Python modules from a plugin directory."""

    def __init__(self, suffix: str = MODULE_SUFFIX):
        self._suffix = suffix
        self._by_path: Dict[Path, object] = {}
        self._loaded: Dict[str, object] = {}
        self._global_functions: Dict[str, Callable] = {}
        self._globals_dir: Optional[Path] = None

    @property
    def loaded(self) -> Dict[str, object]:
        """Modules loaded so far, keyed by requested name (latest load wins)."""
        return dict(self._loaded)

    @property
    def loaded_names(self) -> List[str]:
        return list(self._loaded)

    @property
    def loaded_paths(self) -> List[Path]:
        return list(self._by_path)

    @property
    def global_functions(self) -> Dict[str, Callable]:
        return dict(self._global_functions)

    @property
    def globals_dir(self) -> Optional[Path]:
        return self._globals_dir

    def resolve_path(self, search_dir: Path, name: str) -> Path:
        """Map a module name onto an absolute file path."""
        candidate = Path(name)
        if not candidate.suffix:
            candidate = candidate.with_name(candidate.name + self._suffix)
        if not candidate.is_absolute():
            candidate = Path(search_dir) / candidate
        return candidate.resolve()

    def load(self, search_dir: Path, name: str) -> object:
        if not name:
            raise ModuleLoadError("Empty module name", module_name=name, search_dir=str(search_dir))

        path = self.resolve_path(search_dir, name)
        if path in self._by_path:
            logger.debug(f"Module already loaded: {path}")
            module = self._by_path[path]
            self._loaded[name] = module
            return module

        if not path.is_file():
            raise ModuleLoadError(
                f"Module file not found: {path}",
                module_name=name,
                search_dir=str(search_dir),
            )

        module = self._load_from_file(path, name, search_dir)

        hook = getattr(module, "on_load", None)
        if callable(hook):
            try:
                hook()
            except Exception as e:
                sys.modules.pop(module_key(path), None)
                raise ModuleLoadError(
                    f"Module {name} failed during on_load(): {e}",
                    module_name=name,
                    search_dir=str(search_dir),
                    cause=e,
                ) from e

        self._by_path[path] = module
        self._loaded[name] = module
        logger.info(f"Loaded module {name} from {path}")
        return module

    def _load_from_file(self, path: Path, name: str, search_dir: Path) -> object:
        key = module_key(path)
        spec = importlib.util.spec_from_file_location(key, path)
        if spec is None or spec.loader is None:
            raise ModuleLoadError(
                f"Cannot create import spec for {path}",
                module_name=name,
                search_dir=str(search_dir),
            )

        module = importlib.util.module_from_spec(spec)
        sys.modules[key] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(key, None)
            raise ModuleLoadError(
                f"Failed to load module {name} from {path}: {e}",
                module_name=name,
                search_dir=str(search_dir),
                cause=e,
            ) from e
        return module

    # --------------------------------------------------------
    # Global functions
    # --------------------------------------------------------

    def init_globals(self, search_dir: Path) -> None:
        """
        Register the global functions exported by every loaded module.

        Modules are visited in load order; a later module may
        override a name registered by an earlier one.

        Raises:
            ModuleLoadError: If an export is not a mapping of callables
        """
        registry: Dict[str, Callable] = {}
        for path, module in self._by_path.items():
            exported = getattr(module, GLOBAL_FUNCTIONS_ATTR, None)
            if exported is None:
                continue
            if not isinstance(exported, Mapping):
                raise ModuleLoadError(
                    f"{GLOBAL_FUNCTIONS_ATTR} in {path} must be a mapping",
                    module_name=str(path),
                    search_dir=str(search_dir),
                )
            for func_name, func in exported.items():
                if not callable(func):
                    raise ModuleLoadError(
                        f"Global function {func_name!r} in {path} is not callable",
                        module_name=str(path),
                        search_dir=str(search_dir),
                    )
                if func_name in registry:
                    logger.warning(f"Global function {func_name} redefined by {path}")
                registry[func_name] = func

        self._global_functions = registry
        self._globals_dir = Path(search_dir)
        logger.info(
            f"Global functions initialized | dir={search_dir} | count={len(registry)}"
        )


__all__ = ["PluginModuleLoader", "module_key", "GLOBAL_FUNCTIONS_ATTR"]
