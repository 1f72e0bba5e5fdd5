"""
Host detection and per-host loading of the model library and artifact codec.

The codec runs in three hosts:

- ``PAGE``: Pyodide on a browser page's main thread. The artifact codec is
  fetched from next to the executing script and evaluated.
- ``SERVER``: a regular Python process. Everything is imported by name.
- ``WORKER``: Pyodide inside a web worker. Everything is imported by name,
  using the worker module names from the config.

The host is probed once and the resulting ``Environment`` is cached for the
life of the process.
"""
import asyncio
import enum
import importlib
import logging
import sys
import types
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from .config import DEFAULT_CONFIG, CodecConfig
from .errors import UnsupportedEnvironmentError

logger = logging.getLogger(__name__)


class Host(enum.Enum):
    PAGE = "page"
    SERVER = "server"
    WORKER = "worker"


def probe_host(platform: str | None = None, js: Any = None) -> Host:
    """
    Classify the hosting environment using presence checks only.

    Args:
        platform: Value to use instead of ``sys.platform``
        js: Pyodide's ``js`` namespace; imported when omitted on emscripten

    Raises:
        UnsupportedEnvironmentError: Emscripten host that is neither a page
            nor a worker
    """
    platform = sys.platform if platform is None else platform
    if platform != "emscripten":
        return Host.SERVER

    if js is None:
        try:
            import js  # type: ignore[no-redef]
        except ImportError as e:
            raise UnsupportedEnvironmentError(
                "Running on emscripten without a 'js' module"
            ) from e

    if hasattr(js, "importScripts"):
        return Host.WORKER
    if hasattr(js, "window") and hasattr(js, "document"):
        return Host.PAGE
    raise UnsupportedEnvironmentError(
        "Emscripten host is neither a browser page nor a web worker"
    )


class LazyDependency:
    """
    Once-cell around an async loader.

    The first caller of ``get`` starts the load; callers arriving while it is
    pending await the same task. The loaded value is cached. A failed load
    raises in every waiting caller and leaves the cell empty.
    """

    _UNSET = object()

    def __init__(self, loader: Callable[[], Awaitable[Any]] | None = None, value: Any = _UNSET):
        self._loader = loader
        self._value = value
        self._pending: asyncio.Future | None = None

    @classmethod
    def resolved(cls, value: Any) -> "LazyDependency":
        return cls(value=value)

    @property
    def is_resolved(self) -> bool:
        return self._value is not self._UNSET

    async def get(self) -> Any:
        if self._value is not self._UNSET:
            return self._value
        if self._pending is None:
            self._pending = asyncio.ensure_future(self._load())
        return await asyncio.shield(self._pending)

    async def _load(self) -> Any:
        try:
            value = await self._loader()
        finally:
            self._pending = None
        self._value = value
        return value


class ModuleLoader:
    """Loads the artifact codec by module name."""

    def __init__(self, module_name: str):
        self.module_name = module_name

    def dependency(self) -> LazyDependency:
        return LazyDependency.resolved(importlib.import_module(self.module_name))


class PageLoader:
    """
    Loads the artifact codec by fetching its source from the directory of the
    executing script and evaluating it into a fresh module.
    """

    def __init__(self, js: Any, resource: str, module_name: str):
        self.js = js
        self.resource = resource
        self.module_name = module_name

    def resource_url(self) -> str:
        script = getattr(self.js.document, "currentScript", None)
        here = script.src if script is not None else self.js.location.href
        return here[:here.rfind("/")] + "/" + self.resource

    async def fetch(self) -> types.ModuleType:
        from pyodide.http import pyfetch  # type: ignore[import-not-found]

        url = self.resource_url()
        logger.info("Fetching artifact codec from %s", url)
        response = await pyfetch(url)
        source = await response.string()

        module = types.ModuleType(self.module_name)
        module.__file__ = url
        exec(compile(source, url, "exec"), module.__dict__)
        return module

    def dependency(self) -> LazyDependency:
        return LazyDependency(self.fetch)


@dataclass(frozen=True)
class Environment:
    host: Host
    library: types.ModuleType
    codec: LazyDependency


def create_environment(
    config: CodecConfig = DEFAULT_CONFIG,
    platform: str | None = None,
    js: Any = None,
) -> Environment:
    """Probe the host and bind the library and codec loader for it."""
    host = probe_host(platform=platform, js=js)

    if host is Host.PAGE:
        if js is None:
            import js  # type: ignore[no-redef]
        library = importlib.import_module(config.library_module)
        loader = PageLoader(js, config.codec_resource, config.codec_module)
    elif host is Host.SERVER:
        library = importlib.import_module(config.library_module)
        loader = ModuleLoader(config.codec_module)
    else:
        library = importlib.import_module(config.worker_library_module)
        loader = ModuleLoader(config.worker_codec_module)

    logger.info("Resolved %s host (library %s)", host.value, library.__name__)
    return Environment(host=host, library=library, codec=loader.dependency())


_ENVIRONMENT: Environment | None = None


def get_environment() -> Environment:
    """Return the process-wide environment, creating it on first use."""
    global _ENVIRONMENT
    if _ENVIRONMENT is None:
        _ENVIRONMENT = create_environment()
    return _ENVIRONMENT
