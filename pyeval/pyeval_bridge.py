"""
One-time bootstrap of the heavy external library.

The library lives in the host, not in the runtime. Bootstrapping loads its
script assets into the host, exposes the library and a small adapter surface
inside the runtime, then runs adapter source fetched over HTTP which is
expected to bind the library under its usual import name.
"""
import asyncio
import collections.abc
import logging
from enum import Enum
from typing import Any, Optional

import httpx

from pyeval.pyeval_config import EvaluatorConfig
from pyeval.pyeval_errors import BridgeLoadFailure
from pyeval.pyeval_http import FetchError, fetch_text
from pyeval.pyeval_loader import select_script_loader

logger = logging.getLogger(__name__)


class BridgeState(Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


def to_host_value(data: Any) -> Any:
    """Convert runtime data into plain host values (nested lists and scalars)."""
    to_host = getattr(data, "to_host", None)
    if callable(to_host):
        return to_host()
    tolist = getattr(data, "tolist", None)
    if callable(tolist):
        return tolist()
    match data:
        case str() | bytes() | bytearray():
            return data
        case collections.abc.Mapping():
            return {k: to_host_value(v) for k, v in data.items()}
        case collections.abc.Iterable():
            return [to_host_value(x) for x in data]
        case _:
            return data


class TensorAdapters:
    """The three functions the adapter source uses to cross into the host library."""

    def __init__(self, library: Any):
        tensor_cls = getattr(library, "Tensor", None)
        if tensor_cls is None and isinstance(library, collections.abc.Mapping):
            tensor_cls = library.get("Tensor")
        if tensor_cls is None:
            raise BridgeLoadFailure("Heavy library does not expose a Tensor type")
        self._tensor_cls = tensor_cls

    def get_data_from_tensor(self, tensor: Any) -> Any:
        return tensor.data

    def create_tensor_from_python_data(self, data: Any, requires_grad: bool = False) -> Any:
        return self._tensor_cls(to_host_value(data), requires_grad=bool(requires_grad))

    def to_js_list(self, data: Any) -> list:
        value = to_host_value(data)
        if not isinstance(value, list):
            raise TypeError(f"Expected a sequence, got {type(data).__name__}")
        return value


class HeavyDependencyBridge:
    """Single-flight bootstrap guarded by a BridgeState.

    Concurrent callers share the in-flight attempt. A failed attempt leaves the
    state at FAILED and the next caller starts over from the first step.
    """

    def __init__(self, host, config: Optional[EvaluatorConfig] = None):
        self.host = host
        self.config = config or EvaluatorConfig()
        self.state = BridgeState.UNLOADED
        self.attempts = 0
        self._inflight: Optional[asyncio.Future] = None

    @property
    def ready(self) -> bool:
        return self.state is BridgeState.READY

    async def ensure_loaded(self, runtime) -> None:
        if self.state is BridgeState.READY:
            return
        if self._inflight is None:
            self.state = BridgeState.LOADING
            self.attempts += 1
            self._inflight = asyncio.ensure_future(self._bootstrap(runtime))
        await asyncio.shield(self._inflight)

    async def _bootstrap(self, runtime) -> None:
        cfg = self.config
        logger.info("Loading %s dependencies (attempt %d)", cfg.heavy_dependency, self.attempts)
        try:
            loader = select_script_loader(self.host)
            await loader.load(cfg.script_urls)

            library = self.host.globals.get(cfg.heavy_dependency)
            if library is None:
                raise BridgeLoadFailure(
                    f"{cfg.heavy_dependency} global not found after loading scripts"
                )

            runtime.set_global(cfg.raw_binding, library)
            runtime.set_global(cfg.utils_binding, TensorAdapters(library))

            adapter_source = await self._fetch_adapter()
            try:
                await runtime.run(adapter_source)
            except (Exception, SystemExit) as e:
                raise BridgeLoadFailure(f"Adapter source failed: {type(e).__name__}: {e}") from e

            if not runtime.has_global(cfg.heavy_dependency):
                logger.warning("%s not found in runtime globals after adapter source ran", cfg.heavy_dependency)
            else:
                logger.info("%s loaded into runtime globals", cfg.heavy_dependency)
        except BaseException as e:
            self.state = BridgeState.FAILED
            logger.error("Error setting up %s bridge: %r", cfg.heavy_dependency, e)
            raise
        else:
            self.state = BridgeState.READY
        finally:
            self._inflight = None

    async def _fetch_adapter(self) -> str:
        url = self.config.adapter_url
        try:
            return await fetch_text(url, timeout=self.config.http_timeout)
        except FetchError as e:
            raise BridgeLoadFailure(f"Failed to fetch adapter source: {e}", status=e.status) from e
        except httpx.HTTPError as e:
            raise BridgeLoadFailure(f"Failed to fetch adapter source from {url}: {e}") from e
