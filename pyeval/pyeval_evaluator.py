# pyeval_evaluator.py

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Literal, Optional

from pyeval.pyeval_bridge import BridgeState, HeavyDependencyBridge
from pyeval.pyeval_config import EvaluatorConfig
from pyeval.pyeval_errors import ExecutionFailure, PyEvalError
from pyeval.pyeval_resolver import PipInstaller, resolve_packages
from pyeval.pyeval_runtime import EmbeddedRuntime, Token
from pyeval.pyeval_scanner import scan_chunk

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """The structured result of a chunk evaluation."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    error_token: Optional[Token] = None
    error: Optional[BaseException] = None

    def format_error(self) -> str:
        """Formats an error message with line and column if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.error_token and self.error_token.get('line') is not None:
            line = self.error_token.get('line')
            col = self.error_token.get('col')
            if not msg.startswith("Error on line "):
                col_info = f", col {col}" if col is not None else ""
                return f"Error on line {line}{col_info}: {msg}"
        return msg


class Evaluator:
    """Scans, resolves, bridges and executes chunks for one host session."""

    def __init__(self, host, config: Optional[EvaluatorConfig] = None, installer=None):
        self.host = host
        self.config = config or EvaluatorConfig()
        self.installer = installer if installer is not None else PipInstaller(self.config.package_aliases)
        self.bridge = HeavyDependencyBridge(host, self.config)
        self._runtime: Optional[EmbeddedRuntime] = None
        self._runtime_task: Optional[asyncio.Future] = None
        # Serializes probe and install across concurrent chunks.
        self._resolve_lock = asyncio.Lock()

    @property
    def bridge_state(self) -> BridgeState:
        return self.bridge.state

    async def runtime(self) -> EmbeddedRuntime:
        """Return the shared runtime, constructing it once on first use."""
        if self._runtime is not None:
            return self._runtime
        if self._runtime_task is None:
            self._runtime_task = asyncio.ensure_future(self._construct_runtime())
        task = self._runtime_task
        try:
            return await asyncio.shield(task)
        except Exception:
            # Let the next chunk try again rather than caching a broken start.
            if self._runtime_task is task:
                self._runtime_task = None
            raise

    async def _construct_runtime(self) -> EmbeddedRuntime:
        runtime = await EmbeddedRuntime.create(
            self.host.send_output, installer=self.installer, filename=self.config.filename
        )
        self._runtime = runtime
        return runtime

    async def evaluate_chunk(self, chunk: str) -> Any:
        """Evaluate one chunk, forwarding its output to the host.

        Raises ResolutionFailure, BridgeUnavailable, BridgeLoadFailure or
        ExecutionFailure; nothing is retried here.
        """
        runtime = await self.runtime()
        scan = scan_chunk(chunk, self.config.heavy_dependency)

        if scan.heavy_imported and not self.bridge.ready:
            await self.bridge.ensure_loaded(runtime)

        if scan.package_roots:
            async with self._resolve_lock:
                await resolve_packages(runtime, scan.package_roots)

        logger.debug("Executing chunk:\n%s", scan.source)
        try:
            value = await runtime.run(scan.source)
        except (Exception, SystemExit) as e:
            msg, token = runtime.format_exception(e, scan.source)
            raise ExecutionFailure(msg, e, token) from e

        if value is not None:
            self.host.send_output(repr(value))
        return value

    async def handle_chunk(self, chunk: str) -> ExecutionResult:
        """Like evaluate_chunk, but report failures as an ExecutionResult.

        Errors from constructing the runtime are reported the same way.
        """
        try:
            value = await self.evaluate_chunk(chunk)
        except PyEvalError as e:
            return ExecutionResult(
                status='error',
                error_message=str(e),
                error_token=getattr(e, 'token', None),
                error=e,
            )
        except Exception as e:
            return ExecutionResult(status='error', error_message=f"{type(e).__name__}: {e}", error=e)
        return ExecutionResult(status='success', value=value)

    def close(self) -> None:
        """Discard the runtime; the next evaluation constructs a fresh one."""
        if self._runtime is not None:
            self._runtime.close()
        self._runtime = None
        self._runtime_task = None
        self.bridge = HeavyDependencyBridge(self.host, self.config)
