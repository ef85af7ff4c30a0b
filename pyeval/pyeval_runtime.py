import ast
import asyncio
import builtins
import contextlib
import importlib
import inspect
import io
import logging
import traceback
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

Token = Dict[str, Any]


class BatchedStdout(io.TextIOBase):
    """A text stream that hands every completed line to `sink` as it is written."""

    def __init__(self, sink: Callable[[str], None]):
        super().__init__()
        self._sink = sink
        self._pending = ""

    def writable(self) -> bool:
        return True

    def write(self, s: str) -> int:
        self._pending += s
        while "\n" in self._pending:
            line, self._pending = self._pending.split("\n", 1)
            self._sink(line + "\n")
        return len(s)

    def flush(self) -> None:
        if self._pending:
            out, self._pending = self._pending, ""
            self._sink(out)


class EmbeddedRuntime:
    """A persistent interpreter namespace that chunks are executed in.

    Names bound by one chunk stay visible to the next. Standard output written
    while a chunk runs goes to the host sink line by line. Only one chunk runs
    at a time.
    """

    def __init__(self, stdout: Callable[[str], None], installer=None, filename: str = "<chunk>"):
        self.filename = filename
        self.installer = installer
        self.namespace: Dict[str, Any] = {"__name__": "__main__", "__builtins__": builtins}
        self.stdout = BatchedStdout(stdout)
        self._run_lock = asyncio.Lock()
        self.closed = False

    @classmethod
    async def create(cls, stdout: Callable[[str], None], installer=None, filename: str = "<chunk>") -> "EmbeddedRuntime":
        runtime = cls(stdout, installer=installer, filename=filename)
        if installer is not None:
            await installer.prepare()
        logger.info("Embedded runtime ready")
        return runtime

    # --- globals ---------------------------------------------------------

    def set_global(self, name: str, value: Any) -> None:
        self.namespace[name] = value

    def get_global(self, name: str, default: Any = None) -> Any:
        return self.namespace.get(name, default)

    def has_global(self, name: str) -> bool:
        return name in self.namespace

    # --- packages --------------------------------------------------------

    def is_importable(self, root: str) -> bool:
        # Importing runs module-level code; that is accepted for probes.
        with contextlib.redirect_stdout(self.stdout):
            try:
                importlib.import_module(root)
                return True
            except Exception:
                return False
            finally:
                self.stdout.flush()

    async def install(self, packages) -> None:
        if self.installer is None:
            raise RuntimeError("No package installer configured for this runtime")
        await self.installer.install(list(packages))

    # --- execution -------------------------------------------------------

    async def run(self, source: str) -> Any:
        """Execute `source` and return the value of its final expression.

        Top-level `await` is allowed. The value is None when the chunk does not
        end in an expression or its last line ends with a semicolon.
        """
        async with self._run_lock:
            with contextlib.redirect_stdout(self.stdout):
                try:
                    return await self._run(source)
                finally:
                    self.stdout.flush()

    async def _run(self, source: str) -> Any:
        tree = ast.parse(source, self.filename, mode="exec")
        flags = ast.PyCF_ALLOW_TOP_LEVEL_AWAIT

        tail = None
        if tree.body and isinstance(tree.body[-1], ast.Expr) and not source.rstrip().endswith(";"):
            tail = tree.body.pop()

        if tree.body:
            await self._eval(compile(tree, self.filename, "exec", flags=flags))
        if tail is None:
            return None
        return await self._eval(compile(ast.Expression(body=tail.value), self.filename, "eval", flags=flags))

    async def _eval(self, code) -> Any:
        result = eval(code, self.namespace)
        if code.co_flags & inspect.CO_COROUTINE:
            result = await result
        return result

    # --- errors ----------------------------------------------------------

    def format_exception(self, e: BaseException, source: str) -> Tuple[str, Optional[Token]]:
        """Render an exception raised by chunk code, with the chunk's own frames only."""
        if isinstance(e, SyntaxError):
            msg = f"{type(e).__name__}: {e.msg}"
            token = None
            if e.lineno is not None:
                token = {'line': e.lineno, 'col': e.offset}
                msg = f"{msg} (line {e.lineno})\n{self._source_context(source, e.lineno, e.offset)}"
            return msg, token

        frames = [f for f in traceback.extract_tb(e.__traceback__) if f.filename == self.filename]
        lines = ["Traceback (most recent call last):"]
        for f in frames:
            lines.append(f'  File "{f.filename}", line {f.lineno}, in {f.name}')
        lines.extend(traceback.format_exception_only(type(e), e))
        token = {'line': frames[-1].lineno, 'col': None} if frames else None
        return "\n".join(line.rstrip("\n") for line in lines), token

    def _source_context(self, source: str, line: int, col: Optional[int], radius: int = 2) -> str:
        lines = source.splitlines()
        if not line or line < 1 or line > len(lines):
            return ""
        start = max(1, line - radius)
        end = min(len(lines), line + radius)
        width = len(str(end))
        out = []
        for i in range(start, end + 1):
            prefix = ">" if i == line else " "
            out.append(f"{prefix} {str(i).rjust(width)} | {lines[i - 1]}")
            if i == line and col is not None:
                out.append(f"  {' ' * width} | {' ' * max(col - 1, 0)}^")
        return "\n".join(out)

    def close(self) -> None:
        self.stdout.flush()
        self.namespace.clear()
        self.closed = True
