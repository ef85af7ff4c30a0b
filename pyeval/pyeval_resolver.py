import asyncio
import importlib
import importlib.util
import logging
import sys
from typing import Dict, Iterable, List, Optional

from pyeval.pyeval_errors import ResolutionFailure

logger = logging.getLogger(__name__)


class PipInstaller:
    """Installs distributions into the running interpreter with `pip`."""

    def __init__(self, aliases: Optional[Dict[str, str]] = None, python: str = sys.executable):
        self.aliases = dict(aliases or {})
        self.python = python
        self.available: Optional[bool] = None

    async def prepare(self) -> None:
        self.available = importlib.util.find_spec("pip") is not None
        if not self.available:
            logger.warning("pip is not importable; missing packages cannot be installed")

    async def install(self, packages: List[str]) -> None:
        if self.available is False:
            raise ResolutionFailure(packages, "pip is not available in this interpreter")
        names = [self.aliases.get(p, p) for p in packages]
        logger.info("Installing packages: %s", ", ".join(names))
        proc = await asyncio.create_subprocess_exec(
            self.python, "-m", "pip", "install", *names,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        out, _ = await proc.communicate()
        text = out.decode("utf-8", errors="replace") if out else ""
        if proc.returncode != 0:
            raise ResolutionFailure(packages, text)
        importlib.invalidate_caches()


async def resolve_packages(runtime, roots: Iterable[str]) -> List[str]:
    """Make every root importable in `runtime`, installing what is missing.

    The environment is probed on every call. Missing roots are installed in a
    single batch; any install failure fails the whole call. Returns the roots
    that had to be installed.
    """
    roots = sorted(set(roots))
    if not roots:
        return []

    missing = []
    for root in roots:
        ok = runtime.is_importable(root)
        logger.debug("Probe %s: %s", root, "importable" if ok else "missing")
        if not ok:
            missing.append(root)

    if missing:
        try:
            await runtime.install(missing)
        except ResolutionFailure:
            raise
        except Exception as e:
            raise ResolutionFailure(missing, str(e)) from e
    return missing
