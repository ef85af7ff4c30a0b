"""
Loading external script assets into the host.

Hosts differ in how they can do this. A host with a `document` appends scripts
one at a time and each load is awaited before the next starts, since later
assets depend on globals set up by earlier ones. A worker-like host offers a
synchronous `import_scripts(*urls)` that loads them all in one call. Which one
is used is decided by looking at the host, not by configuration.
"""
import logging
from abc import ABC, abstractmethod
from typing import Callable, Sequence

from pyeval.pyeval_errors import BridgeError, BridgeLoadFailure, BridgeUnavailable

logger = logging.getLogger(__name__)


class ScriptLoader(ABC):
    @abstractmethod
    async def load(self, urls: Sequence[str]) -> None: raise NotImplementedError


class DocumentScriptLoader(ScriptLoader):
    def __init__(self, document):
        self.document = document

    async def load(self, urls: Sequence[str]) -> None:
        for url in urls:
            logger.debug("Appending script %s", url)
            try:
                await self.document.append_script(url)
            except BridgeError:
                raise
            except Exception as e:
                raise BridgeLoadFailure(f"Failed to load script: {url}") from e


class BulkScriptLoader(ScriptLoader):
    def __init__(self, import_scripts: Callable[..., None]):
        self.import_scripts = import_scripts

    async def load(self, urls: Sequence[str]) -> None:
        logger.debug("Importing scripts %s", ", ".join(urls))
        try:
            self.import_scripts(*urls)
        except BridgeError:
            raise
        except Exception as e:
            raise BridgeLoadFailure(f"Failed to import scripts: {', '.join(urls)}") from e


def select_script_loader(host) -> ScriptLoader:
    document = getattr(host, "document", None)
    if document is not None:
        return DocumentScriptLoader(document)
    import_scripts = getattr(host, "import_scripts", None)
    if callable(import_scripts):
        return BulkScriptLoader(import_scripts)
    raise BridgeUnavailable("Neither 'document' nor 'import_scripts' is available to load scripts")
