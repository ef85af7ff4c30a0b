import sys
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, TextIO

from pyeval.pyeval_http import fetch_text_sync


class Host(ABC):
    """The process an evaluator runs inside.

    `globals` is the host's global namespace, where loaded scripts register
    what they provide. A host may additionally offer one script-loading
    capability: a `document` with `async append_script(url)`, or a synchronous
    `import_scripts(*urls)`.
    """
    def __init__(self):
        self.globals: Dict[str, Any] = {}

    @abstractmethod
    def send_output(self, text: str) -> None: raise NotImplementedError


class ConsoleHost(Host):
    """Writes output to a terminal stream and imports scripts as Python source.

    Script assets are executed as Python in `globals`. The default asset URLs
    point at browser JavaScript bundles, so bridging the heavy library from
    this host needs `script_urls` that serve Python sources registering it.
    """

    def __init__(self, stream: Optional[TextIO] = None, timeout: Optional[float] = None):
        super().__init__()
        # Bound now: sys.stdout is redirected into the runtime while chunks run.
        self.stream = stream or sys.stdout
        self.timeout = timeout

    def send_output(self, text: str) -> None:
        self.stream.write(text if text.endswith("\n") else text + "\n")
        self.stream.flush()

    def import_scripts(self, *urls: str) -> None:
        for url in urls:
            source = fetch_text_sync(url, timeout=self.timeout)
            exec(compile(source, url, "exec"), self.globals)
