from typing import List, Optional


class PyEvalError(Exception):
    """Base class for every failure surfaced by the chunk evaluator."""


class ResolutionFailure(PyEvalError):
    """A batch install of missing packages did not succeed."""

    def __init__(self, packages: List[str], output: str = ""):
        self.packages = list(packages)
        self.output = output
        msg = f"Failed to install packages: {', '.join(self.packages)}"
        if output:
            msg = f"{msg}\n{output.rstrip()}"
        super().__init__(msg)


class BridgeError(PyEvalError):
    pass


class BridgeUnavailable(BridgeError):
    """The host offers no way to load external scripts."""


class BridgeLoadFailure(BridgeError):
    """A bootstrap step failed; the next chunk that needs the bridge retries."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class ExecutionFailure(PyEvalError):
    """Raised when user code inside the runtime raises."""

    def __init__(self, message: str, original: BaseException, token: Optional[dict] = None):
        self.original = original
        self.token = token
        super().__init__(message)
