from pyeval.pyeval_bridge import BridgeState, HeavyDependencyBridge, TensorAdapters
from pyeval.pyeval_config import EvaluatorConfig, load_config
from pyeval.pyeval_errors import (
    BridgeError,
    BridgeLoadFailure,
    BridgeUnavailable,
    ExecutionFailure,
    PyEvalError,
    ResolutionFailure,
)
from pyeval.pyeval_evaluator import Evaluator, ExecutionResult
from pyeval.pyeval_host import ConsoleHost, Host
from pyeval.pyeval_runtime import EmbeddedRuntime
from pyeval.pyeval_scanner import ImportDeclaration, ScanResult, scan_chunk
