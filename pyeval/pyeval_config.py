from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Optional, Tuple

import yaml

DEFAULT_SCRIPT_URLS = (
    "https://veehz.github.io/torch/vendor/gpu-browser.min.js",
    "https://veehz.github.io/torch/build/browser/torch.browser.umd.js",
)
DEFAULT_ADAPTER_URL = "https://veehz.github.io/torch/examples/pyodide/bridge.py"

# Import roots whose distribution on the index has a different name.
DEFAULT_PACKAGE_ALIASES = {
    "sklearn": "scikit-learn",
    "PIL": "pillow",
    "cv2": "opencv-python",
    "yaml": "pyyaml",
    "bs4": "beautifulsoup4",
}


@dataclass(frozen=True)
class EvaluatorConfig:
    """Settings for one evaluator session.

    `heavy_dependency` is the name whose plain `import` line is handled by the
    bridge instead of the installer. `raw_binding` and `utils_binding` are the
    names the bridge exposes inside the runtime before the adapter source runs.
    `http_timeout` of None means network fetches may wait indefinitely.
    """

    heavy_dependency: str = "torch"
    raw_binding: str = "js_torch"
    utils_binding: str = "torch_utils"
    script_urls: Tuple[str, ...] = DEFAULT_SCRIPT_URLS
    adapter_url: str = DEFAULT_ADAPTER_URL
    package_aliases: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_PACKAGE_ALIASES))
    http_timeout: Optional[float] = None
    filename: str = "<chunk>"

    def distribution_name(self, root: str) -> str:
        return self.package_aliases.get(root, root)


def config_from_mapping(data: Dict[str, Any], base: Optional[EvaluatorConfig] = None) -> EvaluatorConfig:
    base = base or EvaluatorConfig()
    known = {f.name for f in fields(EvaluatorConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(unknown)}")
    overrides = dict(data)
    if "script_urls" in overrides:
        overrides["script_urls"] = tuple(overrides["script_urls"])
    if "package_aliases" in overrides:
        # Merge with the defaults rather than replacing them.
        overrides["package_aliases"] = {**base.package_aliases, **dict(overrides["package_aliases"] or {})}
    return replace(base, **overrides)


def load_config(path: str) -> EvaluatorConfig:
    """Read a YAML mapping of EvaluatorConfig fields."""
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return config_from_mapping(data)
