import json
from typing import Any, Dict, Optional

from buddhabrot.errors import InvalidParameters
from buddhabrot.params import RenderParameters, get_preset


def default_config() -> Dict[str, Any]:
    return {
        "width": 800,
        "height": 600,
        "batch_size": 10000,
        "workers": 1,
        "seed": None,
        "vector_step": 5,
        "preset": None,
        "parameters": {},
        "output": "buddhabrot.png",
        "manifest": "artifacts/run.json",
    }


def load_config(config_path: Optional[str]) -> Dict[str, Any]:
    """Read a JSON config object, or the built-in defaults when no path is given."""
    if not config_path:
        return default_config()
    with open(config_path, "r", encoding="utf-8") as f:
        cfg = json.load(f)
    if not isinstance(cfg, dict):
        raise ValueError("Config JSON must be an object.")
    return cfg


def normalise_config(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fill defaults and validate. A `preset` name is expanded first and
    explicit `parameters` are merged on top of it. Raises ValueError
    (InvalidParameters for render parameter problems).
    """
    defaults = default_config()
    unknown = set(cfg) - set(defaults)
    if unknown:
        raise ValueError(f"Unknown config field(s): {', '.join(sorted(unknown))}")

    out = dict(defaults)
    out.update(cfg)

    for key in ("width", "height", "batch_size", "workers", "vector_step"):
        try:
            out[key] = int(out[key])
        except (TypeError, ValueError):
            raise ValueError(f"{key} must be an integer, got {out[key]!r}") from None
    if out["width"] <= 0 or out["height"] <= 0:
        raise ValueError("width/height must be positive.")
    if out["batch_size"] <= 0 or out["workers"] <= 0 or out["vector_step"] <= 0:
        raise ValueError("batch_size/workers/vector_step must be positive.")
    if out["seed"] is not None:
        out["seed"] = int(out["seed"])

    base = get_preset(out["preset"]).parameters if out["preset"] else RenderParameters()
    params = cfg.get("parameters") or {}
    if not isinstance(params, dict):
        raise InvalidParameters("parameters must be an object.")
    out["parameters"] = base.merged(params).to_dict()
    out["output"] = str(out["output"])
    out["manifest"] = str(out["manifest"]) if out["manifest"] else None
    return out
