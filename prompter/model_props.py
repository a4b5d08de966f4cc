# prompter/model_props.py
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple
from pathlib import Path
import os
import commentjson

from dotenv import load_dotenv
load_dotenv()

DEFAULT_SETTINGS: Dict[str, Any] = {
    "model": os.getenv("PROMPTER_MODEL", "gemini-3-flash-preview"),
    "poll_interval_seconds": 15.0,
    "history_points": 7,
    "max_sources": 5,
    "search_history_limit": 10,
    "llm_timeout": float(os.getenv("PROMPTER_LLM_TIMEOUT", "300")),
    "llm_retries": int(os.getenv("PROMPTER_LLM_RETRIES", "1")),
}

_SETTING_TYPES: Dict[str, tuple] = {
    "model": (str,),
    "poll_interval_seconds": (int, float),
    "history_points": (int,),
    "max_sources": (int,),
    "search_history_limit": (int,),
    "llm_timeout": (int, float),
    "llm_retries": (int,),
}


def load_settings(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load workbench settings: defaults overridden by an optional JSON-with-comments file.
    Fails fast if the file is named but missing, or if a key is unknown or mistyped.
    """
    settings = dict(DEFAULT_SETTINGS)
    raw_path = path if path is not None else os.getenv("PROMPTER_CONFIG_PATH")
    if not raw_path:
        return settings

    cfg_path = Path(raw_path)
    if not cfg_path.exists():
        raise FileNotFoundError(
            f"Prompter config file not found at '{cfg_path}'. "
        )

    with cfg_path.open("r", encoding="utf-8") as f:
        data = commentjson.load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Prompter config must be a JSON object: {cfg_path}")

    for key, value in data.items():
        expected = _SETTING_TYPES.get(key)
        if expected is None:
            raise ValueError(f"Prompter config has unknown key: {key}")
        # bool is an int subclass, never a valid numeric setting here
        if isinstance(value, bool) or not isinstance(value, expected):
            raise ValueError(f"Prompter config key {key} has invalid value: {value!r}")
        settings[key] = value

    if settings["llm_retries"] < 1:
        raise ValueError("Prompter config key llm_retries must be >= 1")

    return settings


# !######################################################################################################
#! UTILS
# !######################################################################################################

def is_openai_model(model_name) -> bool:
    prefixes = ("gpt-", "gpt4", "gpt-4", "gpt-5")
    return any(model_name.startswith(p) for p in prefixes)


# Suffix presets: (verbosity, reasoning effort). A "-flex" tail selects the flex tier.
MODEL_PRESETS: Dict[str, Tuple[str, str]] = {
    "std": ("low", "low"),
    "standard": ("low", "low"),
    "fast": ("low", "none"),
    "deep": ("medium", "high"),
}

# Explicit tokens fill the first free slot they are valid for, in this order.
MODEL_TOKEN_SLOTS: List[Tuple[str, Tuple[str, ...]]] = [
    ("verbosity", ("low", "medium", "high")),
    ("effort", ("none", "minimal", "low", "medium", "high", "xhigh")),
    ("service_tier", ("auto", "default", "flex", "priority")),
]


def parse_model_name(raw: str) -> Tuple[str, Dict[str, Any]]:
    """
    Split an OpenAI model name into (base_model, responses_api_params).

    Suffixes follow the base id, joined with "_":
        - a preset: std | standard | fast | deep, optionally with "-flex"
          (e.g. "gpt-5.1_deep-flex")
        - explicit tokens, read as verbosity (low | medium | high), then
          reasoning effort (none | minimal | low | medium | high | xhigh),
          then service tier (auto | default | flex | priority)
          (e.g. "gpt-5_high_medium_priority")

    A bare name yields no params; otherwise service_tier defaults to "default".
    Unknown tokens raise ValueError.
    """
    base, *suffixes = (raw or "").strip().split("_")
    if not base:
        raise ValueError("parse_model_name: no model name passed")
    if not suffixes:
        return base, {}

    slots: Dict[str, Optional[str]] = {"verbosity": None, "effort": None, "service_tier": None}
    unknown = []
    for token in (s.strip().lower() for s in suffixes):
        if not token:
            continue
        preset, dash, tail = token.partition("-")
        if preset in MODEL_PRESETS and (not dash or tail == "flex"):
            verbosity, effort = MODEL_PRESETS[preset]
            for slot, value in (("verbosity", verbosity), ("effort", effort), ("service_tier", tail or None)):
                if slots[slot] is None:
                    slots[slot] = value
            continue
        slot = next((name for name, allowed in MODEL_TOKEN_SLOTS if slots[name] is None and token in allowed), None)
        if slot is None:
            unknown.append(token)
        else:
            slots[slot] = token

    if unknown:
        raise ValueError(f"parse_model_name: unknown model suffix token(s) {unknown} in '{raw}'")

    params: Dict[str, Any] = {}
    if slots["verbosity"]:
        params["text"] = {"verbosity": slots["verbosity"]}
    if slots["effort"]:
        params["reasoning"] = {"effort": slots["effort"]}
    params["service_tier"] = slots["service_tier"] or "default"
    return base, params
