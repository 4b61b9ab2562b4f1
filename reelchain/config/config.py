import os
from pathlib import Path
from typing import Any, Dict, Optional

import toml
import yaml
from dotenv import load_dotenv

from reelchain.core.errors import ConfigError, InvalidConstraintsError
from reelchain.core.models import DurationRange
from reelchain.orchestrator.backoff import BackoffPolicy
from reelchain.pricing import CostEstimator, QualityTier
from reelchain.segmentation.segmenter import SegmentationConstraints, validate_constraints

CONFIG_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = CONFIG_DIR.parents[1]


def get_default_config() -> Dict[str, Any]:
    """Get default configuration"""
    return {
        "pipeline": {
            "concurrency": 2,
            "continuity": "adjacent",
            "mode": "duration",
            "anchor_time_fraction": 0.98,
        },
        "backoff": {
            "base_delay": 1.0,
            "multiplier": 2.0,
            "max_delay": 60.0,
            "max_attempts": 3,
            "fallback_after": 2,
            "not_found_grace": 30.0,
            "take_timeout": 300.0,
            "call_timeout": 60.0,
        },
        "segmentation": {
            "max_segments": 15,
            "max_tokens_per_segment": 180,
            "min_duration": 3.0,
            "target_duration": 5.0,
            "max_duration": 10.0,
            "allow_auto_adjustment": True,
            "enforce_strict_limits": False,
        },
        "ledger": {
            "db_path": str(PROJECT_ROOT / "data" / "ledger.db"),
            "granted_balance": 0,
        },
        "cache": {
            "db_path": str(PROJECT_ROOT / "data" / "cache.db"),
        },
        "assets": {
            "root": str(PROJECT_ROOT / "data" / "assets"),
        },
        "pricing": {
            "tier": "basic",
        },
        "providers": {
            "primary": {
                "name": "wavespeed",
                "base_url": "https://api.wavespeed.ai/api/v3",
                "model_id": "bytedance/seedance-v1-pro-t2v-480p",
                "i2v_model_id": "bytedance/seedance-v1-pro-i2v-480p",
                "api_key": "",
                "request_timeout": 30.0,
            },
            "fallback": {},
        },
        "llm": {
            "model_id": "gpt-4o-mini",
            "api_key": "",
            "base_url": "",
            "temperature": 0.2,
        },
    }


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def load_providers_config(config_dir: Path = CONFIG_DIR) -> Dict[str, Any]:
    """Load provider settings from providers.yaml, falling back to the shipped example."""
    path = config_dir / "providers.yaml"
    if not path.exists():
        path = config_dir / "providers.example.yaml"
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse {path}: {e}") from e
    return data.get("providers", data)


def _apply_env(config: Dict[str, Any]) -> None:
    providers = config["providers"]

    def set_if(section: Dict[str, Any], key: str, env_name: str, cast=str):
        value = os.getenv(env_name)
        if value:
            try:
                section[key] = cast(value)
            except ValueError as e:
                raise ConfigError(f"Invalid value for {env_name}: {value!r}") from e

    set_if(providers["primary"], "api_key", "WAVESPEED_API_KEY")
    if os.getenv("FALLBACK_API_KEY") or os.getenv("FALLBACK_BASE_URL"):
        fallback = providers.setdefault("fallback", {}) or {}
        providers["fallback"] = fallback
        set_if(fallback, "api_key", "FALLBACK_API_KEY")
        set_if(fallback, "base_url", "FALLBACK_BASE_URL")

    set_if(config["llm"], "api_key", "LLM_OPENAI_API_KEY")
    set_if(config["llm"], "model_id", "LLM_MODEL_ID")
    set_if(config["llm"], "base_url", "LLM_BASE_URL")

    set_if(config["pipeline"], "concurrency", "REEL_CONCURRENCY", int)
    set_if(config["ledger"], "db_path", "REEL_LEDGER_DB")
    set_if(config["ledger"], "granted_balance", "REEL_GRANTED_BALANCE", int)
    set_if(config["cache"], "db_path", "REEL_CACHE_DB")
    set_if(config["assets"], "root", "REEL_ASSET_ROOT")


def load_config(config_path: Optional[os.PathLike] = None, env_file: Optional[os.PathLike] = None) -> Dict[str, Any]:
    """
    Build the effective configuration.

    Precedence, lowest first: built-in defaults, config.toml, providers yaml,
    environment (a .env file is loaded without overriding real variables).
    """
    config = get_default_config()

    path = Path(config_path) if config_path else CONFIG_DIR / "config.toml"
    if path.exists():
        try:
            _merge(config, toml.load(path))
        except toml.TomlDecodeError as e:
            raise ConfigError(f"Failed to parse {path}: {e}") from e
    elif config_path:
        raise ConfigError(f"Config file not found: {path}")

    _merge(config["providers"], load_providers_config(path.parent if config_path else CONFIG_DIR))

    env_path = Path(env_file) if env_file else PROJECT_ROOT / ".env"
    if env_path.exists():
        load_dotenv(dotenv_path=str(env_path), override=False)
    _apply_env(config)
    return config


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = config.get(name)
    if not isinstance(section, dict):
        raise ConfigError(f"Missing config section [{name}]")
    return section


def backoff_from_config(config: Dict[str, Any]) -> BackoffPolicy:
    section = _section(config, "backoff")
    try:
        return BackoffPolicy(**section)
    except TypeError as e:
        raise ConfigError(f"Invalid [backoff] section: {e}") from e


def constraints_from_config(config: Dict[str, Any]) -> SegmentationConstraints:
    section = _section(config, "segmentation")
    try:
        constraints = SegmentationConstraints(**section)
        validate_constraints(constraints)
    except (ValueError, InvalidConstraintsError) as e:
        raise ConfigError(f"Invalid [segmentation] section: {e}") from e
    return constraints


def duration_range_from_config(config: Dict[str, Any]) -> DurationRange:
    section = _section(config, "segmentation")
    return DurationRange(float(section["min_duration"]), float(section["max_duration"]))


def cost_estimator_from_config(config: Dict[str, Any]) -> CostEstimator:
    section = _section(config, "pricing")
    try:
        tier = QualityTier(section.get("tier", "basic"))
    except ValueError as e:
        raise ConfigError(f"Unknown quality tier: {section.get('tier')!r}") from e
    return CostEstimator(tier, credits_per_second=section.get("credits_per_second"))


def require(config: Dict[str, Any], dotted_key: str) -> Any:
    node: Any = config
    for part in dotted_key.split("."):
        if not isinstance(node, dict) or part not in node or node[part] in (None, ""):
            raise ConfigError(f"Missing required config key: {dotted_key}")
        node = node[part]
    return node
