import os

import pytest

from reelchain.config.config import (
    backoff_from_config,
    constraints_from_config,
    cost_estimator_from_config,
    get_default_config,
    load_config,
    require,
)
from reelchain.core.errors import ConfigError
from reelchain.pricing import QualityTier

ENV_VARS = [
    "WAVESPEED_API_KEY",
    "FALLBACK_API_KEY",
    "FALLBACK_BASE_URL",
    "LLM_OPENAI_API_KEY",
    "LLM_MODEL_ID",
    "LLM_BASE_URL",
    "REEL_CONCURRENCY",
    "REEL_LEDGER_DB",
    "REEL_CACHE_DB",
    "REEL_ASSET_ROOT",
    "REEL_GRANTED_BALANCE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield
    # load_dotenv writes straight into os.environ
    for name in ENV_VARS:
        os.environ.pop(name, None)


def test_toml_and_yaml_layers_merge(tmp_path):
    (tmp_path / "config.toml").write_text("[pipeline]\nconcurrency = 5\n\n[pricing]\ntier = \"pro\"\n")
    (tmp_path / "providers.yaml").write_text("providers:\n  primary:\n    model_id: vendor/custom\n")

    config = load_config(tmp_path / "config.toml", env_file=tmp_path / "missing.env")

    assert config["pipeline"]["concurrency"] == 5
    assert config["pipeline"]["anchor_time_fraction"] == 0.98
    assert config["providers"]["primary"]["model_id"] == "vendor/custom"
    assert config["providers"]["primary"]["base_url"].startswith("https://")
    assert cost_estimator_from_config(config).tier == QualityTier.PRO


def test_env_file_overrides(tmp_path):
    (tmp_path / "config.toml").write_text("")
    env = tmp_path / ".env"
    env.write_text(
        "WAVESPEED_API_KEY=ws-key\nFALLBACK_API_KEY=fb-key\nREEL_CONCURRENCY=7\nREEL_GRANTED_BALANCE=500\n"
    )

    config = load_config(tmp_path / "config.toml", env_file=env)

    assert config["providers"]["primary"]["api_key"] == "ws-key"
    assert config["providers"]["fallback"]["api_key"] == "fb-key"
    assert config["pipeline"]["concurrency"] == 7
    assert config["ledger"]["granted_balance"] == 500


def test_bad_env_value_raises(tmp_path, monkeypatch):
    (tmp_path / "config.toml").write_text("")
    monkeypatch.setenv("REEL_CONCURRENCY", "many")
    with pytest.raises(ConfigError):
        load_config(tmp_path / "config.toml", env_file=tmp_path / "missing.env")


def test_missing_config_file_raises(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "nope.toml")


def test_section_helpers():
    config = get_default_config()
    assert backoff_from_config(config).max_attempts == 3
    assert constraints_from_config(config).max_segments == 15

    config["segmentation"]["min_duration"] = 20.0
    with pytest.raises(ConfigError):
        constraints_from_config(config)

    del config["backoff"]
    with pytest.raises(ConfigError):
        backoff_from_config(config)


def test_require_reports_missing_keys():
    config = get_default_config()
    assert require(config, "llm.model_id") == "gpt-4o-mini"
    with pytest.raises(ConfigError):
        require(config, "providers.primary.api_key")
