"""Tests for veritaminal.config — environment parsing and wiring."""

from pathlib import Path

import pytest

from conftest import StubLLM
from veritaminal.config import AppConfig, ConfigError, build_controller, build_llm, load_config
from veritaminal.session import Phase


def test_defaults_with_empty_env() -> None:
    config = load_config(env={})
    assert config == AppConfig()
    assert config.provider_format == "koboldcpp"
    assert config.balance_flip_rate == 0.3
    assert config.seed is None


def test_reads_prefixed_variables() -> None:
    config = load_config(env={
        "VERITAMINAL_DATA_DIR": "/tmp/veritaminal",
        "VERITAMINAL_PROVIDER_URL": "http://localhost:8080",
        "VERITAMINAL_PROVIDER_FORMAT": "openai",
        "VERITAMINAL_MODEL": "mistral-7b",
        "VERITAMINAL_TIMEOUT": "30",
        "VERITAMINAL_BALANCE_FLIP_RATE": "0",
        "VERITAMINAL_VALID_PERMIT_RATE": "0.5",
        "VERITAMINAL_SEED": "42",
    })
    assert config.data_dir == Path("/tmp/veritaminal")
    assert config.provider_format == "openai"
    assert config.timeout == 30.0
    assert config.balance_flip_rate == 0.0
    assert config.valid_permit_rate == 0.5
    assert config.seed == 42


def test_empty_values_ignored() -> None:
    assert load_config(env={"VERITAMINAL_SEED": ""}).seed is None


@pytest.mark.parametrize("env", [
    {"VERITAMINAL_PROVIDER_FORMAT": "telepathy"},
    {"VERITAMINAL_BALANCE_FLIP_RATE": "2"},
    {"VERITAMINAL_TIMEOUT": "-1"},
])
def test_invalid_values(env: dict) -> None:
    with pytest.raises(ConfigError):
        load_config(env=env)


def test_gemini_requires_api_key() -> None:
    with pytest.raises(ConfigError, match="API_KEY"):
        load_config(env={"VERITAMINAL_PROVIDER_FORMAT": "gemini"})


def test_gemini_default_model() -> None:
    config = load_config(env={"VERITAMINAL_PROVIDER_FORMAT": "gemini", "VERITAMINAL_API_KEY": "k"})
    assert config.model


def test_build_llm_uses_config() -> None:
    llm = build_llm(AppConfig(provider_url="http://example:9000/", provider_format="openai"))
    url, _ = llm._build_request("hint", "x")
    assert url == "http://example:9000/v1/completions"


def test_build_controller(tmp_path: Path) -> None:
    config = AppConfig(data_dir=tmp_path, balance_flip_rate=0.0, seed=1)
    controller = build_controller(config, llm=StubLLM())
    assert controller.phase is Phase.AWAITING_SCENARIO
    assert controller.memory.storage.saves_dir == tmp_path / "saves"
    assert controller.provider.balance_flip_rate == 0.0
