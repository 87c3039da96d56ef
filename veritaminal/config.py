"""Application configuration from the environment (and .env).

    VERITAMINAL_DATA_DIR           save directory root        (./data)
    VERITAMINAL_PROVIDER_URL       text-generation backend    (http://localhost:5001)
    VERITAMINAL_PROVIDER_FORMAT    koboldcpp | openai | gemini
    VERITAMINAL_API_KEY            required for gemini
    VERITAMINAL_MODEL              model id (openai, gemini)
    VERITAMINAL_TIMEOUT            HTTP timeout in seconds    (120)
    VERITAMINAL_BALANCE_FLIP_RATE  share of judgments inverted for balance (0.3)
    VERITAMINAL_VALID_PERMIT_RATE  share of generated permits that are valid (0.7)
    VERITAMINAL_SEED               seed for permits and balance flips (unset = random)
"""

from __future__ import annotations

import logging
import os
import random
from collections.abc import Mapping
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from veritaminal.engine import DecisionEngine
from veritaminal.llm import HttpLLM, ProviderFormat
from veritaminal.memory import MemoryStore
from veritaminal.narrative import NarrativeState
from veritaminal.provider import ContentProvider
from veritaminal.session import SessionController
from veritaminal.settings import SettingsStore
from veritaminal.storage import Storage

logger = logging.getLogger(__name__)

ROOT = Path(__file__).parent.parent
ENV_PREFIX = "VERITAMINAL_"


class ConfigError(Exception):
    """Configuration is missing or invalid; the game cannot start."""


class AppConfig(BaseModel):
    data_dir: Path = Path("data")
    provider_url: str = "http://localhost:5001"
    provider_format: ProviderFormat = "koboldcpp"
    api_key: str = ""
    model: str = ""
    timeout: float = Field(default=120.0, gt=0)
    balance_flip_rate: float = Field(default=0.3, ge=0.0, le=1.0)
    valid_permit_rate: float = Field(default=0.7, ge=0.0, le=1.0)
    seed: int | None = None


def load_config(env: Mapping[str, str] | None = None, dotenv: bool = True) -> AppConfig:
    """Build AppConfig from VERITAMINAL_* variables.

    Raises ConfigError for invalid values, or when the gemini backend is
    selected without an API key.
    """
    if env is None:
        if dotenv:
            load_dotenv(ROOT / ".env")
        env = os.environ

    fields = {
        name: env[ENV_PREFIX + name.upper()]
        for name in AppConfig.model_fields
        if env.get(ENV_PREFIX + name.upper(), "") != ""
    }
    try:
        config = AppConfig.model_validate(fields)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    if config.provider_format == "gemini" and not config.api_key:
        raise ConfigError(
            f"{ENV_PREFIX}API_KEY is required for the gemini provider. "
            "Set it in the environment or in .env."
        )
    if config.provider_format == "gemini" and not config.model:
        config = config.model_copy(update={"model": "gemini-2.0-flash"})
    logger.debug(
        "Config: provider=%s url=%s data_dir=%s",
        config.provider_format, config.provider_url, config.data_dir,
    )
    return config


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

def build_llm(config: AppConfig) -> HttpLLM:
    return HttpLLM(
        provider_url=config.provider_url,
        api_key=config.api_key,
        provider_format=config.provider_format,
        model=config.model,
        timeout=config.timeout,
    )


def build_provider(config: AppConfig, llm=None) -> ContentProvider:
    return ContentProvider(
        llm if llm is not None else build_llm(config),
        rng=random.Random(config.seed),
        valid_permit_rate=config.valid_permit_rate,
        balance_flip_rate=config.balance_flip_rate,
    )


def build_controller(config: AppConfig, llm=None) -> SessionController:
    """Assemble a SessionController with all its collaborators."""
    memory = MemoryStore(Storage(config.data_dir))
    return SessionController(
        settings=SettingsStore(),
        memory=memory,
        engine=DecisionEngine(memory),
        narrative=NarrativeState(),
        provider=build_provider(config, llm),
    )
