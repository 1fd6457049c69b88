from __future__ import annotations

import logging

from pydantic import ValidationError

from app.core.config import settings
from app.core.errors import ConfigError
from app.core.redis_client import get_redis
from app.schemas.llm import LlmConfigPublic, ProviderConfig
from app.services.llm_providers import PROVIDER_CATALOG, server_api_key

logger = logging.getLogger(__name__)

RUNTIME_KEY = "runtime:llm"


def default_config() -> ProviderConfig:
    return ProviderConfig(
        provider=str(settings.llm_default_provider or "openai").strip().lower(),
        model=str(settings.llm_default_model or "gpt-4").strip(),
    )


def mask_key(key: str | None) -> str:
    k = (key or "").strip()
    if not k:
        return ""
    if len(k) <= 8:
        return "…"
    return k[:4] + "…" + k[-4:]


class LlmConfigStore:
    """Process-wide LLM config, shared by every worker through Redis.

    Written only by `save`; every generation/evaluation call reads it
    through `resolve`. Last write wins.
    """

    def current(self) -> ProviderConfig:
        try:
            raw = get_redis().hgetall(RUNTIME_KEY) or {}
        except Exception as e:
            logger.warning("llm_config: redis read failed, using default: %s", type(e).__name__)
            return default_config()

        data: dict[str, str] = {}
        for k, v in raw.items():
            kk = k.decode("utf-8") if isinstance(k, (bytes, bytearray)) else str(k)
            vv = v.decode("utf-8") if isinstance(v, (bytes, bytearray)) else str(v)
            data[kk] = vv

        provider = (data.get("provider") or "").strip()
        model = (data.get("model") or "").strip()
        if not provider or not model:
            return default_config()

        try:
            return ProviderConfig(provider=provider, model=model, api_key=(data.get("api_key") or "").strip() or None)
        except ValidationError:
            logger.warning("llm_config: stored config is invalid (provider=%s), using default", provider)
            return default_config()

    def save(self, config: ProviderConfig) -> ProviderConfig:
        validate_for_save(config)
        get_redis().hset(
            RUNTIME_KEY,
            mapping={
                "provider": config.provider.value,
                "model": config.model.strip(),
                "api_key": (config.api_key or "").strip(),
            },
        )
        logger.info("llm_config: saved provider=%s model=%s", config.provider.value, config.model)
        return config

    def resolve(self, override: ProviderConfig | None = None) -> ProviderConfig:
        return override if override is not None else self.current()


def validate_for_save(config: ProviderConfig) -> None:
    spec = PROVIDER_CATALOG.get(config.provider.value)
    if spec is None:
        raise ConfigError(f"Unsupported LLM provider: {config.provider.value}")
    if config.model.strip() not in spec.models:
        raise ConfigError(f"model {config.model!r} is not offered by {spec.name}")
    if spec.requires_api_key and not (config.api_key or "").strip() and not server_api_key(config.provider):
        raise ConfigError("API key is required for this provider")


def public_view(config: ProviderConfig) -> LlmConfigPublic:
    return LlmConfigPublic(
        provider=config.provider.value,
        model=config.model,
        api_key_masked=mask_key(config.api_key),
        api_key_present=bool((config.api_key or "").strip()),
        server_key_present=bool(server_api_key(config.provider)),
    )


config_store = LlmConfigStore()
