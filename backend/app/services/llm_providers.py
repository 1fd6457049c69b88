from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from app.core.config import settings
from app.core.errors import ConfigError, ParseError, ProviderError
from app.schemas.llm import LlmProviderName, ProviderConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderSpec:
    id: str
    name: str
    api_url: str
    models: tuple[str, ...]
    requires_api_key: bool = True


PROVIDER_CATALOG: dict[str, ProviderSpec] = {
    "openai": ProviderSpec(
        id="openai",
        name="OpenAI",
        api_url="https://api.openai.com/v1/chat/completions",
        models=("gpt-4", "gpt-4-turbo", "gpt-3.5-turbo"),
    ),
    "groq": ProviderSpec(
        id="groq",
        name="GROQ",
        api_url="https://api.groq.com/openai/v1/chat/completions",
        models=("llama3-8b-8192", "llama3-70b-8192", "mixtral-8x7b-32768"),
    ),
    "gemini": ProviderSpec(
        id="gemini",
        name="Google Gemini",
        api_url="https://generativelanguage.googleapis.com/v1beta/models",
        models=("gemini-pro", "gemini-pro-vision", "gemini-2.0-flash"),
    ),
}


@dataclass(frozen=True)
class LlmPurpose:
    name: str
    system_prompt: str

    @property
    def temperature(self) -> float:
        if self.name == "evaluation":
            return float(settings.llm_evaluation_temperature)
        return float(settings.llm_generation_temperature)


GENERATION = LlmPurpose(
    name="generation",
    system_prompt="You are an expert quiz generator. Generate high-quality educational quiz questions.",
)
EVALUATION = LlmPurpose(
    name="evaluation",
    system_prompt=(
        "You are an expert educational evaluator. "
        "Provide fair, constructive, and detailed feedback on quiz answers."
    ),
)


def _provider_id(provider: LlmProviderName | str) -> str:
    return provider.value if isinstance(provider, LlmProviderName) else str(provider or "").strip().lower()


def server_api_key(provider: LlmProviderName | str) -> str | None:
    pid = _provider_id(provider)
    key = {
        "openai": settings.openai_api_key,
        "groq": settings.groq_api_key,
        "gemini": settings.gemini_api_key,
    }.get(pid)
    return (str(key).strip() or None) if key else None


def resolve_api_key(config: ProviderConfig) -> str | None:
    return (config.api_key or "").strip() or server_api_key(config.provider)


def _timeout() -> httpx.Timeout:
    return httpx.Timeout(
        connect=float(settings.llm_timeout_connect),
        read=float(settings.llm_timeout_read),
        write=float(settings.llm_timeout_write),
        pool=3.0,
    )


def _body_snippet(resp: Any) -> str:
    try:
        txt = getattr(resp, "text", "")
        if callable(txt):
            txt = txt()
        return str(txt or "")[:300]
    except Exception:
        return ""


class LlmProvider(Protocol):
    name: str

    def generate(self, prompt: str, config: ProviderConfig, *, purpose: LlmPurpose) -> str: ...


class _HttpProvider:
    name: str = ""

    def build_request(
        self, prompt: str, config: ProviderConfig, *, purpose: LlmPurpose, api_key: str
    ) -> tuple[str, dict[str, str], dict[str, str] | None, dict[str, Any]]:
        raise NotImplementedError

    def extract_text(self, data: Any) -> str:
        raise NotImplementedError

    def generate(self, prompt: str, config: ProviderConfig, *, purpose: LlmPurpose) -> str:
        api_key = resolve_api_key(config)
        spec = PROVIDER_CATALOG.get(self.name)
        if not api_key and (spec is None or spec.requires_api_key):
            raise ConfigError(f"no API key configured for provider {self.name}")

        url, headers, params, payload = self.build_request(prompt, config, purpose=purpose, api_key=api_key or "")

        t0 = time.perf_counter()
        logger.info(
            "llm: request provider=%s model=%s purpose=%s prompt_chars=%d",
            self.name,
            config.model,
            purpose.name,
            len(prompt or ""),
        )
        try:
            with httpx.Client(timeout=_timeout()) as client:
                r = client.post(url, json=payload, headers=headers, params=params)
        except httpx.HTTPError as e:
            logger.warning("llm: transport failure provider=%s err=%s", self.name, type(e).__name__)
            raise ProviderError(f"request failed: {type(e).__name__}", provider=self.name) from e

        status = int(getattr(r, "status_code", 0) or 0)
        if not 200 <= status < 300:
            snip = _body_snippet(r)
            logger.warning("llm: http error provider=%s status=%s body=%s", self.name, status, snip)
            raise ProviderError(snip or "request failed", status=status, provider=self.name)

        try:
            data = r.json()
        except ValueError as e:
            raise ParseError(f"{self.name} response body is not JSON", raw_text=_body_snippet(r)) from e

        try:
            text = self.extract_text(data)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise ParseError(f"{self.name} response has an unexpected envelope", raw_text=str(data)[:300]) from e
        if not isinstance(text, str):
            raise ParseError(f"{self.name} response content is not text", raw_text=str(data)[:300])

        logger.info(
            "llm: response provider=%s status=%s chars=%d duration_ms=%d",
            self.name,
            status,
            len(text),
            int((time.perf_counter() - t0) * 1000),
        )
        return text


class ChatCompletionsProvider(_HttpProvider):
    """OpenAI-style `/chat/completions` with a bearer token."""

    def __init__(self, name: str, *, base_url_attr: str, send_max_tokens: bool):
        self.name = name
        self._base_url_attr = base_url_attr
        self._send_max_tokens = send_max_tokens

    def build_request(self, prompt, config, *, purpose, api_key):
        base = str(getattr(settings, self._base_url_attr) or "").rstrip("/")
        payload: dict[str, Any] = {
            "model": config.model,
            "messages": [
                {"role": "system", "content": purpose.system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": purpose.temperature,
        }
        if self._send_max_tokens:
            payload["max_tokens"] = int(settings.llm_max_output_tokens)
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        return base + "/chat/completions", headers, None, payload

    def extract_text(self, data):
        return data["choices"][0]["message"]["content"]


class GeminiProvider(_HttpProvider):
    """`models/{model}:generateContent` with the key in the query string."""

    name = "gemini"

    def build_request(self, prompt, config, *, purpose, api_key):
        base = str(settings.gemini_base_url or "").rstrip("/")
        payload = {
            "contents": [{"parts": [{"text": f"{purpose.system_prompt}\n\n{prompt}"}]}],
            "generationConfig": {
                "temperature": purpose.temperature,
                "maxOutputTokens": int(settings.llm_max_output_tokens),
            },
        }
        headers = {"Content-Type": "application/json"}
        return f"{base}/{config.model}:generateContent", headers, {"key": api_key}, payload

    def extract_text(self, data):
        return data["candidates"][0]["content"]["parts"][0]["text"]


PROVIDERS: dict[str, LlmProvider] = {
    "openai": ChatCompletionsProvider("openai", base_url_attr="openai_base_url", send_max_tokens=False),
    "groq": ChatCompletionsProvider("groq", base_url_attr="groq_base_url", send_max_tokens=True),
    "gemini": GeminiProvider(),
}


def get_provider(provider: LlmProviderName | str) -> LlmProvider:
    pid = _provider_id(provider)
    impl = PROVIDERS.get(pid)
    if impl is None:
        raise ConfigError(f"Unsupported LLM provider: {pid}")
    return impl


def generate_text(prompt: str, config: ProviderConfig, *, purpose: LlmPurpose = GENERATION) -> str:
    return get_provider(config.provider).generate(prompt, config, purpose=purpose)
