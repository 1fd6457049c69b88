from __future__ import annotations

import enum

from pydantic import BaseModel, ConfigDict, Field


class LlmProviderName(str, enum.Enum):
    openai = "openai"
    groq = "groq"
    gemini = "gemini"


class ProviderConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    provider: LlmProviderName
    model: str = Field(min_length=1)
    api_key: str | None = Field(default=None, alias="apiKey")


class LlmProviderInfo(BaseModel):
    id: str
    name: str
    api_url: str
    models: list[str]
    requires_api_key: bool


class LlmProvidersResponse(BaseModel):
    items: list[LlmProviderInfo]


class LlmConfigPublic(BaseModel):
    provider: str
    model: str
    api_key_masked: str
    api_key_present: bool
    server_key_present: bool
