from fastapi import APIRouter, Depends

from app.core.security import get_current_user, require_admin
from app.models.user import User
from app.schemas.llm import LlmConfigPublic, LlmProviderInfo, LlmProvidersResponse, ProviderConfig
from app.services.llm_config import config_store, public_view
from app.services.llm_providers import PROVIDER_CATALOG

router = APIRouter(prefix="/llm", tags=["llm"])


@router.get("/providers", response_model=LlmProvidersResponse)
def list_providers(_: User = Depends(get_current_user)):
    return LlmProvidersResponse(
        items=[
            LlmProviderInfo(
                id=spec.id,
                name=spec.name,
                api_url=spec.api_url,
                models=list(spec.models),
                requires_api_key=spec.requires_api_key,
            )
            for spec in PROVIDER_CATALOG.values()
        ]
    )


@router.get("/config", response_model=LlmConfigPublic)
def get_config(_: User = Depends(get_current_user)):
    return public_view(config_store.current())


@router.put("/config", response_model=LlmConfigPublic)
def put_config(payload: ProviderConfig, _: User = Depends(require_admin)):
    # ConfigError (400) propagates to the app-level handler.
    saved = config_store.save(payload)
    return public_view(saved)
