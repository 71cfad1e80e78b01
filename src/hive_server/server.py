"""FastAPI application exposing the tenant registry and agent dispatch."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from agents.dispatcher import AgentDispatcher, create_default_dispatcher
from llm.engine import LLMClient, LLMEngine
from protocol.errors import StorageError
from protocol.message import task
from tenants.manager import TenantManager
from tenants.models import TenantConfig

from .config import load_config

logger = logging.getLogger(__name__)


# -----------------------------
# Pydantic request models
# -----------------------------
class TenantCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    slug: Optional[str] = None
    brand: Optional[Dict[str, Any]] = None
    platforms: Optional[Dict[str, Dict[str, str]]] = None
    settings: Optional[Dict[str, Any]] = None


class TenantUpdateRequest(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    brand: Optional[Dict[str, Any]] = None
    # A null platform removes it.
    platforms: Optional[Dict[str, Optional[Dict[str, str]]]] = None
    settings: Optional[Dict[str, Any]] = None


class MessageRequest(BaseModel):
    agent: str = Field(..., min_length=1, description="Name of the agent to address.")
    action: str = Field(..., min_length=1)
    input: Dict[str, Any] = Field(default_factory=dict)
    sender: str = Field(default="api")


# -----------------------------
# Utilities
# -----------------------------
def _present(req: BaseModel) -> Dict[str, Any]:
    """Top-level request fields that were actually given."""
    return {k: v for k, v in req.model_dump().items() if v is not None}


def _make_llm(cfg: Dict[str, Any]) -> Optional[LLMClient]:
    llm_cfg = cfg.get("llm", {}) or {}
    if not llm_cfg.get("model_path"):
        logger.warning("No llm.model_path configured; LLM-backed actions will echo their raw input.")
        return None
    try:
        return LLMEngine.from_config(cfg)
    except (FileNotFoundError, ImportError) as e:
        logger.warning("Language model not loaded: %s", e)
        return None


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    tenants: Optional[TenantManager] = None,
    llm: Optional[LLMClient] = None,
) -> FastAPI:
    cfg = load_config(config_path)

    cors_origins = cfg.get("server", {}).get("cors_origins", ["*"])

    if tenants is None:
        tenants = TenantManager.from_config(cfg)
    if llm is None:
        llm = _make_llm(cfg)
    dispatcher: AgentDispatcher = create_default_dispatcher(tenants, llm)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await tenants.init()
        yield

    app = FastAPI(title="BrandHive", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.tenants = tenants
    app.state.dispatcher = dispatcher

    def _view(tenant: TenantConfig) -> Dict[str, Any]:
        """Tenant record with credential values masked."""
        data = tenant.to_dict()
        executor = tenants.get_executor(tenant.id)
        data["platforms"] = executor.redacted() if executor is not None else {}
        return data

    def _tenant_or_404(tenant_id: str) -> Dict[str, Any]:
        tenant = tenants.get(tenant_id)
        if tenant is None:
            raise HTTPException(status_code=404, detail=f"Tenant not found: {tenant_id}")
        return _view(tenant)

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "llm_loaded": llm is not None,
            "data_root": str(tenants.root),
            "tenants": len(tenants),
        }

    @app.get("/agents")
    def list_agents() -> List[Dict[str, Any]]:
        return dispatcher.capabilities()

    @app.get("/tenants")
    def list_tenants() -> List[Dict[str, Any]]:
        return [_view(t) for t in tenants.list()]

    @app.post("/tenants", status_code=201)
    async def create_tenant(req: TenantCreateRequest) -> Dict[str, Any]:
        try:
            tenant = await tenants.create(_present(req))
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except StorageError as e:
            raise HTTPException(status_code=503, detail=e.detail)
        return _view(tenant)

    @app.get("/tenants/by-slug/{slug}")
    def get_tenant_by_slug(slug: str) -> Dict[str, Any]:
        tenant = tenants.get_by_slug(slug)
        if tenant is None:
            raise HTTPException(status_code=404, detail=f"Tenant not found: {slug}")
        return _view(tenant)

    @app.get("/tenants/{tenant_id}")
    def get_tenant(tenant_id: str) -> Dict[str, Any]:
        return _tenant_or_404(tenant_id)

    @app.patch("/tenants/{tenant_id}")
    async def update_tenant(tenant_id: str, req: TenantUpdateRequest) -> Dict[str, Any]:
        try:
            tenant = await tenants.update(tenant_id, _present(req))
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except StorageError as e:
            raise HTTPException(status_code=503, detail=e.detail)
        if tenant is None:
            raise HTTPException(status_code=404, detail=f"Tenant not found: {tenant_id}")
        return _view(tenant)

    @app.delete("/tenants/{tenant_id}")
    async def delete_tenant(tenant_id: str, purge: bool = False) -> Dict[str, Any]:
        try:
            deleted = await tenants.delete(tenant_id, purge=purge)
        except StorageError as e:
            raise HTTPException(status_code=503, detail=e.detail)
        if not deleted:
            raise HTTPException(status_code=404, detail=f"Tenant not found: {tenant_id}")
        return {"deleted": True, "id": tenant_id}

    @app.get("/tenants/{tenant_id}/guidelines")
    def get_guidelines(tenant_id: str) -> Dict[str, Any]:
        _tenant_or_404(tenant_id)
        return {"id": tenant_id, "guidelines": tenants.get_brand_guidelines(tenant_id)}

    @app.post("/tenants/{tenant_id}/messages")
    async def send_tenant_message(tenant_id: str, req: MessageRequest) -> Dict[str, Any]:
        _tenant_or_404(tenant_id)
        answer = await dispatcher.dispatch(task(req.sender, req.agent, req.action, req.input), tenant_id)
        return answer.to_dict()

    @app.post("/messages")
    async def send_message(req: MessageRequest) -> Dict[str, Any]:
        answer = await dispatcher.dispatch(task(req.sender, req.agent, req.action, req.input))
        return answer.to_dict()

    @app.post("/envelopes")
    async def send_envelope(data: Any = Body(...), tenant_id: Optional[str] = None) -> Dict[str, Any]:
        """Dispatch a raw wire envelope; malformed ones get an INVALID_MESSAGE envelope back."""
        if tenant_id is not None:
            _tenant_or_404(tenant_id)
        answer = await dispatcher.dispatch_raw(data, tenant_id)
        return answer.to_dict()

    return app
