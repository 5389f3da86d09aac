"""
Auditor Analyzer API

HTTP layer over the analysis core: per-(tenant, session) state, the
deterministic analysis tools, the LLM agent and a document-fetch proxy.

Endpoints:
- GET  /api/state            - Current session state
- POST /api/state/patch      - Deep-merge a patch into session state
- DELETE /api/state          - Drop the session
- POST /api/tools/metrics    - Financial ratios for periods (or stored periods)
- POST /api/tools/anomalies  - Revenue anomaly notes
- POST /api/tools/analysis   - Full deterministic analysis + derived action items
- POST /api/tools/classify   - Document type of extracted text
- POST /api/agent            - Run the LLM agent; may replace the analysis
- POST /api/fetch            - Fetch a remote document (PDF as base64, else text)

Tenant and session come from the X-Tenant-Id / X-Session-Id headers. When
AUDIT_API_TOKEN is configured every /api route requires it as a bearer token.
"""

import base64
import logging
from typing import Any, Dict, List, Literal, Optional

import httpx
from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from audit_platform import config
from audit_platform.action_items import items_to_dicts, merge_action_items
from audit_platform.agent import AgentError, accept_analysis, add_usage, run_agent
from audit_platform.analyzer import build_analysis, compute_anomalies, compute_financial_metrics
from audit_platform.classifier import classify_document
from audit_platform.parser import decode_text, fetch_document
from audit_platform.state import EvictionPolicy, SessionKey, SessionStore
from audit_platform.types import AgentMessage, PeriodDatum

logger = logging.getLogger(__name__)

_store = SessionStore(EvictionPolicy(
    max_entries=config.SESSION_MAX_ENTRIES,
    ttl_seconds=config.SESSION_TTL_SECONDS,
))


# =============================================================================
# Dependencies
# =============================================================================


def get_store() -> SessionStore:
    """Process-wide session store (overridden in tests)."""
    return _store


def require_token(authorization: Optional[str] = Header(None)) -> None:
    """Single boolean gate: the bearer token must equal AUDIT_API_TOKEN when one is set."""
    expected = config.AUDIT_API_TOKEN
    if not expected:
        return
    if authorization != f"Bearer {expected}":
        raise HTTPException(status_code=401, detail="Invalid or missing bearer token")


def get_session_key(
    x_tenant_id: Optional[str] = Header(None),
    x_session_id: Optional[str] = Header(None),
) -> SessionKey:
    return SessionKey(
        tenant_id=(x_tenant_id or "").strip() or config.DEFAULT_TENANT_ID,
        session_id=(x_session_id or "").strip() or config.DEFAULT_SESSION_ID,
    )


# =============================================================================
# Request Models
# =============================================================================


class PatchRequest(BaseModel):
    patch: Dict[str, Any] = Field(default_factory=dict)


class PeriodsRequest(BaseModel):
    """Periods in wire form; omitted means "use the periods stored in the session"."""

    periods: Optional[List[Dict[str, Any]]] = None


class ClassifyRequest(BaseModel):
    text: str


class AgentMessageModel(BaseModel):
    role: Literal["user", "system", "assistant", "context"]
    content: str


class AgentRequest(BaseModel):
    messages: List[AgentMessageModel]


class FetchRequest(BaseModel):
    url: str


# =============================================================================
# Helpers
# =============================================================================


def _resolve_periods(req: PeriodsRequest, state: Dict[str, Any]) -> List[PeriodDatum]:
    raw = req.periods if req.periods is not None else (state.get("periods") or [])
    return [PeriodDatum.from_dict(p) for p in raw if isinstance(p, dict)]


# =============================================================================
# Routes
# =============================================================================

router = APIRouter(prefix="/api", dependencies=[Depends(require_token)])


@router.get("/state")
def get_state(key: SessionKey = Depends(get_session_key), store: SessionStore = Depends(get_store)):
    return {"state": store.get(key), "tenantId": key.tenant_id, "sessionId": key.session_id}


@router.post("/state/patch")
def patch_state(
    req: PatchRequest,
    key: SessionKey = Depends(get_session_key),
    store: SessionStore = Depends(get_store),
):
    state = store.patch(key, req.patch)
    return {"ok": True, "state": state}


@router.delete("/state")
def delete_state(key: SessionKey = Depends(get_session_key), store: SessionStore = Depends(get_store)):
    return {"ok": store.delete(key)}


@router.post("/tools/metrics")
def tool_metrics(
    req: PeriodsRequest,
    key: SessionKey = Depends(get_session_key),
    store: SessionStore = Depends(get_store),
):
    periods = _resolve_periods(req, store.get(key))
    metrics = compute_financial_metrics(periods).to_dict()
    store.patch(key, {"financialMetrics": metrics})
    return {"financialMetrics": metrics}


@router.post("/tools/anomalies")
def tool_anomalies(
    req: PeriodsRequest,
    key: SessionKey = Depends(get_session_key),
    store: SessionStore = Depends(get_store),
):
    periods = _resolve_periods(req, store.get(key))
    anomalies = compute_anomalies(periods).to_dict()
    store.patch(key, {"anomalies": anomalies})
    return {"anomalies": anomalies}


@router.post("/tools/analysis")
def tool_analysis(
    req: PeriodsRequest,
    key: SessionKey = Depends(get_session_key),
    store: SessionStore = Depends(get_store),
):
    def _apply(state: Dict[str, Any]) -> Dict[str, Any]:
        periods = _resolve_periods(req, state)
        analysis = build_analysis(periods).to_dict()
        items = merge_action_items(analysis, state.get("actionItems") or [])
        return {
            **state,
            "periods": [p.to_dict() for p in periods],
            "financialMetrics": analysis["financialMetrics"],
            "anomalies": analysis["anomalies"],
            "analysis": analysis,
            "actionItems": items_to_dicts(items),
        }

    state = store.update(key, _apply)
    return {"analysis": state["analysis"], "actionItems": state["actionItems"]}


@router.post("/tools/classify")
def tool_classify(req: ClassifyRequest):
    return {"docType": classify_document(req.text)}


@router.post("/agent")
def agent(
    req: AgentRequest,
    key: SessionKey = Depends(get_session_key),
    store: SessionStore = Depends(get_store),
):
    messages = [AgentMessage(m.role, m.content) for m in req.messages]
    try:
        result = run_agent(messages)
    except AgentError as exc:
        raise HTTPException(status_code=502, detail=f"Agent backend error: {exc}")

    def _apply(state: Dict[str, Any]) -> Dict[str, Any]:
        out = {**state, "tokenUsage": add_usage(state.get("tokenUsage") or {}, result.usage)}
        analysis, replaced = accept_analysis(state.get("analysis"), result.texts)
        if replaced:
            logger.info("Session %s analysis replaced by agent reply", key.composite)
            items = merge_action_items(analysis, state.get("actionItems") or [])
            out["analysis"] = analysis
            out["actionItems"] = items_to_dicts(items)
        return out

    store.update(key, _apply)
    return {"newMessages": [m.to_dict() for m in result.new_messages]}


@router.post("/fetch")
def fetch_remote(req: FetchRequest):
    if not req.url.lower().startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="Only http(s) URLs can be fetched")
    try:
        content, name = fetch_document(req.url, timeout=config.FETCH_TIMEOUT_SECONDS)
    except httpx.HTTPError as exc:
        logger.warning("Fetch failed for %s: %s", req.url, exc)
        raise HTTPException(status_code=502, detail=f"Upstream fetch failed: {exc}")

    if name.endswith(".pdf"):
        return {"type": "pdf", "data": base64.b64encode(content).decode("ascii")}
    return {"type": "text", "text": decode_text(content)}


# =============================================================================
# Application
# =============================================================================


def create_app() -> FastAPI:
    app = FastAPI(title="Auditor Analyzer API", version="1.0.0")

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid payload", "issues": jsonable_issues(exc)},
        )

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(router)
    return app


def jsonable_issues(exc: RequestValidationError) -> List[Dict[str, Any]]:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]


app = create_app()


def run_dev_server(host: str = "0.0.0.0", port: int = 3001):
    """Run the development server."""
    import uvicorn

    config.setup_logging()
    uvicorn.run("audit_platform.server:app", host=host, port=port, reload=True, log_level="info")


if __name__ == "__main__":
    run_dev_server()
