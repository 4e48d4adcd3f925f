import json
import logging
import os
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field, ValidationError

from studio import ratelimit
from studio.auth import extract_client_key, require_api_key
from studio.inspector import StaleGenerationError
from studio.llm_client import LLMError, generate_component, probe as llm_probe, refine_component, status as llm_status
from studio.llm_parsing import estimate_tokens, parse_ai_response
from studio.llm_prompts import build_generation_context, build_refinement_context
from studio.models import ComponentArtifact, MessageMetadata, Session, SessionSettings
from studio.sessions import SessionNotFound, SessionStore, get_store, session_summary
from studio.workspace import PreviewWorkspace, WorkspaceRegistry

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

log = logging.getLogger(__name__)

APP_ENV = os.getenv("APP_ENV", "production").strip().lower()
SCHEMA_PATH = Path(os.getenv("COMPONENT_SCHEMA_PATH") or Path(__file__).resolve().parent.parent / "schemas" / "component_schema.json")

app = FastAPI(title="Component Studio")

allow_origins = [o.strip() for o in os.getenv("ALLOW_ORIGINS", "*").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Preview-Generation", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
)

workspaces = WorkspaceRegistry()

_INFLIGHT_LOCK = threading.Lock()
_INFLIGHT: set = set()


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = str(uuid.uuid4())
    start = time.time()
    request.state.request_id = rid
    response = None
    try:
        response = await call_next(request)
        return response
    finally:
        dur_ms = int((time.time() - start) * 1000)
        log.info(
            "rid=%s method=%s path=%s status=%s dur_ms=%d",
            rid,
            request.method,
            request.url.path,
            getattr(response, "status_code", "?"),
            dur_ms,
        )


def _error_list(errors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    out = []
    for e in errors:
        loc = ".".join(str(p) for p in e.get("loc", []) if p != "body") or "(root)"
        out.append({"path": loc, "message": e.get("msg", "invalid")})
    return out


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": "Validation failed", "details": _error_list(exc.errors())})


@app.exception_handler(HTTPException)
async def _http_error_handler(request: Request, exc: HTTPException):
    content = exc.detail if isinstance(exc.detail, dict) else {"error": str(exc.detail)}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


class CreateSessionRequest(BaseModel):
    title: str = Field("Untitled Component", min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    settings: Optional[SessionSettings] = None
    tags: List[str] = Field(default_factory=list)


class MessageRequest(BaseModel):
    role: str = Field(pattern="^(user|assistant)$")
    content: str = Field(min_length=1)
    metadata: Optional[MessageMetadata] = None


class SaveComponentRequest(BaseModel):
    jsx: str
    css: str = ""
    props: Dict[str, Any] = Field(default_factory=dict)
    message_id: Optional[str] = Field(default=None, alias="messageId")


class AIOptions(BaseModel):
    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, alias="maxTokens", gt=0)


class GenerateRequest(BaseModel):
    prompt: str = Field(min_length=1, max_length=2000)
    session_id: str = Field(alias="sessionId", min_length=1)
    context: Dict[str, Any] = Field(default_factory=dict)
    options: AIOptions = Field(default_factory=AIOptions)


class RefineRequest(BaseModel):
    prompt: str = Field(min_length=1, max_length=2000)
    session_id: str = Field(alias="sessionId", min_length=1)
    current_component: Optional[ComponentArtifact] = Field(default=None, alias="currentComponent")
    options: AIOptions = Field(default_factory=AIOptions)


class ValidateRequest(BaseModel):
    component: Dict[str, Any]


class ReadyRequest(BaseModel):
    generation: int
    elements: List[Dict[str, Any]] = Field(default_factory=list)


class SelectRequest(BaseModel):
    generation: int
    node_id: str = Field(alias="nodeId")
    computed_style: Dict[str, Any] = Field(default_factory=dict, alias="computedStyle")
    text_content: Optional[str] = Field(default=None, alias="textContent")
    rect: Dict[str, Any] = Field(default_factory=dict)
    frame_rect: Dict[str, Any] = Field(default_factory=dict, alias="frameRect")


class EditRequest(BaseModel):
    generation: int
    property: str
    value: Any = None


class CloseRequest(BaseModel):
    generation: Optional[int] = None


class PreviewErrorRequest(BaseModel):
    generation: int
    message: str = ""


def _store() -> SessionStore:
    return get_store()


def _owner(api_key: str, request: Request) -> str:
    return extract_client_key(api_key, request.client.host if request.client else "anon")


def _load_session(store: SessionStore, session_id: str, owner: str) -> Session:
    try:
        return store.get(session_id, owner)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail={"error": "Session not found"}) from None


def _rate_limit_headers(remaining: int, reset_ts: int, *, limited: bool = False) -> Dict[str, str]:
    headers = {
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": str(reset_ts),
    }
    if limited:
        wait_seconds = max(0, reset_ts - int(time.time()))
        headers["Retry-After"] = str(wait_seconds)
    return headers


def _rate_limit_payload(reset_ts: int) -> Dict[str, Any]:
    wait_seconds = max(0, reset_ts - int(time.time()))
    return {
        "error": "rate limit exceeded",
        "reset": reset_ts,
        "retry_after_seconds": wait_seconds,
        "message": f"Rate limit exceeded. Try again in {wait_seconds} seconds.",
    }


def _rate_check(bucket: str, client_key: str) -> Tuple[bool, int, int]:
    allowed, remaining, reset_ts = ratelimit.check_and_increment(bucket, client_key)
    log.info("rate_limit check bucket=%s allowed=%s remaining=%s", bucket, allowed, remaining)
    return allowed, remaining, reset_ts


def _begin_generation(session_id: str) -> bool:
    with _INFLIGHT_LOCK:
        if session_id in _INFLIGHT:
            return False
        _INFLIGHT.add(session_id)
        return True


def _end_generation(session_id: str) -> None:
    with _INFLIGHT_LOCK:
        _INFLIGHT.discard(session_id)


def _llm_options(options: "AIOptions", settings: SessionSettings) -> Dict[str, Any]:
    return {
        "model": options.model or settings.model,
        "temperature": options.temperature if options.temperature is not None else settings.temperature,
        "max_tokens": options.max_tokens or settings.max_tokens,
    }


def _failure(message: str, exc: Exception) -> JSONResponse:
    content: Dict[str, Any] = {"error": message}
    if APP_ENV == "development":
        content["details"] = str(exc)
    return JSONResponse(status_code=500, content=content)


def _record_reply(
    store: SessionStore,
    session: Session,
    owner: str,
    user_content: str,
    reply: str,
    model: str,
    processing_ms: int,
    kind: Optional[str],
) -> Dict[str, Any]:
    artifact = parse_ai_response(reply)
    store.add_message(session.id, "user", user_content, owner_id=owner)
    assistant = store.add_message(
        session.id,
        "assistant",
        reply,
        metadata=MessageMetadata(model=model, tokens=estimate_tokens(reply), processing_time=processing_ms, type=kind),
        owner_id=owner,
    )
    version = store.save_component(session.id, artifact, message_id=assistant.id, owner_id=owner)
    ws = workspaces.get(session.id)
    if ws is not None:
        ws.update_source(artifact.jsx, artifact.css)
    return {
        "component": artifact.to_wire(),
        "messageId": assistant.id,
        "version": version.version,
        "metadata": {"processingTime": processing_ms, "model": model},
    }


def _run_ai(
    request: Request,
    api_key: str,
    session_id: str,
    kind: str,
    call,
) -> JSONResponse:
    """Shared guard for generate/refine: session lookup, rate limit, in-flight check."""
    owner = _owner(api_key, request)
    store = _store()
    session = _load_session(store, session_id, owner)

    allowed, remaining, reset_ts = _rate_check("ai", owner)
    if not allowed:
        return JSONResponse(
            status_code=429,
            content=_rate_limit_payload(reset_ts),
            headers=_rate_limit_headers(remaining, reset_ts, limited=True),
        )
    if not _begin_generation(session.id):
        log.info("ai.%s: rejected, generation already in flight session=%s", kind, session.id)
        return JSONResponse(status_code=409, content={"error": "A generation is already in progress for this session"})
    try:
        body = call(store, session, owner)
    except LLMError as e:
        log.warning("ai.%s: llm failure session=%s err=%s", kind, session.id, e)
        verb = "generate" if kind == "generation" else "refine"
        return _failure(f"Failed to {verb} component", e)
    finally:
        _end_generation(session.id)
    return JSONResponse(body, headers=_rate_limit_headers(remaining, reset_ts))


def _validate_component(component: Dict[str, Any]) -> Tuple[bool, List[Dict[str, Any]]]:
    """Check a component payload with the pydantic model, then the JSON schema if present."""
    errors: List[Dict[str, Any]] = []
    try:
        ComponentArtifact.model_validate(component, strict=True)
    except ValidationError as ve:
        errors.extend(_error_list(ve.errors()))

    if SCHEMA_PATH.exists():
        import jsonschema

        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        validator = jsonschema.Draft202012Validator(schema)
        for err in validator.iter_errors(component):
            loc = ".".join(str(p) for p in err.path) or "(root)"
            errors.append({"path": loc, "message": str(err.message)})
    return (len(errors) == 0), errors


@app.get("/", response_class=HTMLResponse)
def root() -> str:
    """Serve the workspace UI from templates/index.html."""
    tpl_index = Path(__file__).resolve().parent.parent / "templates" / "index.html"
    if tpl_index.exists():
        return tpl_index.read_text(encoding="utf-8")
    return "<!doctype html><html><body><h1>Component Studio</h1><p>Add templates/index.html for the UI.</p></body></html>"


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/llm/status")
def llm_status_endpoint() -> Dict[str, Any]:
    return llm_status()


@app.get("/llm/probe")
def llm_probe_endpoint() -> Dict[str, Any]:
    return llm_probe()


@app.post("/sessions", status_code=201)
def create_session(req: CreateSessionRequest, request: Request, api_key: str = Depends(require_api_key)):
    session = _store().create(
        _owner(api_key, request),
        req.title,
        description=req.description,
        settings=req.settings,
        tags=req.tags,
    )
    return JSONResponse(status_code=201, content=session_summary(session))


@app.get("/sessions/{session_id}")
def get_session(session_id: str, request: Request, api_key: str = Depends(require_api_key)):
    session = _load_session(_store(), session_id, _owner(api_key, request))
    return session_summary(session)


@app.delete("/sessions/{session_id}")
def delete_session(session_id: str, request: Request, api_key: str = Depends(require_api_key)):
    store = _store()
    owner = _owner(api_key, request)
    _load_session(store, session_id, owner)
    store.delete(session_id, owner)
    workspaces.discard(session_id)
    return {"deleted": True, "id": session_id}


@app.post("/sessions/{session_id}/messages", status_code=201)
def add_message(session_id: str, req: MessageRequest, request: Request, api_key: str = Depends(require_api_key)):
    store = _store()
    owner = _owner(api_key, request)
    _load_session(store, session_id, owner)
    message = store.add_message(session_id, req.role, req.content, metadata=req.metadata, owner_id=owner)
    return JSONResponse(status_code=201, content=message.to_wire())


@app.post("/sessions/{session_id}/components", status_code=201)
def save_component(session_id: str, req: SaveComponentRequest, request: Request, api_key: str = Depends(require_api_key)):
    """Persist a code update (editor or preview) as the next version."""
    store = _store()
    owner = _owner(api_key, request)
    _load_session(store, session_id, owner)
    artifact = ComponentArtifact(jsx=req.jsx, css=req.css, props=req.props)
    version = store.save_component(session_id, artifact, message_id=req.message_id, owner_id=owner)
    ws = workspaces.get(session_id)
    if ws is not None:
        ws.update_source(artifact.jsx, artifact.css)
    return JSONResponse(status_code=201, content=version.to_wire())


@app.post("/ai/generate")
def ai_generate(req: GenerateRequest, request: Request, api_key: str = Depends(require_api_key)):
    def _call(store: SessionStore, session: Session, owner: str) -> Dict[str, Any]:
        context = build_generation_context(req.prompt, req.context, session.messages)
        options = _llm_options(req.options, session.settings)
        start = time.time()
        reply = generate_component(context, options)
        processing_ms = int((time.time() - start) * 1000)
        body = _record_reply(store, session, owner, req.prompt, reply, options["model"], processing_ms, None)
        body["message"] = "Component generated successfully"
        return body

    return _run_ai(request, api_key, req.session_id, "generation", _call)


@app.post("/ai/refine")
def ai_refine(req: RefineRequest, request: Request, api_key: str = Depends(require_api_key)):
    def _call(store: SessionStore, session: Session, owner: str) -> Dict[str, Any]:
        current = req.current_component or session.current_component
        context = build_refinement_context(req.prompt, current, session.messages)
        options = _llm_options(req.options, session.settings)
        start = time.time()
        reply = refine_component(context, options)
        processing_ms = int((time.time() - start) * 1000)
        body = _record_reply(store, session, owner, f"Refine: {req.prompt}", reply, options["model"], processing_ms, "refinement")
        body["message"] = "Component refined successfully"
        return body

    return _run_ai(request, api_key, req.session_id, "refinement", _call)


@app.post("/validate")
def validate_endpoint(req: ValidateRequest):
    """
    Validate a component artifact payload.
    Returns 200 and {"valid": true} on success,
            400 and {"error": "Validation failed", "details": [...]} on failure.
    """
    valid, errors = _validate_component(req.component)
    if not valid:
        return JSONResponse(status_code=400, content={"error": "Validation failed", "details": errors})
    return {"valid": True}


def _workspace(session_id: str, request: Request, api_key: str, edit_mode: Optional[bool] = None) -> Tuple[Session, PreviewWorkspace]:
    store = _store()
    owner = _owner(api_key, request)
    session = _load_session(store, session_id, owner)

    def _on_code_update(jsx: str, css: str) -> None:
        store.save_component(session_id, ComponentArtifact(jsx=jsx, css=css), owner_id=owner)

    current = session.current_component
    ws = workspaces.open(session_id, current.jsx, current.css, on_code_update=_on_code_update, edit_mode=edit_mode)
    return session, ws


def _open_workspace(session_id: str, request: Request, api_key: str) -> PreviewWorkspace:
    _load_session(_store(), session_id, _owner(api_key, request))
    ws = workspaces.get(session_id)
    if ws is None:
        raise HTTPException(status_code=409, detail={"error": "Preview has not been rendered"})
    return ws


def _stale(e: StaleGenerationError) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={"error": "Preview generation is stale", "generation": e.generation, "current": e.current},
    )


@app.get("/sessions/{session_id}/preview", response_class=HTMLResponse)
def preview(session_id: str, request: Request, edit: Optional[bool] = None, api_key: str = Depends(require_api_key)):
    """Render the current component into a fresh preview document.

    ``?edit=false`` renders without the inspector; omitted keeps the last mode.
    """
    _, ws = _workspace(session_id, request, api_key, edit_mode=edit)
    rendered = ws.render()
    return HTMLResponse(rendered.html, headers={"X-Preview-Generation": str(rendered.generation)})


@app.post("/sessions/{session_id}/preview/ready")
def preview_ready(session_id: str, req: ReadyRequest, request: Request, api_key: str = Depends(require_api_key)):
    ws = _open_workspace(session_id, request, api_key)
    wired = ws.on_ready(req.generation, req.elements)
    return {"wired": wired, "stale": not wired, "generation": ws.generation, "elements": len(ws.inspector.elements())}


@app.post("/sessions/{session_id}/preview/select")
def preview_select(session_id: str, req: SelectRequest, request: Request, api_key: str = Depends(require_api_key)):
    ws = _open_workspace(session_id, request, api_key)
    try:
        selection = ws.select(
            req.generation,
            req.node_id,
            computed_style=req.computed_style,
            text_content=req.text_content,
            rect=req.rect,
            frame_rect=req.frame_rect,
        )
    except StaleGenerationError as e:
        return _stale(e)
    except KeyError:
        return JSONResponse(status_code=404, content={"error": "Element not found"})
    except PermissionError as e:
        return JSONResponse(status_code=409, content={"error": str(e)})
    element = selection.element
    return {
        "generation": selection.generation,
        "nodeId": element.node_id,
        "tagName": element.tag,
        "className": element.class_name,
        "anchor": selection.anchor(),
        "properties": ws.editor.properties.to_dict() if ws.editor else {},
    }


@app.post("/sessions/{session_id}/preview/edit")
def preview_edit(session_id: str, req: EditRequest, request: Request, api_key: str = Depends(require_api_key)):
    """Apply one property change: live mutation, regenerated CSS and a new stored version."""
    ws = _open_workspace(session_id, request, api_key)
    try:
        result = ws.apply_property(req.generation, req.property, req.value)
    except StaleGenerationError as e:
        return _stale(e)
    except LookupError as e:
        return JSONResponse(status_code=409, content={"error": str(e)})
    except ValueError as e:
        return JSONResponse(status_code=400, content={"error": "Validation failed", "details": [{"path": "property", "message": str(e)}]})

    session = _load_session(_store(), session_id, _owner(api_key, request))
    rendered = ws.update_source(ws.jsx, ws.css)
    return {
        "mutation": result.mutation.to_message() if result.mutation else None,
        "properties": result.properties.to_dict(),
        "css": result.css,
        "version": len(session.component_history),
        "generation": rendered.generation,
        "html": rendered.html,
    }


@app.post("/sessions/{session_id}/preview/close")
def preview_close(session_id: str, req: CloseRequest, request: Request, api_key: str = Depends(require_api_key)):
    ws = _open_workspace(session_id, request, api_key)
    try:
        ws.close_editor(req.generation)
    except StaleGenerationError as e:
        return _stale(e)
    return {"closed": True, "message": {"type": "clear-selection", "generation": ws.generation}}


@app.post("/sessions/{session_id}/preview/error")
def preview_error(session_id: str, req: PreviewErrorRequest, request: Request, api_key: str = Depends(require_api_key)):
    ws = _open_workspace(session_id, request, api_key)
    body = ws.on_load_error(req.generation, req.message)
    if body is None:
        return {"stale": True, "generation": ws.generation}
    return body
