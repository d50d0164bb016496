"""skillgate HTTP API for hosts that call the engine over the network.

One Engine per server process. Sessions live in memory and end when the
host deletes them or the process exits.

Auth: Authorization: Bearer <key>, where the key comes from the
environment variable named by [server] api_key_env (SKILLGATE_API_KEY by
default). The server refuses to start without it.
"""

import logging
import os
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from .config import Settings, load_settings
from .engine import Engine
from .models import Evaluation

logger = logging.getLogger(__name__)


class SessionCreate(BaseModel):
    session_id: Optional[str] = None


class SessionInfo(BaseModel):
    session_id: str
    env_overrides: list[str] = Field(default_factory=list)


class PromptRequest(BaseModel):
    prompt: str


class ToolRequest(BaseModel):
    file_path: str
    content: Optional[str] = None
    tool_name: Optional[str] = None


class DiagnosticOut(BaseModel):
    code: str
    message: str
    module_id: Optional[str] = None


class DecisionOut(BaseModel):
    outcome: str
    module_id: Optional[str] = None
    message: Optional[str] = None
    context: Optional[str] = None
    visibility: str = "normal"
    halt: bool = False
    diagnostics: list[DiagnosticOut] = Field(default_factory=list)


class RuleOut(BaseModel):
    id: str
    kind: str
    enforcement: str
    priority: str
    description: str = ""


def require_api_key(api_key_env: str) -> str:
    """Refuse to start without an API key."""
    key = os.environ.get(api_key_env, "")
    if not key:
        raise RuntimeError(f"{api_key_env} must be set")
    return key


def create_app(engine: Optional[Engine] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the app. Rules are loaded here, so config errors surface at startup."""
    settings = settings or (engine.settings if engine else load_settings())
    engine = engine or Engine.from_settings(settings)
    api_key_env = settings.api_key_env

    app = FastAPI(
        title="skillgate API",
        description="Skill activation and guardrail decisions",
        version="0.1.0",
    )
    app.state.engine = engine

    @app.on_event("startup")
    async def startup_event():
        require_api_key(api_key_env)
        logger.info("skillgate API serving %d rule(s)", len(engine.store))

    async def verify_api_key(
        authorization: Annotated[str | None, Header()] = None,
    ) -> str:
        expected = os.environ.get(api_key_env, "")
        if not expected:
            raise HTTPException(500, f"{api_key_env} not configured on server")
        if not authorization or not authorization.startswith("Bearer "):
            raise HTTPException(401, "Missing authentication")
        if authorization[7:] != expected:
            raise HTTPException(401, "Invalid API key")
        return authorization[7:]

    def _decision_out(evaluation: Evaluation) -> DecisionOut:
        response = engine.respond(evaluation)
        return DecisionOut(
            outcome=evaluation.decision.outcome.value,
            module_id=evaluation.decision.module_id,
            message=response.reason,
            context=response.context,
            visibility=response.visibility,
            halt=response.halt,
            diagnostics=[
                DiagnosticOut(code=d.code, message=d.message, module_id=d.module_id)
                for d in evaluation.diagnostics
            ],
        )

    def _require_session(session_id: str) -> None:
        if session_id not in engine.sessions:
            raise HTTPException(404, f"Unknown session {session_id}")

    @app.get("/health")
    async def health():
        return {"status": "ok", "rules": len(engine.store)}

    @app.get("/rules", response_model=list[RuleOut])
    async def list_rules(_: str = Depends(verify_api_key)):
        return [
            RuleOut(
                id=r.id, kind=r.kind.value, enforcement=r.enforcement.value,
                priority=r.priority.value, description=r.description,
            )
            for r in engine.store
        ]

    @app.post("/sessions", response_model=SessionInfo, status_code=201)
    async def create_session(body: SessionCreate, _: str = Depends(verify_api_key)):
        if body.session_id and body.session_id in engine.sessions:
            raise HTTPException(409, f"Session {body.session_id} already exists")
        state = engine.start_session(body.session_id)
        return SessionInfo(
            session_id=state.session_id,
            env_overrides=sorted(state.active_env_overrides),
        )

    @app.delete("/sessions/{session_id}")
    async def delete_session(session_id: str, _: str = Depends(verify_api_key)):
        _require_session(session_id)
        engine.end_session(session_id)
        return {"session_id": session_id, "ended": True}

    @app.post("/sessions/{session_id}/prompt", response_model=DecisionOut)
    def prompt_submitted(session_id: str, body: PromptRequest, _: str = Depends(verify_api_key)):
        _require_session(session_id)
        return _decision_out(engine.on_prompt_submitted(body.prompt, session_id))

    @app.post("/sessions/{session_id}/tool", response_model=DecisionOut)
    def tool_proposed(session_id: str, body: ToolRequest, _: str = Depends(verify_api_key)):
        _require_session(session_id)
        return _decision_out(engine.on_tool_invocation_proposed(
            body.file_path, session_id, content=body.content, tool_name=body.tool_name,
        ))

    return app


def serve(settings: Optional[Settings] = None, host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Run the API with uvicorn."""
    import uvicorn

    settings = settings or load_settings()
    app = create_app(settings=settings)
    uvicorn.run(app, host=host or settings.server_host, port=port or settings.server_port)
