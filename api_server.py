from __future__ import annotations  # FastAPI server exposing the adaptive interview core

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from api.auth import IdentityProvider, StaticTokenIdentity
from api.routes import roadmap_router, router, users_router
from api.transport import CollaborationGateway, InterviewGateway
from config import CHAT_KEY, is_bound, load_config
from config.settings import settings
from llm_gateway import bind_chat_route
from roadmap import RoadmapPlanner
from services.idle_sweeper import IdleSweeper
from services.orchestrator import CoreDeps, InterviewOrchestrator
from storage.migrate import migrate


logger = logging.getLogger(__name__)

ROOT = Path(__file__).resolve().parent


def _resolve(path: str) -> Path:  # Relative paths are taken from the repo root
    candidate = Path(path)
    return candidate if candidate.is_absolute() else ROOT / candidate


def bind_llm_from_config(path: Optional[Path] = None) -> bool:  # Bind the chat model when a route config exists
    config_path = path or _resolve(settings.APP_CONFIG_PATH)
    if is_bound(CHAT_KEY):
        return True
    if not config_path.exists():
        logger.info("no LLM config at %s; running rule-based only", config_path)
        return False
    try:
        route = bind_chat_route(load_config(config_path))
    except (KeyError, ValueError) as exc:
        logger.warning("LLM config at %s is unusable: %s", config_path, exc)
        return False
    logger.info("chat model bound to route %s (%s)", route.name, route.model)
    return True


def create_app(
    deps: Optional[CoreDeps] = None,
    identity: Optional[IdentityProvider] = None,
    *,
    seed_pool: bool = True,
    bind_llm: bool = True,
    run_sweeper: bool = True,
) -> FastAPI:  # Build the application with explicit collaborators
    ident = identity or StaticTokenIdentity()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        core = deps
        if core is None:
            migrate(settings.DB_PATH)
            core = CoreDeps.build()
        if seed_pool:
            bank = _resolve(settings.QUESTION_BANK_PATH)
            if bank.exists():
                core.pool.seed_from_yaml(bank)
            else:
                logger.warning("question bank %s not found; pool left as is", bank)
        if bind_llm:
            bind_llm_from_config()

        orchestrator = InterviewOrchestrator(core)
        app.state.orchestrator = orchestrator
        app.state.planner = RoadmapPlanner(core.ontology)
        app.state.interview_gateway = InterviewGateway(orchestrator, ident)
        app.state.collaboration_gateway = CollaborationGateway(ident)

        sweeper = IdleSweeper(orchestrator)
        if run_sweeper:
            sweeper.start()
        try:
            yield
        finally:
            await sweeper.stop()

    app = FastAPI(title="Adaptive Interview API", lifespan=lifespan)
    app.state.identity = ident
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"]
    )
    app.include_router(router)
    app.include_router(users_router)
    app.include_router(roadmap_router)

    @app.get("/api/health")
    def health() -> dict:  # Liveness probe
        return {"status": "ok", "llm": is_bound(CHAT_KEY)}

    @app.websocket("/ws/interview")
    async def interview_socket(websocket: WebSocket) -> None:
        await app.state.interview_gateway.serve(websocket)

    @app.websocket("/ws/collaboration")
    async def collaboration_socket(websocket: WebSocket) -> None:
        await app.state.collaboration_gateway.serve(websocket)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api_server:app", host="0.0.0.0", port=8000)
