"""
Scenario Tracker - FastAPI Backend
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import socketio

from scenario_tracker.config import settings
from scenario_tracker.database.db import init_db
from scenario_tracker.logging import setup_logging, get_logger
from scenario_tracker.routers import events, review, sessions
from scenario_tracker.services.backboard import BackboardService
from scenario_tracker.services.extraction import ExtractionCaller
from scenario_tracker.services.gist_store import GistDocumentStore
from scenario_tracker.services.session import SessionRegistry
from scenario_tracker.services.snapshot import SnapshotStore

logger = get_logger('main')

# Socket.IO server for status, queue and injection updates
sio = socketio.AsyncServer(
    async_mode='asgi',
    cors_allowed_origins='*'
)


async def emit_to_session(event: str, payload: dict, session_id: str) -> None:
    await sio.emit(event, payload, room=session_id)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Starting Scenario Tracker API")

    await init_db()
    logger.info("Database initialized")

    backboard = BackboardService()
    await backboard.initialize()
    app.state.backboard = backboard

    app.state.sessions = SessionRegistry(
        store=GistDocumentStore(),
        snapshots=SnapshotStore(db_path=settings.DATABASE_PATH),
        caller=ExtractionCaller(backboard),
        notifier=emit_to_session,
    )
    logger.info("Services initialized")

    yield

    logger.info("Shutting down application")
    await app.state.sessions.shutdown()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Scenario Tracker API",
        description="Narrative world-state tracking with a human review queue",
        version="1.0.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",
            "http://localhost:3000",
            "http://127.0.0.1:5173",
            "http://127.0.0.1:8000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(sessions.router, prefix="/api/sessions", tags=["Sessions"])
    app.include_router(events.router, prefix="/api/sessions", tags=["Events"])
    app.include_router(review.router, prefix="/api/sessions", tags=["Review"])

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": "scenario-tracker",
            "backboard_available": app.state.backboard.is_available if hasattr(app.state, 'backboard') else False,
            "gist_configured": bool(settings.GIST_TOKEN),
        }

    @app.get("/")
    async def root():
        return {
            "name": "Scenario Tracker API",
            "version": "1.0.0",
            "docs": "/docs",
            "health": "/health"
        }

    return app


@sio.event
async def connect(sid, environ):
    query_string = environ.get('QUERY_STRING', '')
    if 'sessionId=' in query_string:
        session_id = query_string.split('sessionId=')[-1].split('&')[0]
        await sio.enter_room(sid, session_id)
        logger.debug(f"Client {sid[:8]}... joined session room: {session_id}")


@sio.event
async def disconnect(sid):
    logger.debug(f"Client {sid[:8]}... disconnected")


app = create_app()
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
