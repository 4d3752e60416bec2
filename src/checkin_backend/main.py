"""
Event Check-in Backend
======================
Flow:
1. Viewers call check-in / check-out (HTTP, request/response)
2. TransitionService validates and applies a predicate-guarded write
3. AttendanceStore commits and emits a change event
4. LiveQueryRouter turns the event into deltas for matching subscriptions
5. Deltas are pushed to viewers over the /live WebSocket
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import __version__
from .config import LOG_FORMAT, Settings
from .database import AttendanceStore, DatabaseManager, TransitionService
from .errors import AttendanceError
from .live import LiveQueryRouter, LiveSession

# Configure logging
logging.basicConfig(
    level=os.environ.get("CHECKIN_LOG_LEVEL", "INFO").upper(),
    format=LOG_FORMAT
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "Event Check-in API"


# ============== Request / Response Models ==============
class MethodCall(BaseModel):
    """Method-call style request: positional parameters, not coerced."""
    params: List[Any] = Field(default_factory=list, description="Positional method parameters")


class TransitionResponse(BaseModel):
    success: bool
    timestamp: datetime = Field(..., description="UTC time recorded for the transition")
    message: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: str = Field(..., description="InvalidArgument, NotFound, InvalidState, ConcurrencyConflict or Internal")
    reason: Optional[str] = Field(None, description="Machine-readable reason, e.g. already-checked-out")
    message: str


ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


async def attendance_error_handler(request: Request, exc: AttendanceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(settings: Optional[Settings] = None, db_manager: Optional[DatabaseManager] = None) -> FastAPI:
    """
    Build the FastAPI application.

    The database manager, store, transition service and router are created
    when the app starts and torn down when it stops.
    """
    settings = settings or Settings.from_env()
    db_manager = db_manager or DatabaseManager(settings.database_url, echo=settings.sql_echo)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 60)
        logger.info("Starting Event Check-in Backend")
        logger.info("=" * 60)

        if not db_manager.initialize():
            raise RuntimeError(f"Database initialization failed: {settings.database_url}")

        store = AttendanceStore(db_manager)
        app.state.store = store
        app.state.transitions = TransitionService(
            store,
            allow_reentry=settings.allow_reentry,
            checkout_cooldown_seconds=settings.checkout_cooldown_seconds
        )
        app.state.router = LiveQueryRouter(store)

        stats = db_manager.get_stats()
        logger.info(f"Database: ✓ {stats['total_communities']} communities, {stats['total_people']} people")
        logger.info(f"Re-entry: {'allowed' if settings.allow_reentry else 'rejected'}")
        logger.info(f"Check-out cooldown: {settings.checkout_cooldown_seconds}s")
        logger.info("=" * 60)

        try:
            yield
        finally:
            app.state.router.close()
            db_manager.close()
            logger.info("Event Check-in Backend stopped")

    app = FastAPI(
        title=SERVICE_NAME,
        description="Attendance check-in/check-out with live subscriptions",
        version=__version__,
        lifespan=lifespan
    )

    # CORS middleware for browser viewers
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(AttendanceError, attendance_error_handler)

    @app.get("/")
    def root(request: Request):
        """Health check endpoint."""
        return {
            "status": "online",
            "service": SERVICE_NAME,
            "version": __version__,
            "live_subscriptions": request.app.state.router.active_count,
            "database": db_manager.get_stats()
        }

    # ============== Check-in Endpoints ==============

    @app.post("/methods/{name}", response_model=TransitionResponse, responses=ERROR_RESPONSES)
    def call_method(name: str, call: MethodCall, request: Request):
        """Invoke people.checkIn / people.checkOut with positional params."""
        transitions: TransitionService = request.app.state.transitions
        methods = {
            "people.checkIn": transitions.check_in,
            "people.checkOut": transitions.check_out,
        }
        if name not in methods:
            raise HTTPException(status_code=404, detail=f"Unknown method: {name}")

        person_id = call.params[0] if call.params else None
        return methods[name](person_id).to_dict()

    @app.post("/people/{person_id}/check-in", response_model=TransitionResponse, responses=ERROR_RESPONSES)
    def check_in(person_id: str, request: Request):
        """Mark a person as present."""
        return request.app.state.transitions.check_in(person_id).to_dict()

    @app.post("/people/{person_id}/check-out", response_model=TransitionResponse, responses=ERROR_RESPONSES)
    def check_out(person_id: str, request: Request):
        """Mark a present person as departed."""
        return request.app.state.transitions.check_out(person_id).to_dict()

    # ============== Read Endpoints ==============

    @app.get("/communities")
    def list_communities(request: Request):
        """All communities (one-shot; subscribe to 'communities' for updates)."""
        communities = request.app.state.store.list_communities()
        return {
            "communities": [c.to_dict() for c in communities],
            "count": len(communities)
        }

    @app.get("/communities/{community_id}/people")
    def list_people(community_id: str, request: Request):
        """People of one community (one-shot; subscribe to 'people' for updates)."""
        store: AttendanceStore = request.app.state.store
        if store.get_community(community_id) is None:
            raise HTTPException(status_code=404, detail="Community not found")

        people = store.find_by_community(community_id)
        return {
            "community_id": community_id,
            "people": [p.to_dict() for p in people],
            "count": len(people)
        }

    @app.get("/communities/{community_id}/summary")
    def get_summary(community_id: str, request: Request) -> Dict[str, Any]:
        """Present / not checked in / departed counts and present people by company."""
        summary = request.app.state.transitions.summarize_community(community_id)
        if summary is None:
            raise HTTPException(status_code=404, detail="Community not found")
        return {"success": True, "community_id": community_id, "summary": summary}

    @app.get("/stats")
    def get_stats():
        """Database statistics."""
        return {"success": True, "stats": db_manager.get_stats()}

    # ============== Live Queries ==============

    @app.websocket("/live")
    async def live(websocket: WebSocket):
        """Subscriptions: 'communities' and 'people' (params: [communityId])."""
        await LiveSession(websocket, websocket.app.state.router).run()

    return app


app = create_app()


def main():
    """Run the backend with uvicorn."""
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
