"""
Dependency injection for FastAPI routes.

Routes receive the session registry or, for per-session routes, the
controller for the `session_id` path parameter.
"""

from typing import Annotated
from fastapi import Request, Depends, HTTPException

from scenario_tracker.services.session import SessionRegistry, TrackerController


def get_session_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def get_controller(
    session_id: str,
    registry: Annotated[SessionRegistry, Depends(get_session_registry)],
) -> TrackerController:
    """Controller for a started session; 404 when the session was never started or has ended."""
    try:
        return registry.get(session_id)
    except LookupError as exc:
        raise HTTPException(404, str(exc)) from exc


SessionRegistryDep = Annotated[SessionRegistry, Depends(get_session_registry)]
ControllerDep = Annotated[TrackerController, Depends(get_controller)]
