"""Session lifecycle, remote sync, config and known-secrets routes."""

from fastapi import APIRouter, HTTPException

from scenario_tracker.dependencies import ControllerDep, SessionRegistryDep
from scenario_tracker.errors import RemoteStoreError
from scenario_tracker.models import (
    RemoteCreate,
    SecretUpdate,
    SecretsView,
    SessionConfigUpdate,
    SessionStart,
    SessionState,
)

router = APIRouter()


@router.post("/{session_id}/start", response_model=SessionState)
async def start_session(session_id: str, body: SessionStart, registry: SessionRegistryDep):
    controller = await registry.start(session_id, body.remote_id)
    return controller.state()


@router.delete("/{session_id}")
async def end_session(session_id: str, registry: SessionRegistryDep):
    try:
        await registry.end(session_id)
    except LookupError as exc:
        raise HTTPException(404, str(exc)) from exc
    return {"status": "ended", "id": session_id}


@router.get("/{session_id}/state", response_model=SessionState)
async def get_state(controller: ControllerDep):
    return controller.state()


@router.post("/{session_id}/sync", response_model=SessionState)
async def sync_session(controller: ControllerDep):
    try:
        return await controller.sync()
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    except RemoteStoreError as exc:
        raise HTTPException(502, str(exc)) from exc


@router.post("/{session_id}/remote", response_model=SessionState, status_code=201)
async def create_remote(body: RemoteCreate, controller: ControllerDep):
    try:
        return await controller.create_remote(body.description)
    except RemoteStoreError as exc:
        raise HTTPException(502, str(exc)) from exc


@router.put("/{session_id}/config", response_model=SessionState)
async def update_config(body: SessionConfigUpdate, controller: ControllerDep):
    return await controller.update_config(body)


@router.put("/{session_id}/secrets/{key}", response_model=SecretsView)
async def set_secret(key: str, body: SecretUpdate, controller: ControllerDep):
    try:
        return SecretsView(known_secrets=await controller.set_secret(key, body.value))
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc


@router.post("/{session_id}/secrets/{key}/toggle", response_model=SecretsView)
async def toggle_secret(key: str, controller: ControllerDep):
    try:
        return SecretsView(known_secrets=await controller.toggle_secret(key))
    except LookupError as exc:
        raise HTTPException(404, str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc


@router.delete("/{session_id}/secrets/{key}", response_model=SecretsView)
async def remove_secret(key: str, controller: ControllerDep):
    try:
        return SecretsView(known_secrets=await controller.remove_secret(key))
    except LookupError as exc:
        raise HTTPException(404, str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
