"""Review queue and file import routes."""

from fastapi import APIRouter, HTTPException

from scenario_tracker.dependencies import ControllerDep
from scenario_tracker.errors import CommitError
from scenario_tracker.models import AcceptAllResult, ChangeView, ImportRequest

router = APIRouter()


@router.get("/{session_id}/queue", response_model=list[ChangeView])
async def list_queue(controller: ControllerDep):
    return [item.view() for item in controller.pending()]


@router.post("/{session_id}/queue/accept-all", response_model=AcceptAllResult)
async def accept_all(controller: ControllerDep):
    return await controller.accept_all()


@router.post("/{session_id}/queue/deny-all")
async def deny_all(controller: ControllerDep):
    denied = controller.deny_all()
    return {"status": "denied", "count": denied}


@router.post("/{session_id}/queue/{change_id}/accept", response_model=ChangeView)
async def accept_change(change_id: str, controller: ControllerDep):
    try:
        item = await controller.accept(change_id)
    except LookupError as exc:
        raise HTTPException(404, str(exc)) from exc
    except CommitError as exc:
        raise HTTPException(409, str(exc)) from exc
    return item.view()


@router.post("/{session_id}/queue/{change_id}/deny", response_model=ChangeView)
async def deny_change(change_id: str, controller: ControllerDep):
    try:
        return controller.deny(change_id).view()
    except LookupError as exc:
        raise HTTPException(404, str(exc)) from exc


@router.post("/{session_id}/imports", response_model=list[ChangeView], status_code=201)
async def import_files(body: ImportRequest, controller: ControllerDep):
    return [item.view() for item in controller.import_files(body.files)]
