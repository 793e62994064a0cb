"""Host event, rescan and injection routes."""

from fastapi import APIRouter

from scenario_tracker.dependencies import ControllerDep
from scenario_tracker.models import (
    ExtractionOutcome,
    GenerationEndedEvent,
    InjectionsView,
    MessageReceivedEvent,
    RescanAccepted,
    RescanRequest,
)

router = APIRouter()


@router.post("/{session_id}/events/message-received", response_model=ExtractionOutcome)
async def message_received(body: MessageReceivedEvent, controller: ControllerDep):
    return await controller.handle_message_received(body)


@router.post("/{session_id}/events/generation-ended", response_model=InjectionsView)
async def generation_ended(body: GenerationEndedEvent, controller: ControllerDep):
    await controller.handle_generation_ended(body)
    return InjectionsView(slots=dict(controller.sink.slots))


@router.post("/{session_id}/rescan", response_model=RescanAccepted, status_code=202)
async def start_rescan(body: RescanRequest, controller: ControllerDep):
    started = controller.start_rescan(body)
    return RescanAccepted(started=started, status=controller.context.status)


@router.post("/{session_id}/rescan/cancel", response_model=RescanAccepted)
async def cancel_rescan(controller: ControllerDep):
    cancelled = controller.cancel_rescan()
    return RescanAccepted(started=cancelled, status=controller.context.status)


@router.get("/{session_id}/injections", response_model=InjectionsView)
async def get_injections(controller: ControllerDep):
    return InjectionsView(slots=dict(controller.sink.slots))
