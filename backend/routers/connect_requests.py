"""Connect request routes."""
from fastapi import APIRouter, Depends, Query
from typing import Optional

from models import Actor, ConnectRequestCreate, ConnectRequestRespond, ConnectRequestStatus, DisclosureResponse
from core.dependencies import get_current_actor, get_connect_request_service
from services.connect_request_service import ConnectRequestService

router = APIRouter()


@router.post("", status_code=201)
async def create_connect_request(
    data: ConnectRequestCreate,
    actor: Actor = Depends(get_current_actor),
    service: ConnectRequestService = Depends(get_connect_request_service)
):
    """Send a connect request for a lead/trip pair."""
    request = await service.create(
        actor,
        recipient_id=data.recipient_id,
        lead_id=data.customer_request_id,
        trip_id=data.trip_id,
        message=data.message
    )
    return {"message": "Connect request sent successfully", "connectRequest": request}


@router.get("")
async def list_connect_requests(
    type: Optional[str] = Query(None, pattern="^(sent|received)$"),
    status: Optional[ConnectRequestStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    actor: Actor = Depends(get_current_actor),
    service: ConnectRequestService = Depends(get_connect_request_service)
):
    return await service.list_for_actor(
        actor,
        kind=type,
        status=status.value if status else None,
        page=page,
        limit=limit
    )


@router.get("/{request_id}")
async def get_connect_request(
    request_id: str,
    actor: Actor = Depends(get_current_actor),
    service: ConnectRequestService = Depends(get_connect_request_service)
):
    return await service.get(request_id, actor)


@router.get("/{request_id}/verification")
async def get_connect_request_verification(
    request_id: str,
    actor: Actor = Depends(get_current_actor),
    service: ConnectRequestService = Depends(get_connect_request_service)
):
    """Lead and trip details side by side with a compatibility summary."""
    return await service.get_verification(request_id, actor)


@router.put("/{request_id}/respond")
async def respond_to_connect_request(
    request_id: str,
    data: ConnectRequestRespond,
    actor: Actor = Depends(get_current_actor),
    service: ConnectRequestService = Depends(get_connect_request_service)
):
    request = await service.respond(request_id, actor, data.action, data.rejection_reason)
    return {"message": f"Connect request {request['status']}", "connectRequest": request}


@router.put("/{request_id}/accept")
async def counter_accept_connect_request(
    request_id: str,
    actor: Actor = Depends(get_current_actor),
    service: ConnectRequestService = Depends(get_connect_request_service)
):
    request = await service.counter_accept(request_id, actor)
    return {"message": "Connect request accepted by initiator", "connectRequest": request}


@router.put("/{request_id}/promote")
async def promote_connect_request(
    request_id: str,
    actor: Actor = Depends(get_current_actor),
    service: ConnectRequestService = Depends(get_connect_request_service)
):
    """Settle a request on hold once the driver has topped up."""
    request = await service.promote_from_hold(request_id, actor)
    return {"message": "Connect request accepted", "connectRequest": request}


@router.get("/{request_id}/disclosure", response_model=DisclosureResponse, response_model_by_alias=True)
async def get_contact_disclosure(
    request_id: str,
    actor: Actor = Depends(get_current_actor),
    service: ConnectRequestService = Depends(get_connect_request_service)
):
    return await service.get_disclosure(request_id, actor)


@router.delete("/{request_id}")
async def delete_connect_request(
    request_id: str,
    actor: Actor = Depends(get_current_actor),
    service: ConnectRequestService = Depends(get_connect_request_service)
):
    await service.delete(request_id, actor)
    return {"message": "Connect request deleted successfully"}
