"""
Request controller - HTTP endpoint handlers for emergency requests
"""

from typing import List, Optional, Dict, Any
from fastapi import APIRouter, BackgroundTasks, Depends, Query
import logging

from core.dependencies import get_pipeline
from ..models.request import (
    OPEN_STATUSES,
    CreateEmergencyRequest,
    DispatchRequest,
    EmergencyRequestResponse,
    RequestStatus,
)
from domains.pipeline.services.pipeline_service import DispatchPipeline


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/requests", tags=["requests"])


@router.post("", response_model=EmergencyRequestResponse, status_code=201)
async def create_request(
    payload: CreateEmergencyRequest,
    background_tasks: BackgroundTasks,
    pipeline: DispatchPipeline = Depends(get_pipeline)
) -> EmergencyRequestResponse:
    """
    Create an emergency request

    Matching and donor notification run after the response is sent.
    """
    request = await pipeline.create_request(payload)
    background_tasks.add_task(pipeline.on_request_created, request.id)
    return EmergencyRequestResponse.from_entity(request)


@router.get("", response_model=List[EmergencyRequestResponse])
async def list_requests(
    status: Optional[List[RequestStatus]] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    pipeline: DispatchPipeline = Depends(get_pipeline)
) -> List[EmergencyRequestResponse]:
    """List requests by status, newest first (open requests by default)"""
    requests = await pipeline.list_requests(status or list(OPEN_STATUSES), limit)
    return [EmergencyRequestResponse.from_entity(r) for r in requests]


@router.get("/by-donor/{donor_id}", response_model=List[EmergencyRequestResponse])
async def list_requests_for_donor(
    donor_id: str,
    status: Optional[List[RequestStatus]] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    pipeline: DispatchPipeline = Depends(get_pipeline)
) -> List[EmergencyRequestResponse]:
    """Requests on which the donor was matched"""
    requests = await pipeline.list_requests_for_donor(donor_id, status or (), limit)
    return [EmergencyRequestResponse.from_entity(r) for r in requests]


@router.get("/{request_id}", response_model=EmergencyRequestResponse)
async def get_request(
    request_id: str,
    pipeline: DispatchPipeline = Depends(get_pipeline)
) -> EmergencyRequestResponse:
    request = await pipeline.get_request(request_id)
    return EmergencyRequestResponse.from_entity(request)


@router.post("/{request_id}/activate", response_model=EmergencyRequestResponse)
async def activate_request(request_id: str, pipeline: DispatchPipeline = Depends(get_pipeline)):
    return EmergencyRequestResponse.from_entity(await pipeline.activate(request_id))


@router.post("/{request_id}/deactivate", response_model=EmergencyRequestResponse)
async def deactivate_request(request_id: str, pipeline: DispatchPipeline = Depends(get_pipeline)):
    return EmergencyRequestResponse.from_entity(await pipeline.deactivate(request_id))


@router.post("/{request_id}/cancel", response_model=EmergencyRequestResponse)
async def cancel_request(request_id: str, pipeline: DispatchPipeline = Depends(get_pipeline)):
    return EmergencyRequestResponse.from_entity(await pipeline.cancel(request_id))


@router.post("/{request_id}/fulfill", response_model=EmergencyRequestResponse)
async def fulfill_request(request_id: str, pipeline: DispatchPipeline = Depends(get_pipeline)):
    return EmergencyRequestResponse.from_entity(await pipeline.fulfill(request_id))


@router.post("/{request_id}/donors/{donor_id}/schedule", response_model=EmergencyRequestResponse)
async def schedule_donation(
    request_id: str,
    donor_id: str,
    pipeline: DispatchPipeline = Depends(get_pipeline)
):
    """Donor booked a donation slot"""
    return EmergencyRequestResponse.from_entity(await pipeline.schedule_donation(request_id, donor_id))


@router.post("/{request_id}/donors/{donor_id}/complete", response_model=EmergencyRequestResponse)
async def complete_donation(
    request_id: str,
    donor_id: str,
    pipeline: DispatchPipeline = Depends(get_pipeline)
):
    """Donation took place"""
    return EmergencyRequestResponse.from_entity(await pipeline.complete_donation(request_id, donor_id))


@router.post("/{request_id}/dispatch")
async def dispatch_request(
    request_id: str,
    payload: Optional[DispatchRequest] = None,
    pipeline: DispatchPipeline = Depends(get_pipeline)
) -> Dict[str, Any]:
    """
    Re-run matching and notification for a request

    Donors already on the request are not texted again; a wider radius
    reaches donors the first pass missed.
    """
    radius = payload.radius_meters if payload else None
    outcome = await pipeline.redispatch(request_id, radius)
    return outcome.to_dict()
