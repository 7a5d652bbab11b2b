"""
Events controller - change notifications from the profile collaborator
"""

from typing import Dict, Any
from fastapi import APIRouter, Depends

from core.dependencies import get_pipeline
from ..services.pipeline_service import DispatchPipeline


router = APIRouter(prefix="/api/v1/events", tags=["events"])


@router.post("/users/{user_id}/location")
async def user_location_changed(user_id: str, pipeline: DispatchPipeline = Depends(get_pipeline)) -> Dict[str, Any]:
    return (await pipeline.on_user_location_changed(user_id)).to_dict()


@router.post("/users/{user_id}/verification")
async def hospital_verification_changed(
    user_id: str,
    pipeline: DispatchPipeline = Depends(get_pipeline)
) -> Dict[str, Any]:
    return (await pipeline.on_hospital_verification_changed(user_id)).to_dict()


@router.post("/requests/{request_id}/location")
async def request_location_changed(
    request_id: str,
    pipeline: DispatchPipeline = Depends(get_pipeline)
) -> Dict[str, Any]:
    return (await pipeline.on_request_location_changed(request_id)).to_dict()
