"""
Sweep controller - lets an external scheduler trigger the reminder sweep
"""

from typing import Dict, Any
from fastapi import APIRouter, Depends

from core.dependencies import get_pipeline
from domains.pipeline.services.pipeline_service import DispatchPipeline


router = APIRouter(prefix="/api/v1/sweeps", tags=["sweeps"])


@router.post("/reminders")
async def run_reminder_sweep(pipeline: DispatchPipeline = Depends(get_pipeline)) -> Dict[str, Any]:
    """Run one donation reminder sweep"""
    return (await pipeline.on_scheduled_sweep()).to_dict()
