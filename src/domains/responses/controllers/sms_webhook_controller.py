"""
SMS webhook controller - inbound donor replies from the SMS provider
"""

from fastapi import APIRouter, Depends, Form
from fastapi.responses import Response
import logging

from core.dependencies import get_pipeline
from domains.pipeline.services.pipeline_service import DispatchPipeline


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/sms", tags=["sms"])

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


@router.post("/inbound")
async def inbound_sms(
    From: str = Form(...),
    Body: str = Form(""),
    pipeline: DispatchPipeline = Depends(get_pipeline)
) -> Response:
    """
    Twilio-style inbound message webhook

    Always answers 200 with an empty TwiML document so the provider does not
    retry; the confirmation text, when due, is sent separately.
    """
    outcome = await pipeline.on_inbound_reply(From, Body)
    return Response(
        content=EMPTY_TWIML,
        media_type="application/xml",
        headers={"X-Intake-Result": outcome.detail or outcome.status}
    )
