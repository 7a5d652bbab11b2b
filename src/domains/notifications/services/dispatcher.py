"""
Notification dispatcher - texts matched donors and records the outcome on the request
"""

from typing import Iterable, List, Optional
from datetime import timedelta
from uuid import uuid4
import asyncio
import logging
import time

from core.config import get_messaging_config, get_performance_config
from core.errors import ConflictError, DeliveryError, NotFoundError, StoreError
from core.metrics import dispatch_duration, notifications_total
from core.phone import mask_phone_number
from domains.matching.models.matching import DonorCandidate
from domains.notifications.models.notification import DeliveryResult, DispatchReport
from domains.notifications.services import templates
from domains.requests.models.request import MatchRecord, NotificationState
from domains.requests.services.lifecycle_service import DeliveryClaim, DeliveryOutcome, RequestLifecycle
from providers.base_provider import MessageSender


logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Commit-then-send dispatch.

    Match records are committed and claimed (delivery SENDING) in one write
    before any message goes out. A pass only texts the records it claimed,
    so neither a later pass nor an overlapping one texts a donor twice.
    Claims left behind by a pass that died are taken over once they are
    older than ``claim_ttl``.
    """

    def __init__(
        self,
        lifecycle: RequestLifecycle,
        sender: MessageSender,
        semaphore: Optional[asyncio.Semaphore] = None,
        send_timeout: Optional[float] = None,
        claim_ttl: Optional[timedelta] = None
    ):
        self.lifecycle = lifecycle
        self.sender = sender
        # One instance per process; the semaphore bounds sends across requests
        self.semaphore = semaphore or asyncio.Semaphore(get_performance_config().dispatch_max_concurrency)
        self.send_timeout = send_timeout or get_messaging_config().send_timeout
        self.claim_ttl = claim_ttl or timedelta(seconds=get_performance_config().delivery_claim_ttl_seconds)

    async def dispatch(self, request_id: str, candidates: Iterable[DonorCandidate]) -> DispatchReport:
        """
        Notify ``candidates`` about a request.

        Store errors from the commit phase propagate; the caller retries.
        Per-recipient failures are reported, never raised.
        """
        start_time = time.perf_counter()
        try:
            return await self._dispatch(request_id, candidates)
        finally:
            dispatch_duration.observe(time.perf_counter() - start_time)

    async def _dispatch(self, request_id: str, candidates: Iterable[DonorCandidate]) -> DispatchReport:
        claim = await self.lifecycle.claim_deliveries(request_id, candidates, uuid4().hex, self.claim_ttl)
        request, added = claim.request, claim.added

        if request.status.is_terminal:
            logger.info(f"Request {request_id} is {request.status.value}; skipping dispatch")
            return DispatchReport(request_id=request_id, outcome="request-closed")

        if not claim.records:
            if request.outstanding_deliveries():
                logger.info(f"Request {request_id} has deliveries in flight on another pass")
                return DispatchReport(request_id=request_id, outcome="in-progress", added=added)
            report = DispatchReport(request_id=request_id, outcome="nothing-to-send", added=added)
            if request.notification_state != NotificationState.SENT:
                await self._finish(report, claim, [])
            return report

        body = templates.emergency_request_message(request)
        results = await asyncio.gather(*(self._deliver(record, body) for record in claim.records))

        report = DispatchReport(
            request_id=request_id,
            outcome="sent" if all(r.success for r in results) else "partial",
            added=added,
            results=list(results)
        )
        await self._finish(report, claim, results)

        logger.info(
            f"Request {request_id}: {report.delivered} delivered, {report.failed} failed, "
            f"{len(added)} newly matched"
        )
        return report

    async def _finish(self, report: DispatchReport, claim: DeliveryClaim, results: List[DeliveryResult]) -> None:
        """Record phase; a failed commit marks the request FAILED where possible"""
        outcomes = [
            DeliveryOutcome(
                donor_id=r.donor_id,
                delivered=r.success,
                attempted_at=r.attempted_at,
                error=r.error
            )
            for r in results
        ]
        try:
            await self.lifecycle.record_deliveries(report.request_id, outcomes, claim.claim_id)
        except (StoreError, ConflictError, NotFoundError) as e:
            logger.error(f"Could not record deliveries for request {report.request_id}: {e}")
            report.outcome = "failed"
            report.error = str(e)
            try:
                await self.lifecycle.set_notification_state(report.request_id, NotificationState.FAILED)
            except (StoreError, ConflictError, NotFoundError) as inner:
                logger.error(f"Could not mark request {report.request_id} as FAILED: {inner}")

    async def _deliver(self, record: MatchRecord, body: str) -> DeliveryResult:
        result = await self._send(record.phone, body, kind="emergency")
        result.donor_id = record.donor_id
        return result

    async def send_one(self, phone: str, body: str, kind: str = "notice") -> DeliveryResult:
        """Single-recipient send for reminders, confirmations and hospital notices"""
        return await self._send(phone, body, kind=kind)

    async def _send(self, phone: str, body: str, kind: str) -> DeliveryResult:
        async with self.semaphore:
            attempted_at = self.lifecycle.clock()
            try:
                try:
                    sent = await asyncio.wait_for(self.sender.send(phone, body), timeout=self.send_timeout)
                except asyncio.TimeoutError as e:
                    raise DeliveryError(phone, f"send timed out after {self.send_timeout}s") from e
                if not sent.success:
                    raise DeliveryError(phone, sent.error or "provider rejected the message")
            except DeliveryError as e:
                notifications_total.labels(kind=kind, outcome="failed").inc()
                logger.warning(f"Delivery to {mask_phone_number(phone)} failed: {e}")
                return DeliveryResult(phone=phone, success=False, attempted_at=attempted_at, error=str(e))
            except Exception as e:
                # A misbehaving sender must not take the other recipients down with it
                notifications_total.labels(kind=kind, outcome="failed").inc()
                logger.exception(f"Unexpected error sending to {mask_phone_number(phone)}")
                return DeliveryResult(phone=phone, success=False, attempted_at=attempted_at, error=str(e))

        notifications_total.labels(kind=kind, outcome="delivered").inc()
        return DeliveryResult(phone=phone, success=True, attempted_at=attempted_at, message_id=sent.message_id)
