"""
Response intake - turns an inbound "YES" into a RESPONDED match record
"""

from typing import Optional
import logging

from core.errors import InvalidTransition, NotFoundError
from core.metrics import inbound_replies_total
from core.phone import mask_phone_number, normalize_phone_number
from domains.notifications.services import templates
from domains.notifications.services.dispatcher import NotificationDispatcher
from domains.requests.models.request import OPEN_STATUSES, MatchStatus
from domains.requests.repositories.request_store import RequestStore
from domains.requests.services.lifecycle_service import RequestLifecycle
from domains.responses.models.intake import IntakeCode, IntakeResult
from domains.users.models.user import User, UserRole
from domains.users.repositories.user_store import UserStore


logger = logging.getLogger(__name__)

AFFIRMATIVE_REPLIES = frozenset({"yes", "sim"})


def is_affirmative(body: Optional[str]) -> bool:
    return (body or "").strip().casefold() in AFFIRMATIVE_REPLIES


class ResponseIntake:
    """
    Handles donor replies to emergency texts.

    Only the most recent open request holding a NOTIFIED record for the
    sender is updated; older requests keep waiting for their own reply.
    """

    def __init__(
        self,
        user_store: UserStore,
        request_store: RequestStore,
        lifecycle: RequestLifecycle,
        dispatcher: NotificationDispatcher
    ):
        self.user_store = user_store
        self.request_store = request_store
        self.lifecycle = lifecycle
        self.dispatcher = dispatcher

    async def handle_reply(self, from_phone: str, body: str) -> IntakeResult:
        result = await self._handle(from_phone, body)
        inbound_replies_total.labels(result=result.code.value).inc()
        logger.info(f"Reply from {mask_phone_number(from_phone)}: {result.code.value}")
        return result

    async def _handle(self, from_phone: str, body: str) -> IntakeResult:
        if not is_affirmative(body):
            return IntakeResult(IntakeCode.IGNORED)

        phone = normalize_phone_number(from_phone)
        if not phone:
            return IntakeResult(IntakeCode.UNKNOWN_SENDER)

        donors = await self.user_store.find_by_phone(phone, role=UserRole.DONOR)
        if not donors:
            return IntakeResult(IntakeCode.UNKNOWN_SENDER)
        if len(donors) > 1:
            logger.warning(f"Phone {mask_phone_number(phone)} belongs to {len(donors)} donors; reply not applied")
            return IntakeResult(IntakeCode.AMBIGUOUS_SENDER)
        donor = donors[0]

        request = await self.request_store.find_latest_notified_for_phone(phone)
        if request is None:
            return await self._no_pending_match(donor)

        record = request.find_match_by_phone(phone, MatchStatus.NOTIFIED)
        if record is None:
            return await self._no_pending_match(donor)

        try:
            await self.lifecycle.record_response(request.id, record.donor_id)
        except InvalidTransition:
            # Another reply or a closure landed between the read and the write
            return IntakeResult(IntakeCode.ALREADY_RESPONDED, request_id=request.id, donor_id=record.donor_id)
        except NotFoundError:
            return IntakeResult(IntakeCode.NO_ACTIVE_REQUEST, donor_id=donor.id)

        confirmation = await self.dispatcher.send_one(phone, templates.RESPONSE_CONFIRMATION, kind="confirmation")
        return IntakeResult(
            IntakeCode.RESPONDED,
            request_id=request.id,
            donor_id=record.donor_id,
            confirmation_sent=confirmation.success
        )

    async def _no_pending_match(self, donor: User) -> IntakeResult:
        """Distinguish a repeated YES from a reply with nothing to answer"""
        open_requests = await self.request_store.query_by_matched_donor(donor.id, OPEN_STATUSES, limit=1)
        for request in open_requests:
            record = request.matched_donors.get(donor.id)
            if record is not None and record.status != MatchStatus.NOTIFIED:
                return IntakeResult(IntakeCode.ALREADY_RESPONDED, request_id=request.id, donor_id=donor.id)
        return IntakeResult(IntakeCode.NO_ACTIVE_REQUEST, donor_id=donor.id)
