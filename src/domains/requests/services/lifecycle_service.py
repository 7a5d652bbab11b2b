"""
Request lifecycle - status machine and match-record progression.

Every write is a read/compute/conditional-update cycle on the request's
``version`` field, retried on conflict.
"""

from typing import Callable, Dict, Iterable, List, Optional, Tuple
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass, field
import logging

from core.config import get_performance_config
from core.errors import ConflictError, InvalidTransition, NotFoundError, NotLocatable
from core.metrics import lifecycle_transitions_total, optimistic_conflicts_total
from domains.matching.models.matching import DonorCandidate
from domains.requests.models.request import (
    DeliveryState,
    EmergencyRequest,
    MatchRecord,
    MatchStatus,
    NotificationState,
    RequestStatus,
)
from domains.requests.repositories.request_store import RequestStore


logger = logging.getLogger(__name__)

# name -> (allowed source statuses, target status)
_TRANSITIONS: Dict[str, Tuple[Tuple[RequestStatus, ...], RequestStatus]] = {
    "activate": ((RequestStatus.PENDING,), RequestStatus.ACTIVE),
    "deactivate": ((RequestStatus.ACTIVE,), RequestStatus.PENDING),
    "fulfill": ((RequestStatus.ACTIVE,), RequestStatus.FULFILLED),
    "cancel": ((RequestStatus.PENDING, RequestStatus.ACTIVE), RequestStatus.CANCELLED),
}

# Returning False from a mutation skips the write
Mutation = Callable[[EmergencyRequest, datetime], Optional[bool]]


@dataclass
class DeliveryOutcome:
    """Result of one send attempt, as recorded on the match record"""
    donor_id: str
    delivered: bool
    attempted_at: datetime
    error: Optional[str] = None


@dataclass
class DeliveryClaim:
    """Records one dispatch pass has taken ownership of"""
    claim_id: str
    request: Optional[EmergencyRequest] = None
    added: List[str] = field(default_factory=list)
    records: List[MatchRecord] = field(default_factory=list)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RequestLifecycle:
    """Owns every write to an emergency request"""

    def __init__(
        self,
        store: RequestStore,
        max_attempts: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.max_attempts = max_attempts or get_performance_config().lifecycle_max_attempts
        self.clock = clock

    async def mutate(
        self,
        request_id: str,
        fn: Mutation,
        description: str = "update",
        include_location: bool = False
    ) -> EmergencyRequest:
        """
        Apply ``fn`` to a fresh copy of the request and commit it conditionally.

        ``fn`` mutates the entity in place. Errors it raises propagate with
        nothing written. On a version conflict the request is re-read and
        ``fn`` applied again, up to ``max_attempts`` times.
        """
        for attempt in range(1, self.max_attempts + 1):
            request = await self.store.get(request_id)
            now = self.clock()

            if fn(request, now) is False:
                return request

            request.updated_at = now
            try:
                patch = request.mutable_fields(include_location)
                await self.store.conditional_update(request.id, request.version, patch)
            except ConflictError:
                optimistic_conflicts_total.inc()
                logger.info(
                    f"Version conflict on request {request_id} during {description} "
                    f"(attempt {attempt}/{self.max_attempts})"
                )
                continue

            request.version += 1
            return request

        raise ConflictError(
            f"Request {request_id} kept changing during {description}; gave up after {self.max_attempts} attempts",
            request_id=request_id
        )

    # Request status machine

    async def activate(self, request_id: str) -> EmergencyRequest:
        return await self._transition("activate", request_id)

    async def deactivate(self, request_id: str) -> EmergencyRequest:
        return await self._transition("deactivate", request_id)

    async def fulfill(self, request_id: str) -> EmergencyRequest:
        return await self._transition("fulfill", request_id)

    async def cancel(self, request_id: str) -> EmergencyRequest:
        return await self._transition("cancel", request_id)

    async def _transition(self, name: str, request_id: str) -> EmergencyRequest:
        sources, target = _TRANSITIONS[name]

        def apply(request: EmergencyRequest, now: datetime):
            if request.status not in sources:
                raise InvalidTransition(f"request {request.id}", request.status.value, target.value)
            request.status = target

        try:
            request = await self.mutate(request_id, apply, description=name)
        except InvalidTransition:
            lifecycle_transitions_total.labels(transition=name, result="rejected").inc()
            raise
        except ConflictError:
            lifecycle_transitions_total.labels(transition=name, result="conflict").inc()
            raise

        lifecycle_transitions_total.labels(transition=name, result="ok").inc()
        logger.info(f"Request {request_id} moved to {target.value}")
        return request

    # Match record progression

    async def record_response(self, request_id: str, donor_id: str) -> EmergencyRequest:
        """
        NOTIFIED -> RESPONDED. A response on a PENDING request also
        activates it in the same write.
        """
        def apply(request: EmergencyRequest, now: datetime):
            if request.status.is_terminal:
                raise InvalidTransition(f"request {request.id}", request.status.value, MatchStatus.RESPONDED.value)
            self._match(request, donor_id).advance(MatchStatus.RESPONDED, now)
            if request.status == RequestStatus.PENDING:
                request.status = RequestStatus.ACTIVE

        return await self._step("record_response", request_id, apply)

    async def schedule_donation(self, request_id: str, donor_id: str) -> EmergencyRequest:
        """RESPONDED -> SCHEDULED"""
        def apply(request: EmergencyRequest, now: datetime):
            self._reject_cancelled(request, MatchStatus.SCHEDULED)
            self._match(request, donor_id).advance(MatchStatus.SCHEDULED, now)

        return await self._step("schedule_donation", request_id, apply)

    async def complete_donation(self, request_id: str, donor_id: str) -> EmergencyRequest:
        """SCHEDULED -> COMPLETED"""
        def apply(request: EmergencyRequest, now: datetime):
            self._reject_cancelled(request, MatchStatus.COMPLETED)
            self._match(request, donor_id).advance(MatchStatus.COMPLETED, now)

        return await self._step("complete_donation", request_id, apply)

    async def _step(self, name: str, request_id: str, apply: Mutation) -> EmergencyRequest:
        try:
            request = await self.mutate(request_id, apply, description=name)
        except InvalidTransition:
            lifecycle_transitions_total.labels(transition=name, result="rejected").inc()
            raise
        lifecycle_transitions_total.labels(transition=name, result="ok").inc()
        return request

    @staticmethod
    def _match(request: EmergencyRequest, donor_id: str) -> MatchRecord:
        record = request.matched_donors.get(donor_id)
        if record is None:
            raise NotFoundError("match record", f"{request.id}/{donor_id}")
        return record

    @staticmethod
    def _reject_cancelled(request: EmergencyRequest, target: MatchStatus) -> None:
        if request.status == RequestStatus.CANCELLED:
            raise InvalidTransition(f"request {request.id}", request.status.value, target.value)

    # Dispatcher bookkeeping

    async def claim_deliveries(
        self,
        request_id: str,
        candidates: Iterable[DonorCandidate],
        claim_id: str,
        stale_after: Optional[timedelta] = None
    ) -> DeliveryClaim:
        """
        Append a NOTIFIED record for every candidate not already matched and
        claim every record that still needs a text, in one write.

        Claimed records move to SENDING under ``claim_id``. A SENDING record
        is only taken over once its claim is older than ``stale_after``, so
        overlapping passes never send to the same record. Terminal requests
        are left untouched.
        """
        candidates = list(candidates)
        stale_after = stale_after or timedelta(seconds=get_performance_config().delivery_claim_ttl_seconds)
        claim = DeliveryClaim(claim_id=claim_id)

        def apply(request: EmergencyRequest, now: datetime):
            claim.added.clear()
            claim.records.clear()
            if request.status.is_terminal:
                return False
            for candidate in candidates:
                record = MatchRecord(
                    donor_id=candidate.donor_id,
                    phone=candidate.phone,
                    status=MatchStatus.NOTIFIED,
                    notified_at=now,
                    delivery_state=DeliveryState.PENDING,
                )
                if request.add_match(record):
                    claim.added.append(candidate.donor_id)

            for record in request.outstanding_deliveries():
                if record.delivery_state == DeliveryState.SENDING and not _claim_expired(record, now, stale_after):
                    continue
                if record.delivery_state == DeliveryState.SENDING:
                    logger.warning(
                        f"Taking over stale delivery claim {record.delivery_claim} "
                        f"for {request.id}/{record.donor_id}"
                    )
                record.delivery_state = DeliveryState.SENDING
                record.delivery_claim = claim_id
                record.delivery_claimed_at = now
                claim.records.append(record)

            if not claim.added and not claim.records:
                return False
            if claim.added:
                request.notification_state = NotificationState.PENDING

        claim.request = await self.mutate(request_id, apply, description="claim_deliveries")
        return claim

    async def record_deliveries(
        self,
        request_id: str,
        outcomes: Iterable[DeliveryOutcome],
        claim_id: Optional[str] = None
    ) -> EmergencyRequest:
        """
        Store delivery outcomes on the records held under ``claim_id``.
        Records since taken over by another pass are left alone.
        ``notification_state`` becomes SENT once no record is outstanding.
        """
        outcomes = list(outcomes)

        def apply(request: EmergencyRequest, now: datetime):
            changed = False
            for outcome in outcomes:
                record = request.matched_donors.get(outcome.donor_id)
                if record is None or record.delivery_state != DeliveryState.SENDING:
                    continue
                if record.delivery_claim != claim_id:
                    continue
                record.delivery_state = DeliveryState.DELIVERED if outcome.delivered else DeliveryState.FAILED
                record.delivery_error = outcome.error
                record.delivery_attempted_at = outcome.attempted_at
                record.delivery_claim = None
                record.delivery_claimed_at = None
                changed = True
            if not request.outstanding_deliveries() and request.notification_state != NotificationState.SENT:
                request.notification_state = NotificationState.SENT
                changed = True
            if not changed:
                return False

        return await self.mutate(request_id, apply, description="record_deliveries")

    async def set_notification_state(self, request_id: str, state: NotificationState) -> EmergencyRequest:
        def apply(request: EmergencyRequest, now: datetime):
            if request.notification_state == state:
                return False
            request.notification_state = state

        return await self.mutate(request_id, apply, description="set_notification_state")

    async def tag_location(self, request_id: str, encode: Callable[[float, float], str]) -> EmergencyRequest:
        """
        Store the spatial key for the request's coordinates as read inside
        the write, so a concurrent move is never tagged with a stale key.
        """
        def apply(request: EmergencyRequest, now: datetime):
            location = request.location
            if not location.has_coordinates:
                raise NotLocatable(f"Request {request.id} has no location")
            spatial_key = encode(location.latitude, location.longitude)
            if location.spatial_key == spatial_key:
                return False
            location.spatial_key = spatial_key

        return await self.mutate(request_id, apply, description="tag_location", include_location=True)


def _claim_expired(record: MatchRecord, now: datetime, stale_after: timedelta) -> bool:
    claimed_at = record.delivery_claimed_at
    if claimed_at is None:
        return True
    if claimed_at.tzinfo is None:
        claimed_at = claimed_at.replace(tzinfo=timezone.utc)
    return now - claimed_at >= stale_after
