"""
Pipeline service - event entry points wiring matching, dispatch, intake and reminders
"""

from typing import Dict, List, Optional, Any, Awaitable, Callable, Sequence
from datetime import datetime, timezone
from dataclasses import dataclass, field
from uuid import uuid4
import logging

from core.config import get_matching_config
from core.errors import (
    ConflictError,
    InvalidTransition,
    NotFoundError,
    NotLocatable,
    StoreError,
    ValidationError,
)
from core.phone import mask_phone_number, normalize_phone_number
from core.retry import retry_async
from domains.matching.services.donor_matcher import DonorMatcher
from domains.matching.services.geo_index import GeoIndex
from domains.notifications.services import templates
from domains.notifications.services.dispatcher import NotificationDispatcher
from domains.reminders.services.reminder_service import ReminderSweep
from domains.requests.models.request import (
    CreateEmergencyRequest,
    EmergencyRequest,
    RequestStatus,
)
from domains.requests.repositories.request_store import RequestStore
from domains.requests.services.lifecycle_service import RequestLifecycle
from domains.responses.services.intake_service import ResponseIntake
from domains.users.models.user import Location, UserRole, VerificationStatus
from domains.users.repositories.user_store import UserStore


logger = logging.getLogger(__name__)


@dataclass
class PipelineOutcome:
    """
    Terminal result of an event entry point.

    ``status`` is ``ok``, ``skipped`` (nothing to do), ``rejected`` (invalid
    input or illegal move, never retried) or ``failed`` (infrastructure
    failure after retries).
    """
    event: str
    status: str
    subject: Optional[str] = None
    detail: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.event,
            "status": self.status,
            "subject": self.subject,
            "detail": self.detail,
            "data": self.data,
        }


class DispatchPipeline:
    """Entry points exposed to controllers, webhooks and the scheduler"""

    def __init__(
        self,
        user_store: UserStore,
        request_store: RequestStore,
        lifecycle: RequestLifecycle,
        matcher: DonorMatcher,
        dispatcher: NotificationDispatcher,
        intake: ResponseIntake,
        reminders: ReminderSweep,
        geo_index: Optional[GeoIndex] = None,
        radius_meters: Optional[float] = None
    ):
        self.user_store = user_store
        self.request_store = request_store
        self.lifecycle = lifecycle
        self.matcher = matcher
        self.dispatcher = dispatcher
        self.intake = intake
        self.reminders = reminders
        self.geo_index = geo_index or matcher.geo_index
        self.radius_meters = radius_meters or get_matching_config().radius_meters

    async def _run(
        self,
        event: str,
        subject: Optional[str],
        operation: Callable[[], Awaitable[PipelineOutcome]]
    ) -> PipelineOutcome:
        """Retry store failures, then turn any remaining error into a terminal outcome"""
        try:
            return await retry_async(operation, description=f"{event} {subject or ''}".strip())
        except (ValidationError, InvalidTransition) as e:
            logger.warning(f"{event} {subject}: rejected: {e}")
            return PipelineOutcome(event, "rejected", subject, str(e))
        except NotFoundError as e:
            logger.warning(f"{event} {subject}: {e}")
            return PipelineOutcome(event, "skipped", subject, str(e))
        except (StoreError, ConflictError) as e:
            logger.error(f"{event} {subject}: failed: {e}")
            return PipelineOutcome(event, "failed", subject, str(e))
        except Exception as e:
            logger.exception(f"{event} {subject}: unexpected error")
            return PipelineOutcome(event, "failed", subject, str(e))

    # Request events

    async def create_request(self, payload: CreateEmergencyRequest) -> EmergencyRequest:
        """
        Validate and store a new request. Raises ValidationError before any
        write; the caller then fires ``on_request_created``.
        """
        now = datetime.now(timezone.utc)
        location = Location(latitude=payload.location.latitude, longitude=payload.location.longitude)
        request = EmergencyRequest(
            id=uuid4().hex,
            hospital_id=payload.hospital_id,
            blood_type=payload.blood_type,
            units_needed=payload.units_needed,
            urgency=payload.urgency,
            location=location,
            created_at=now,
            updated_at=now,
            notes=payload.notes,
        )
        request.validate()
        location.spatial_key = self.geo_index.encode(location.latitude, location.longitude)

        await retry_async(self.request_store.create, request, description=f"create request {request.id}")
        logger.info(
            f"Created request {request.id}: {request.units_needed} units of "
            f"{request.blood_type.value} ({request.urgency.value})"
        )
        return request

    async def on_request_created(self, request_id: str, radius_meters: Optional[float] = None) -> PipelineOutcome:
        """Tag, match and notify"""
        radius = radius_meters or self.radius_meters

        async def run() -> PipelineOutcome:
            request = await self.request_store.get(request_id)
            if request.status.is_terminal:
                return PipelineOutcome("request_created", "skipped", request_id, f"request is {request.status.value}")

            if not request.location.spatial_key:
                request = await self.lifecycle.tag_location(request_id, self.geo_index.encode)

            matches = await self.matcher.find_candidates(request, radius)
            report = await self.dispatcher.dispatch(request_id, matches.candidates)

            data = report.to_dict()
            data["excluded"] = [{"donor_id": e.donor_id, "reason": e.reason} for e in matches.excluded]
            status = "failed" if report.outcome == "failed" else "ok"
            if report.outcome == "request-closed":
                status = "skipped"
            return PipelineOutcome("request_created", status, request_id, report.outcome, data)

        return await self._run("request_created", request_id, run)

    async def on_request_location_changed(self, request_id: str) -> PipelineOutcome:
        """Re-tag the request; matching is not re-run"""
        async def run() -> PipelineOutcome:
            request = await self.lifecycle.tag_location(request_id, self.geo_index.encode)
            return PipelineOutcome(
                "request_location_changed", "ok", request_id,
                data={"spatial_key": request.location.spatial_key}
            )

        return await self._run("request_location_changed", request_id, run)

    async def redispatch(self, request_id: str, radius_meters: Optional[float] = None) -> PipelineOutcome:
        """Manual matching pass, optionally with a wider radius"""
        outcome = await self.on_request_created(request_id, radius_meters)
        outcome.event = "redispatch"
        return outcome

    # Inbound replies

    async def on_inbound_reply(self, from_phone: str, body: str) -> PipelineOutcome:
        async def run() -> PipelineOutcome:
            result = await self.intake.handle_reply(from_phone, body)
            return PipelineOutcome("inbound_reply", "ok", result.request_id, result.code.value, result.to_dict())

        return await self._run("inbound_reply", mask_phone_number(from_phone), run)

    # Scheduled work

    async def on_scheduled_sweep(self) -> PipelineOutcome:
        async def run() -> PipelineOutcome:
            report = await self.reminders.run()
            status = "skipped" if report.locked_out else "ok"
            return PipelineOutcome("scheduled_sweep", status, data=report.to_dict())

        return await self._run("scheduled_sweep", None, run)

    # Profile events

    async def on_user_location_changed(self, user_id: str) -> PipelineOutcome:
        """Tag a donor or hospital profile with the spatial key of its coordinates"""
        async def run() -> PipelineOutcome:
            user = await self.user_store.get(user_id)
            if user is None:
                raise NotFoundError("user", user_id)
            location = user.location
            if not location.has_coordinates:
                raise NotLocatable(f"User {user_id} has no location")

            spatial_key = self.geo_index.encode(location.latitude, location.longitude)
            if spatial_key == location.spatial_key:
                return PipelineOutcome("user_location_changed", "skipped", user_id, "already tagged")

            tagged = await self.user_store.set_spatial_key(user_id, location.latitude, location.longitude, spatial_key)
            if not tagged:
                # Coordinates moved again; the newer change event will tag them
                return PipelineOutcome("user_location_changed", "skipped", user_id, "location changed meanwhile")
            return PipelineOutcome("user_location_changed", "ok", user_id, data={"spatial_key": spatial_key})

        return await self._run("user_location_changed", user_id, run)

    async def on_hospital_verification_changed(self, user_id: str) -> PipelineOutcome:
        """Text the hospital when its verification is approved or rejected"""
        async def run() -> PipelineOutcome:
            user = await self.user_store.get(user_id)
            if user is None:
                raise NotFoundError("user", user_id)
            if user.role != UserRole.HOSPITAL:
                raise ValidationError(f"User {user_id} is not a hospital")

            status = user.verification_status or VerificationStatus.UNVERIFIED
            message = templates.verification_message(status)
            if message is None:
                return PipelineOutcome("hospital_verification_changed", "skipped", user_id, status.value)

            phone = normalize_phone_number(user.phone_number)
            if not phone:
                return PipelineOutcome("hospital_verification_changed", "skipped", user_id, "missing-phone")

            result = await self.dispatcher.send_one(phone, message, kind="verification")
            logger.info(f"Verification notice ({status.value}) for {user.name or user_id}: success={result.success}")
            return PipelineOutcome(
                "hospital_verification_changed",
                "ok" if result.success else "failed",
                user_id,
                status.value,
                result.to_dict()
            )

        return await self._run("hospital_verification_changed", user_id, run)

    # Status transitions; these raise so the HTTP layer can map them

    async def activate(self, request_id: str) -> EmergencyRequest:
        return await retry_async(self.lifecycle.activate, request_id, description=f"activate {request_id}")

    async def deactivate(self, request_id: str) -> EmergencyRequest:
        return await retry_async(self.lifecycle.deactivate, request_id, description=f"deactivate {request_id}")

    async def cancel(self, request_id: str) -> EmergencyRequest:
        return await retry_async(self.lifecycle.cancel, request_id, description=f"cancel {request_id}")

    async def fulfill(self, request_id: str) -> EmergencyRequest:
        return await retry_async(self.lifecycle.fulfill, request_id, description=f"fulfill {request_id}")

    async def schedule_donation(self, request_id: str, donor_id: str) -> EmergencyRequest:
        return await retry_async(
            self.lifecycle.schedule_donation, request_id, donor_id,
            description=f"schedule donation {request_id}/{donor_id}"
        )

    async def complete_donation(self, request_id: str, donor_id: str) -> EmergencyRequest:
        return await retry_async(
            self.lifecycle.complete_donation, request_id, donor_id,
            description=f"complete donation {request_id}/{donor_id}"
        )

    # Listings

    async def get_request(self, request_id: str) -> EmergencyRequest:
        return await retry_async(self.request_store.get, request_id, description=f"get request {request_id}")

    async def list_requests(self, statuses: Sequence[RequestStatus], limit: int = 50) -> List[EmergencyRequest]:
        return await retry_async(self.request_store.query_by_status, statuses, limit, description="list requests")

    async def list_requests_for_donor(
        self,
        donor_id: str,
        statuses: Sequence[RequestStatus] = (),
        limit: int = 50
    ) -> List[EmergencyRequest]:
        return await retry_async(
            self.request_store.query_by_matched_donor, donor_id, statuses, limit,
            description=f"list requests for donor {donor_id}"
        )


def build_pipeline(
    user_store: UserStore,
    request_store: RequestStore,
    sender,
    cache=None,
    geo_index: Optional[GeoIndex] = None
) -> DispatchPipeline:
    """Wire the components around the given stores and sender"""
    geo_index = geo_index or GeoIndex(get_matching_config().geohash_precision)
    lifecycle = RequestLifecycle(request_store)
    matcher = DonorMatcher(user_store, geo_index)
    dispatcher = NotificationDispatcher(lifecycle, sender)
    intake = ResponseIntake(user_store, request_store, lifecycle, dispatcher)
    reminders = ReminderSweep(user_store, dispatcher, cache=cache)
    return DispatchPipeline(
        user_store=user_store,
        request_store=request_store,
        lifecycle=lifecycle,
        matcher=matcher,
        dispatcher=dispatcher,
        intake=intake,
        reminders=reminders,
        geo_index=geo_index,
    )
