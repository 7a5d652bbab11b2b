"""
Donor matcher - finds available donors of the requested blood type near a request
"""

from typing import Dict, Optional
import asyncio
import logging

from core.errors import NotLocatable, QueryError, StoreError, ValidationError
from core.phone import is_valid_angolan_phone, normalize_phone_number
from core.metrics import matched_candidates
from domains.matching.models.matching import DonorCandidate, Exclusion, MatchOutcome
from domains.matching.services.geo_index import GeoIndex
from domains.requests.models.request import EmergencyRequest
from domains.users.models.user import User
from domains.users.repositories.user_store import UserStore


logger = logging.getLogger(__name__)

DEFAULT_RADIUS_METERS = 50_000.0


class DonorMatcher:
    """
    Range-query proximity search over the user store.

    One store query per geohash range (a single query cannot express
    disjoint ranges), union by donor id, then exact-distance filtering.
    """

    def __init__(self, user_store: UserStore, geo_index: Optional[GeoIndex] = None):
        self.user_store = user_store
        self.geo_index = geo_index or GeoIndex()

    async def find_candidates(
        self,
        request: EmergencyRequest,
        radius_meters: float = DEFAULT_RADIUS_METERS
    ) -> MatchOutcome:
        """
        Candidates within ``radius_meters`` of the request, sorted by
        (distance, donor id). Raises ValidationError for an unlocatable
        request and QueryError when the store cannot be read.
        """
        if request.blood_type is None:
            raise ValidationError(f"Request {request.id} has no blood type")
        if not request.location.has_coordinates:
            raise NotLocatable(f"Request {request.id} has no location")

        center = (request.location.latitude, request.location.longitude)
        ranges = self.geo_index.bounds_for_radius(center, radius_meters)

        results = await asyncio.gather(
            *(self.user_store.query_donors(request.blood_type, low, high) for low, high in ranges),
            return_exceptions=True
        )

        # Union keyed by id; a donor near a cell boundary can come back from two ranges
        seen: Dict[str, User] = {}
        for result in results:
            if isinstance(result, BaseException):
                if isinstance(result, QueryError):
                    raise result
                if isinstance(result, StoreError):
                    raise QueryError(str(result)) from result
                raise result
            for user in result:
                seen.setdefault(user.id, user)

        outcome = MatchOutcome(ranges_queried=len(ranges))
        for donor_id in sorted(seen):
            donor = seen[donor_id]

            if not donor.location.has_coordinates:
                outcome.excluded.append(Exclusion(donor_id, "not-locatable"))
                continue

            phone = normalize_phone_number(donor.phone_number)
            if not phone:
                outcome.excluded.append(Exclusion(donor_id, "missing-phone"))
                continue
            if phone.startswith("+244") and not is_valid_angolan_phone(phone):
                # Angolan landlines cannot receive SMS
                outcome.excluded.append(Exclusion(donor_id, "invalid-phone"))
                continue

            try:
                meters = self.geo_index.distance(center, donor.location.as_point())
            except NotLocatable:
                outcome.excluded.append(Exclusion(donor_id, "not-locatable"))
                continue
            if meters > radius_meters:
                outcome.outside_radius += 1
                continue

            outcome.candidates.append(DonorCandidate(donor_id, phone, meters))

        outcome.candidates.sort(key=lambda c: (c.distance_meters, c.donor_id))
        matched_candidates.observe(len(outcome.candidates))

        logger.info(
            f"Request {request.id}: {len(outcome.candidates)} candidates within "
            f"{radius_meters / 1000:.1f} km across {len(ranges)} ranges "
            f"({len(outcome.excluded)} excluded, {outcome.outside_radius} outside radius)"
        )
        for exclusion in outcome.excluded:
            logger.warning(f"Request {request.id}: donor {exclusion.donor_id} excluded ({exclusion.reason})")

        return outcome
