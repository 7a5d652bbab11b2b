"""
Donor matching against the in-memory user store
"""

import pytest

from core.errors import NotLocatable, QueryError, StoreError, ValidationError
from domains.matching.services.donor_matcher import DonorMatcher
from domains.matching.services.geo_index import encode
from domains.users.models.user import BloodType

from conftest import CENTER, InMemoryUserStore, donor, emergency


def nearby(km_north: float):
    """Point ``km_north`` kilometers north of the center"""
    return CENTER[0] + km_north / 111.195, CENTER[1]


@pytest.fixture
def populated_store():
    return InMemoryUserStore([
        donor("d-near", *nearby(2), phone="+244923000001"),
        donor("d-mid", *nearby(20), phone="+244923000002"),
        donor("d-edge", *nearby(45), phone="923000003"),
        donor("d-far", *nearby(111), phone="+244923000004"),
        donor("d-wrong-type", *nearby(1), phone="+244923000005", blood_type=BloodType.A_POSITIVE),
        donor("d-unavailable", *nearby(1), phone="+244923000006", is_available=False),
        donor("d-no-phone", *nearby(3), phone=None),
    ])


async def test_finds_available_donors_of_the_type_within_radius(populated_store):
    outcome = await DonorMatcher(populated_store).find_candidates(emergency("r1"))

    assert outcome.donor_ids == ["d-near", "d-mid", "d-edge"]
    assert [c.distance_meters for c in outcome.candidates] == sorted(c.distance_meters for c in outcome.candidates)
    assert all(c.distance_meters <= 50_000 for c in outcome.candidates)


async def test_phones_are_normalized(populated_store):
    outcome = await DonorMatcher(populated_store).find_candidates(emergency("r1"))

    phones = {c.donor_id: c.phone for c in outcome.candidates}
    assert phones["d-edge"] == "+244923000003"


async def test_donor_without_phone_is_excluded(populated_store):
    outcome = await DonorMatcher(populated_store).find_candidates(emergency("r1"))

    assert [(e.donor_id, e.reason) for e in outcome.excluded] == [("d-no-phone", "missing-phone")]


async def test_donor_with_landline_is_excluded():
    store = InMemoryUserStore([
        donor("d-landline", *nearby(1), phone="+244222000111"),
        donor("d-mobile", *nearby(2), phone="+244923000001"),
    ])

    outcome = await DonorMatcher(store).find_candidates(emergency("r1"))

    assert outcome.donor_ids == ["d-mobile"]
    assert [(e.donor_id, e.reason) for e in outcome.excluded] == [("d-landline", "invalid-phone")]


async def test_donor_without_coordinates_is_excluded():
    ghost = donor("d-ghost", None, None, phone="+244923000009")
    ghost.location.spatial_key = encode(*CENTER)
    store = InMemoryUserStore([ghost])

    outcome = await DonorMatcher(store).find_candidates(emergency("r1"))

    assert outcome.candidates == []
    assert [(e.donor_id, e.reason) for e in outcome.excluded] == [("d-ghost", "not-locatable")]


async def test_wider_radius_reaches_far_donor(populated_store):
    outcome = await DonorMatcher(populated_store).find_candidates(emergency("r1"), radius_meters=150_000)

    assert "d-far" in outcome.donor_ids


async def test_zero_candidates_is_valid():
    outcome = await DonorMatcher(InMemoryUserStore()).find_candidates(emergency("r1"))

    assert outcome.candidates == []
    assert outcome.ranges_queried > 0


class EveryRangeStore(InMemoryUserStore):
    """Returns the same donors for every range query"""

    async def query_donors(self, blood_type, low, high):
        self.queries.append((blood_type, low, high))
        return list(self.users.values())


async def test_donor_returned_by_several_ranges_appears_once():
    store = EveryRangeStore([donor("d-1", *nearby(1), phone="+244923000001")])

    outcome = await DonorMatcher(store).find_candidates(emergency("r1"))

    assert len(store.queries) == outcome.ranges_queried
    assert outcome.donor_ids == ["d-1"]


async def test_equal_distances_are_ordered_by_donor_id():
    point = nearby(5)
    store = InMemoryUserStore([
        donor("d-b", *point, phone="+244923000002"),
        donor("d-a", *point, phone="+244923000001"),
    ])

    outcome = await DonorMatcher(store).find_candidates(emergency("r1"))

    assert outcome.donor_ids == ["d-a", "d-b"]


async def test_request_without_location_is_rejected(populated_store):
    request = emergency("r1")
    request.location.latitude = None

    with pytest.raises(NotLocatable):
        await DonorMatcher(populated_store).find_candidates(request)


async def test_request_without_blood_type_is_rejected(populated_store):
    request = emergency("r1")
    request.blood_type = None

    with pytest.raises(ValidationError):
        await DonorMatcher(populated_store).find_candidates(request)


class FailingStore(InMemoryUserStore):
    def __init__(self, error):
        super().__init__()
        self.error = error

    async def query_donors(self, blood_type, low, high):
        raise self.error


@pytest.mark.parametrize("error", [StoreError("connection reset"), QueryError("timed out")])
async def test_store_failures_surface_as_query_error(error):
    with pytest.raises(QueryError):
        await DonorMatcher(FailingStore(error)).find_candidates(emergency("r1"))
