from unittest.mock import AsyncMock, patch

from fastapi import status

from referral_waitlist.features.waitlist.exceptions import (
    AlreadyEnrolled,
    NoAdjacentEntries,
    StoreUnavailable,
    UniquenessFailure,
)
from referral_waitlist.features.waitlist.models.waitlist import CodeType, WaitlistEntry
from referral_waitlist.features.waitlist.schemas.waitlist import (
    ActiveReferralMatch,
    PromotionResult,
    RankOut,
    ReferralCodeMatch,
    WaitlistSummary,
)
from referral_waitlist.features.waitlist.services.waitlist import WaitlistService

BASE = "/api/v1/waitlist"


def make_entry(**overrides):
    values = dict(
        id="entry-1",
        users_user_id="user-1",
        position=3,
        timestamp=1000,
        creation_date=1000,
        referral_code="415555",
        code_type=CodeType.FIRST_SIX,
        referrals=0,
        used_referral_code=False,
    )
    values.update(overrides)
    return WaitlistEntry(**values)


def test_join_waitlist_success(client):
    entry = make_entry()

    with patch.object(WaitlistService, "enroll", new=AsyncMock(return_value=entry)) as enroll, patch.object(
        WaitlistService, "attach_referral_link", new=AsyncMock(return_value=True)
    ) as attach:
        response = client.post(BASE, json={"user_id": "user-1", "phone_number": "+1 (415) 555-0132"})

    assert response.status_code == status.HTTP_201_CREATED
    payload = response.json()
    assert payload["status"] == "success"
    assert payload["message"] == "Successfully added to waitlist"
    assert payload["data"]["user_id"] == "user-1"
    assert payload["data"]["referral_code"] == "415555"
    assert payload["data"]["code_type"] == "firstSix"
    enroll.assert_awaited_once_with("user-1", "141555", "550132")
    attach.assert_awaited_once_with("user-1", "415555")


def test_join_waitlist_already_enrolled(client):
    with patch.object(WaitlistService, "enroll", new=AsyncMock(side_effect=AlreadyEnrolled("User user-1 is already on the waitlist"))):
        response = client.post(BASE, json={"user_id": "user-1", "phone_number": "4155550132"})

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    payload = response.json()
    assert payload["status"] == "error"
    assert payload["error_kind"] == "already_enrolled"


def test_join_waitlist_code_exhaustion_is_reported_as_failure(client):
    failure = UniquenessFailure("no unique referral code after 10 attempts", attempts=10)

    with patch.object(WaitlistService, "enroll", new=AsyncMock(side_effect=failure)):
        response = client.post(BASE, json={"user_id": "user-1", "phone_number": "4155550132"})

    assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert response.json()["error_kind"] == "uniqueness_failure"


def test_join_waitlist_validation(client):
    response = client.post(BASE, json={"user_id": "user-1"})

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json()["message"] == "Validation failed"


def test_get_rank(client):
    rank = RankOut(id="entry-1", position=4, used_referral_code=True)

    with patch.object(WaitlistService, "get_rank", new=AsyncMock(return_value=rank)):
        response = client.get(f"{BASE}/user-1/rank")

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["data"] == {"id": "entry-1", "position": 4, "used_referral_code": True}


def test_get_rank_not_found(client):
    with patch.object(WaitlistService, "get_rank", new=AsyncMock(return_value=None)):
        response = client.get(f"{BASE}/nobody/rank")

    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_get_waitlist_info(client):
    summary = WaitlistSummary(
        position=2,
        referral_code="415555",
        code_type=CodeType.FIRST_SIX,
        used_referral_code=False,
        max_position=10,
        waitlist_referral_link="https://example.com/join?code=415555",
    )

    with patch.object(WaitlistService, "get_summary", new=AsyncMock(return_value=summary)):
        response = client.get(f"{BASE}/user-1")

    data = response.json()["data"]
    assert response.status_code == status.HTTP_200_OK
    assert data["max_position"] == 10
    assert data["code_type"] == "firstSix"


def test_check_referral_code(client):
    match = ReferralCodeMatch(active=ActiveReferralMatch(id="entry-2", user_id="user-2", position=7))

    with patch.object(WaitlistService, "lookup_referral_code", new=AsyncMock(return_value=match)) as lookup:
        response = client.get(f"{BASE}/referrals/CODE02", params={"user_id": "user-1"})

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["data"]["active"]["user_id"] == "user-2"
    assert response.json()["data"]["promoted"] is None
    lookup.assert_awaited_once_with("CODE02", "user-1")


def test_check_referral_code_not_found(client):
    with patch.object(WaitlistService, "lookup_referral_code", new=AsyncMock(return_value=ReferralCodeMatch())):
        response = client.get(f"{BASE}/referrals/NOPE00")

    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_redeem_referral(client):
    entry = make_entry()
    rank = RankOut(id="entry-1", position=1, used_referral_code=True)

    with patch.object(WaitlistService, "get_entry_by_user_id", new=AsyncMock(return_value=entry)), patch.object(
        WaitlistService, "redeem_referral", new=AsyncMock(return_value=True)
    ) as redeem, patch.object(WaitlistService, "get_rank", new=AsyncMock(return_value=rank)):
        response = client.post(
            f"{BASE}/referrals/redeem",
            json={"user_id": "user-1", "referral_code": "CODE02", "referrer_user_id": "user-2"},
        )

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["data"]["position"] == 1
    redeem.assert_awaited_once_with("entry-1", "CODE02", "user-2")


def test_redeem_referral_for_unknown_user(client):
    with patch.object(WaitlistService, "get_entry_by_user_id", new=AsyncMock(return_value=None)):
        response = client.post(f"{BASE}/referrals/redeem", json={"user_id": "ghost", "referral_code": "CODE02"})

    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["error_kind"] == "not_found"


def test_redeem_referral_without_neighbours(client):
    with patch.object(WaitlistService, "get_entry_by_user_id", new=AsyncMock(return_value=make_entry())), patch.object(
        WaitlistService, "redeem_referral", new=AsyncMock(side_effect=NoAdjacentEntries("No entries around position 1"))
    ):
        response = client.post(f"{BASE}/referrals/redeem", json={"user_id": "user-1", "referral_code": "CODE02"})

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["error_kind"] == "no_adjacent_entries"


def test_promote_waitlist_front(client):
    result = PromotionResult(requested=2, promoted=2, batches=1, user_ids=["user-1", "user-2"])

    with patch.object(WaitlistService, "promote_front", new=AsyncMock(return_value=result)) as promote:
        response = client.post(f"{BASE}/promotions", json={"amount": 2})

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["data"]["user_ids"] == ["user-1", "user-2"]
    promote.assert_awaited_once_with(2)


def test_recompute_positions_store_down(client):
    with patch.object(WaitlistService, "recompute_positions", new=AsyncMock(side_effect=StoreUnavailable("Error in recompute_positions: down"))):
        response = client.post(f"{BASE}/positions/recompute")

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert response.json()["error_kind"] == "store_unavailable"
