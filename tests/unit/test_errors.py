"""Error taxonomy: status codes and response bodies."""

from datetime import datetime, timezone

from loopeco.errors import (
    AccountNotFound,
    AlreadyCompletedGroupGift,
    EconomyError,
    ExpiredGroupGift,
    InsufficientFunds,
    InvalidAmount,
    ItemAlreadyOwned,
    ItemNotFound,
    ItemNotPurchasable,
    SelfGift,
    StoreUnavailable,
    WeeklyBonusAlreadyClaimed,
)


def test_status_codes():
    assert InsufficientFunds(1, 100).status_code == 400
    assert AccountNotFound(1).status_code == 404
    assert ItemNotFound("x").status_code == 404
    assert ItemAlreadyOwned("x").status_code == 409
    assert ItemNotPurchasable("x").status_code == 422
    assert ExpiredGroupGift(1).status_code == 409
    assert AlreadyCompletedGroupGift(1).status_code == 409
    assert InvalidAmount("bad").status_code == 422
    assert SelfGift().status_code == 422
    assert StoreUnavailable("down").status_code == 503


def test_all_are_economy_errors():
    for exc in (InsufficientFunds(1, 1), SelfGift(), StoreUnavailable("down")):
        assert isinstance(exc, EconomyError)


def test_only_expiry_persists_changes():
    assert ExpiredGroupGift(1).persist_changes is True
    assert AlreadyCompletedGroupGift(1).persist_changes is False
    assert InsufficientFunds(1, 1).persist_changes is False


def test_to_dict_has_detail_and_code():
    body = InsufficientFunds(7, 250).to_dict()
    assert body["code"] == "insufficient_funds"
    assert "250" in body["detail"]


def test_weekly_bonus_includes_next_available():
    next_available = datetime(2026, 3, 2, tzinfo=timezone.utc)
    body = WeeklyBonusAlreadyClaimed(next_available).to_dict()
    assert body["code"] == "weekly_bonus_claimed"
    assert body["next_available"] == "2026-03-02T00:00:00+00:00"
