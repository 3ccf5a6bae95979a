"""Economy error taxonomy.

Business-rule violations are raised as ``EconomyError`` subclasses and mapped
to JSON responses by the error handler middleware. ``AlreadyUnlocked`` and
``ChallengeExpired`` are soft outcomes and only appear in result objects.
"""

from __future__ import annotations

from datetime import datetime


class EconomyError(Exception):
    """Base class for errors surfaced to the caller."""

    status_code: int = 400
    code: str = "economy_error"
    # Commit the unit of work before re-raising (used for state transitions
    # that must stick even though the request fails).
    persist_changes: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class InsufficientFunds(EconomyError):
    code = "insufficient_funds"

    def __init__(self, account_id: int, requested: int) -> None:
        super().__init__(f"Insufficient coins: account {account_id} cannot cover {requested}")
        self.account_id = account_id
        self.requested = requested


class AccountNotFound(EconomyError):
    status_code = 404
    code = "account_not_found"

    def __init__(self, account_id: int) -> None:
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class ItemNotFound(EconomyError):
    status_code = 404
    code = "item_not_found"

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Gift item not found or unavailable: {item_id}")
        self.item_id = item_id


class GroupGiftNotFound(EconomyError):
    status_code = 404
    code = "group_gift_not_found"

    def __init__(self, group_gift_id: int) -> None:
        super().__init__(f"Group gift {group_gift_id} not found")
        self.group_gift_id = group_gift_id


class ExpiredGroupGift(EconomyError):
    status_code = 409
    code = "group_gift_expired"
    persist_changes = True

    def __init__(self, group_gift_id: int) -> None:
        super().__init__(f"Group gift {group_gift_id} has expired")
        self.group_gift_id = group_gift_id


class AlreadyCompletedGroupGift(EconomyError):
    status_code = 409
    code = "group_gift_completed"

    def __init__(self, group_gift_id: int) -> None:
        super().__init__(f"Group gift {group_gift_id} is already fully funded")
        self.group_gift_id = group_gift_id


class WeeklyBonusAlreadyClaimed(EconomyError):
    status_code = 409
    code = "weekly_bonus_claimed"

    def __init__(self, next_available: datetime) -> None:
        super().__init__("Weekly bonus already claimed this week")
        self.next_available = next_available

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["next_available"] = self.next_available.isoformat()
        return data


class InvalidAmount(EconomyError):
    status_code = 422
    code = "invalid_amount"


class SelfGift(EconomyError):
    status_code = 422
    code = "self_gift"

    def __init__(self) -> None:
        super().__init__("You cannot send a gift to yourself")


class StoreUnavailable(EconomyError):
    """Infrastructure failure. Outcome unknown; the caller re-queries before retrying."""

    status_code = 503
    code = "store_unavailable"


class InvalidDeadline(EconomyError):
    status_code = 422
    code = "invalid_deadline"


class ItemAlreadyOwned(EconomyError):
    status_code = 409
    code = "item_already_owned"

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Item already owned: {item_id}")
        self.item_id = item_id


class ItemNotPurchasable(EconomyError):
    status_code = 422
    code = "item_not_purchasable"

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Item can only be sent as a gift: {item_id}")
        self.item_id = item_id
