"""Gift cost: floor(price x multiplier)."""

from decimal import Decimal

from loopeco.db.models import GiftItem
from loopeco.economy.gift_service import gift_cost


def _item(price: int, multiplier: str) -> GiftItem:
    return GiftItem(id="x", name="X", category="badge", coin_price=price, multiplier=Decimal(multiplier))


def test_unit_multiplier():
    assert gift_cost(_item(300, "1")) == 300


def test_fractional_result_is_floored():
    assert gift_cost(_item(999, "1.50")) == 1498


def test_discount_multiplier():
    assert gift_cost(_item(5, "0.50")) == 2


def test_float_multiplier_does_not_drift():
    # 0.29 * 100 is 28.999999999999996 in binary floating point
    assert gift_cost(_item(100, "0.29")) == 29
