from decimal import Decimal

import pytest

from checkout.errors import ValidationError
from checkout.money import format_cents, minor_units_to_cents, normalize_line_items


def item(price=20000, quantity=1, **overrides):
    data = {"product_id": "p1", "title": "Tee", "price": price, "quantity": quantity, "size": "M"}
    data.update(overrides)
    return data


def test_single_item_total():
    batch = normalize_line_items([item(20000, 2)])

    assert batch.total == "2.00"
    assert batch.total_cents == 200
    assert batch.items[0].price == "1.00"
    assert batch.items[0].name == "Tee (M)"


@pytest.mark.parametrize("items", [
    [item(20000, 2)],
    [item(19999, 3), item(301, 7, size="L")],
    [item(100, 1), item(99, 1), item(123456789, 4, product_id="p2")],
    [item(5 * 200 + 99, 11), item(1, 1, size="S"), item(200, 1, size="XL")],
])
def test_item_prices_add_up_to_total(items):
    batch = normalize_line_items(items)

    items_cents = sum(int(Decimal(i.price) * 100) * i.quantity for i in batch.items)
    assert items_cents == batch.total_cents
    assert Decimal(batch.total) * 100 == batch.total_cents


def test_rounds_half_up_to_cents():
    assert minor_units_to_cents(99) == 0
    assert minor_units_to_cents(100) == 1
    assert minor_units_to_cents(299) == 1
    assert minor_units_to_cents(300) == 2


def test_format_cents():
    assert format_cents(1) == "0.01"
    assert format_cents(12345) == "123.45"


def test_rejects_sub_minimum_total():
    with pytest.raises(ValidationError) as exc:
        normalize_line_items([item(50, 1)])
    assert exc.value.context["total_cents"] == 0


@pytest.mark.parametrize("bad", [
    {"price": 0},
    {"price": -200},
    {"quantity": 0},
    {"quantity": 1.5},
    {"price": True},
    {"size": ""},
    {"title": None},
    {"product_id": None},
])
def test_one_bad_item_rejects_the_batch(bad):
    with pytest.raises(ValidationError):
        normalize_line_items([item(), item(**bad)])


def test_rejects_empty_batch():
    with pytest.raises(ValidationError):
        normalize_line_items([])


def test_submitted_total_must_match_items():
    batch = normalize_line_items([item(20000, 2)], total_amount=40000)
    assert batch.total == "2.00"

    with pytest.raises(ValidationError) as exc:
        normalize_line_items([item(20000, 2)], total_amount=20000)
    assert exc.value.context == {"total_amount": 20000, "items_total": 40000}
