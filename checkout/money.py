"""Line-item validation and conversion from client minor units to gateway amounts.

Clients submit prices in minor units where 200 units make one cent
(20000 units == 1.00). Everything is kept in integers and only formatted
to a two-decimal string at the gateway boundary.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import List, Mapping, Optional, Sequence

from checkout.errors import ValidationError

MINOR_UNITS_PER_CENT = 200
MINIMUM_TOTAL_CENTS = 1
TOTAL_TOLERANCE = Decimal("0.001")

REQUIRED_FIELDS = ("product_id", "title", "price", "quantity", "size")


@dataclass(frozen=True)
class GatewayLineItem:
    product_id: str
    name: str
    price: str
    unit_cents: int
    quantity: int
    total_cents: int


@dataclass(frozen=True)
class NormalizedBatch:
    items: List[GatewayLineItem]
    total: str
    total_cents: int


def minor_units_to_cents(amount: int) -> int:
    """Round half up to the nearest whole cent."""
    cents, remainder = divmod(amount, MINOR_UNITS_PER_CENT)
    if remainder * 2 >= MINOR_UNITS_PER_CENT:
        cents += 1
    return cents


def format_cents(cents: int) -> str:
    return f"{cents // 100}.{cents % 100:02d}"


def parse_amount(value: str) -> Decimal:
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValidationError(f"Invalid amount: {value!r}")


def _positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def validate_line_items(items: Sequence[Mapping]) -> None:
    """Check the whole batch before anything else happens; one bad item rejects all."""
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError("Invalid cart items")

    for index, item in enumerate(items):
        if not isinstance(item, Mapping):
            raise ValidationError("Invalid cart item data", index=index)
        missing = [field for field in REQUIRED_FIELDS if not item.get(field)]
        if missing:
            raise ValidationError("Invalid cart item data", index=index, missing=missing)
        for field in ("price", "quantity"):
            if not _positive_int(item[field]):
                raise ValidationError(
                    f"Cart item {field} must be a positive integer",
                    index=index,
                    value=item[field],
                )


def normalize_line_items(items: Sequence[Mapping], total_amount: Optional[int] = None) -> NormalizedBatch:
    validate_line_items(items)

    submitted_total = sum(item["price"] * item["quantity"] for item in items)
    if total_amount is not None:
        if not _positive_int(total_amount):
            raise ValidationError("Invalid total amount", total_amount=total_amount)
        if total_amount != submitted_total:
            raise ValidationError(
                "Total amount does not match cart items",
                total_amount=total_amount,
                items_total=submitted_total,
            )

    gateway_items = []
    for item in items:
        unit_cents = minor_units_to_cents(item["price"])
        gateway_items.append(
            GatewayLineItem(
                product_id=str(item["product_id"]),
                name=f"{item['title']} ({item['size']})",
                price=format_cents(unit_cents),
                unit_cents=unit_cents,
                quantity=item["quantity"],
                total_cents=unit_cents * item["quantity"],
            )
        )

    total_cents = sum(item.total_cents for item in gateway_items)
    if total_cents < MINIMUM_TOTAL_CENTS:
        raise ValidationError(
            f"Payment amount must be at least {format_cents(MINIMUM_TOTAL_CENTS)}",
            total_cents=total_cents,
        )

    total = format_cents(total_cents)

    # Re-add the per-item strings the gateway will see; they must agree with the total.
    items_total = sum(parse_amount(item.price) * item.quantity for item in gateway_items)
    if abs(items_total - parse_amount(total)) > TOTAL_TOLERANCE:
        raise ValidationError(
            "Items total does not match subtotal",
            items_total=str(items_total),
            total=total,
        )

    return NormalizedBatch(items=gateway_items, total=total, total_cents=total_cents)
