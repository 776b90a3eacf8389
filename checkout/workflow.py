"""Order settlement: create a payment-pending order, then settle it once the
gateway confirms payment.

An order is created ``pending/pending`` and moves exactly once, to
``paid`` plus the configured order status. Inventory is only touched after
the gateway has captured the money, so anything that goes wrong from that
point on is reported as ``SettlementIncomplete`` for manual reconciliation.
"""
import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

from checkout.config import GatewayConfig
from checkout.errors import (
    InsufficientStock, NotFound, OrderError, PaymentNotApproved, PersistenceError,
    SettlementIncomplete, SizeNotFound, ValidationError,
)
from checkout.models import Order, utcnow
from checkout.money import normalize_line_items
from checkout.stores import CartStore, InventoryStore, OrderStore

logger = logging.getLogger(__name__)

TERMINAL_ORDER_STATUSES = ("confirmed", "rejected")


@dataclass(frozen=True)
class InitiatedOrder:
    order_id: str
    approval_url: str


@dataclass(frozen=True)
class SettlementResult:
    order_id: str
    order_status: str
    payment_status: str
    payment_details: dict = field(default_factory=dict)

    @classmethod
    def from_order(cls, order: Order) -> "SettlementResult":
        return cls(
            order_id=order.id,
            order_status=order.order_status,
            payment_status=order.payment_status,
            payment_details=dict(order.payment_details or {}),
        )

    def to_dict(self) -> dict:
        return {
            "orderId": self.order_id,
            "orderStatus": self.order_status,
            "paymentStatus": self.payment_status,
            "paymentDetails": self.payment_details,
        }


class KeyedLock:
    """One lock per key, dropped again once nobody holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    @contextmanager
    def hold(self, key):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


class OrderWorkflow:
    def __init__(self, session_factory, gateway, config: GatewayConfig, confirmed_status: str = "confirmed"):
        self.session_factory = session_factory
        self.gateway = gateway
        self.config = config
        self.confirmed_status = confirmed_status
        self._order_locks = KeyedLock()

    def initiate_order(
        self,
        user_id: str,
        cart_items: Sequence[Mapping],
        address_info: Mapping,
        cart_id: Optional[str] = None,
        total_amount: Optional[int] = None,
    ) -> InitiatedOrder:
        if not user_id or not address_info:
            raise ValidationError(
                "Missing required fields",
                user_id=bool(user_id),
                address_info=bool(address_info),
            )

        batch = normalize_line_items(cart_items, total_amount)
        logger.info("Payment amounts: total_cents=%s total=%s", batch.total_cents, batch.total)

        order_id = uuid.uuid4().hex
        intent = self.gateway.create_payment_intent(
            batch.total_cents,
            self.config.currency,
            batch.items,
            self.config.return_url,
            self.config.cancel_url,
            idempotency_key=order_id,
        )

        order = Order(
            id=order_id,
            user_id=str(user_id),
            cart_id=cart_id,
            cart_items=[dict(item) for item in cart_items],
            address_info=dict(address_info),
            total_amount=batch.total,
            total_cents=batch.total_cents,
            currency=self.config.currency,
            order_status="pending",
            payment_status="pending",
            payment_method="stripe",
            payment_id=intent.intent_id,
        )
        with self.session_factory() as db:
            try:
                OrderStore(db).create(order)
            except PersistenceError:
                # The intent is left to expire on the gateway side.
                logger.error("Order %s not saved; payment intent %s is orphaned", order_id, intent.intent_id)
                raise

        logger.info("Order created: %s payment=%s", order_id, intent.intent_id)
        return InitiatedOrder(order_id=order_id, approval_url=intent.approval_url)

    def settle_payment(self, order_id: str, payment_id: str, payer_id: str) -> SettlementResult:
        if not order_id or not payment_id or not payer_id:
            raise ValidationError("Missing required payment information")

        with self._order_locks.hold(order_id):
            with self.session_factory() as db:
                order = OrderStore(db).get_by_id(order_id)
                if order.payment_status == "paid":
                    logger.info("Order %s already settled", order_id)
                    return SettlementResult.from_order(order)
                if order.payment_status != "pending":
                    raise ValidationError(
                        "Order is not awaiting payment", order_id=order_id, payment_status=order.payment_status
                    )
                if order.payment_id != payment_id:
                    raise ValidationError(
                        "Payment does not belong to this order", order_id=order_id, payment_id=payment_id
                    )
                cart_items = list(order.cart_items)
                cart_id = order.cart_id

            execution = self.gateway.execute_payment(payment_id, payer_id)
            if not execution.approved:
                raise PaymentNotApproved(
                    "Payment was not approved", payment_id=payment_id, state=execution.state
                )
            logger.info("Payment %s captured for order %s", execution.payment_id, order_id)

            payment_details = {
                "paymentId": execution.payment_id,
                "paymentState": execution.state,
                "paymentDate": utcnow().isoformat(),
                "paymentMethod": "stripe",
            }
            with self.session_factory() as db:
                orders = OrderStore(db)
                try:
                    # Stock and order state are committed together or not at all.
                    self._reconcile_inventory(InventoryStore(db), cart_items)
                    if not orders.mark_paid(order_id, payer_id, payment_details, self.confirmed_status):
                        raise PersistenceError("Order is no longer pending", order_id=order_id)
                    orders.commit("settling order", order_id=order_id)
                except OrderError as exc:
                    db.rollback()
                    order = orders.get_by_id(order_id)
                    if order.payment_status == "paid":
                        logger.info("Order %s was settled by a concurrent request", order_id)
                        return SettlementResult.from_order(order)
                    logger.error(
                        "CAPTURED BUT UNSETTLED: order=%s payment=%s reason=%s",
                        order_id, execution.payment_id, exc.kind,
                    )
                    raise SettlementIncomplete(order_id, execution.payment_id, exc) from exc

                if cart_id:
                    try:
                        CartStore(db).delete_by_id(cart_id)
                        logger.info("Deleted cart: %s", cart_id)
                    except PersistenceError as exc:
                        logger.warning("Could not delete cart %s: %s", cart_id, exc.detail)

                order = orders.get_by_id(order_id)
                logger.info(
                    "Order settled: %s status=%s payment=%s", order_id, order.order_status, order.payment_status
                )
                return SettlementResult.from_order(order)

    def _reconcile_inventory(self, inventory: InventoryStore, cart_items) -> None:
        demand = {}
        titles = {}
        for item in cart_items:
            key = (str(item["product_id"]), item["size"])
            demand[key] = demand.get(key, 0) + item["quantity"]
            titles.setdefault(key, item["title"])

        # Every bucket is checked, in submission order, before the first one is touched.
        for (product_id, size), quantity in demand.items():
            product = inventory.get_by_product_id(product_id)
            bucket = product.bucket(size)
            if bucket is None:
                raise SizeNotFound(
                    f"Size {size} not found for product {titles[product_id, size]}",
                    product_id=product_id,
                    size=size,
                )
            if bucket.stock < quantity:
                raise InsufficientStock(
                    f"Not enough stock for size {size} of product {titles[product_id, size]}",
                    product_id=product_id,
                    size=size,
                    requested=quantity,
                    available=bucket.stock,
                )

        # Sorted so concurrent settlements lock buckets in the same order.
        for (product_id, size), quantity in sorted(demand.items()):
            if not inventory.decrement_stock(product_id, size, quantity):
                raise InsufficientStock(
                    f"Not enough stock for size {size} of product {titles[product_id, size]}",
                    product_id=product_id,
                    size=size,
                    requested=quantity,
                )

    def update_order_status(self, order_id: str, order_status: str) -> dict:
        """Confirm or reject a pending order. Terminal statuses never change again."""
        if order_status not in TERMINAL_ORDER_STATUSES:
            raise ValidationError(
                f"Order status must be one of {', '.join(TERMINAL_ORDER_STATUSES)}",
                order_status=order_status,
            )

        with self.session_factory() as db:
            orders = OrderStore(db)
            order = orders.get_by_id(order_id)
            if not orders.update_status(order_id, order_status):
                current = orders.get_by_id(order_id).order_status
                raise ValidationError(
                    f"Order status cannot change from {current} to {order_status}",
                    order_id=order_id,
                    order_status=current,
                )
            logger.info("Order %s status: %s -> %s", order_id, order.order_status, order_status)
            return orders.get_by_id(order_id).to_dict()

    def get_order(self, order_id: str) -> dict:
        with self.session_factory() as db:
            return OrderStore(db).get_by_id(order_id).to_dict()

    def list_orders_for_user(self, user_id: str) -> list:
        with self.session_factory() as db:
            orders = OrderStore(db).list_by_user(user_id)
            if not orders:
                raise NotFound("No orders found!", user_id=user_id)
            return [order.to_dict() for order in orders]
