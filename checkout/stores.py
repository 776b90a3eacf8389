"""Session-backed stores used by the order workflow.

Reads return ORM objects or raise the matching ``NotFound``. Plain writes
commit immediately. The settlement writes (``decrement_stock`` and
``mark_paid``) join the caller's transaction and are committed together
with ``commit()``. Any database failure becomes ``PersistenceError``.
"""
import logging

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from checkout.errors import OrderNotFound, PersistenceError, ProductNotFound
from checkout.models import Cart, Order, Product, ProductSize, utcnow

logger = logging.getLogger(__name__)


class _SessionStore:
    def __init__(self, db: Session):
        self.db = db

    def commit(self, action: str, **context) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Error {action}: {exc}", **context) from exc

    def _execute(self, stmt, action: str, **context):
        try:
            return self.db.execute(stmt)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Error {action}: {exc}", **context) from exc


class OrderStore(_SessionStore):
    def create(self, order: Order) -> str:
        self.db.add(order)
        self.commit("saving order", payment_id=order.payment_id)
        return order.id

    def get_by_id(self, order_id: str) -> Order:
        order = self.db.get(Order, order_id, populate_existing=True)
        if order is None:
            raise OrderNotFound("Order not found", order_id=order_id)
        return order

    def list_by_user(self, user_id: str) -> list:
        stmt = select(Order).filter_by(user_id=user_id).order_by(Order.order_date.desc())
        return list(self.db.scalars(stmt))

    def mark_paid(self, order_id: str, payer_id: str, payment_details: dict, order_status: str) -> bool:
        """Move a pending order to paid in the current transaction.

        False if the order is no longer pending, i.e. someone else settled it.
        """
        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.payment_status == "pending")
            .values(
                payment_status="paid",
                order_status=order_status,
                payer_id=payer_id,
                payment_details=payment_details,
                order_update_date=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = self._execute(stmt, "updating order", order_id=order_id)
        return result.rowcount == 1

    def update_status(self, order_id: str, order_status: str) -> bool:
        """Move a pending order to ``order_status``. False if it already left pending."""
        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.order_status == "pending")
            .values(order_status=order_status, order_update_date=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = self._execute(stmt, "updating order status", order_id=order_id)
        if result.rowcount != 1:
            self.db.rollback()
            return False
        self.commit("updating order status", order_id=order_id)
        return True


class InventoryStore(_SessionStore):
    def get_by_product_id(self, product_id: str) -> Product:
        stmt = (
            select(Product)
            .where(Product.id == product_id)
            .options(selectinload(Product.sizes))
            .execution_options(populate_existing=True)
        )
        product = self.db.scalars(stmt).first()
        if product is None:
            raise ProductNotFound("Product not found", product_id=product_id)
        return product

    def save(self, product: Product) -> None:
        product.total_stock = sum(bucket.stock for bucket in product.sizes)
        self.db.add(product)
        self.commit("saving product", product_id=product.id)

    def decrement_stock(self, product_id: str, size: str, quantity: int) -> bool:
        """Take ``quantity`` from one size bucket if it still holds that much.

        A single conditional UPDATE, so concurrent settlements cannot both
        pass the stock check. Nothing is committed here. Returns False when
        the bucket is short.
        """
        decrement = (
            update(ProductSize)
            .where(
                ProductSize.product_id == product_id,
                ProductSize.size == size,
                ProductSize.stock >= quantity,
            )
            .values(stock=ProductSize.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        total = (
            select(func.coalesce(func.sum(ProductSize.stock), 0))
            .where(ProductSize.product_id == product_id)
            .scalar_subquery()
        )
        result = self._execute(decrement, "updating stock", product_id=product_id, size=size)
        if result.rowcount != 1:
            return False
        self._execute(
            update(Product)
            .where(Product.id == product_id)
            .values(total_stock=total)
            .execution_options(synchronize_session=False),
            "updating stock",
            product_id=product_id,
            size=size,
        )
        logger.info("Stock reserved: product=%s size=%s quantity=-%s", product_id, size, quantity)
        return True


class CartStore(_SessionStore):
    def delete_by_id(self, cart_id: str) -> None:
        cart = self.db.get(Cart, cart_id)
        if cart is None:
            return
        self.db.delete(cart)
        self.commit("deleting cart", cart_id=cart_id)
