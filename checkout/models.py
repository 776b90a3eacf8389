import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON, CheckConstraint, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from checkout.database import Base


def _new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, index=True, nullable=False)
    cart_id = Column(String, nullable=True)
    cart_items = Column(JSON, nullable=False)
    address_info = Column(JSON, nullable=False)
    total_amount = Column(String, nullable=False)        # gateway total, e.g. "2.00"
    total_cents = Column(Integer, nullable=False)
    currency = Column(String, nullable=False)
    order_status = Column(String, nullable=False, default="pending")      # pending | confirmed | rejected
    payment_status = Column(String, nullable=False, default="pending")    # pending | paid | failed
    payment_method = Column(String, nullable=False, default="stripe")
    payment_id = Column(String, index=True)              # Stripe Checkout Session ID
    payer_id = Column(String)
    payment_details = Column(JSON)
    order_date = Column(DateTime(timezone=True), default=utcnow)
    order_update_date = Column(DateTime(timezone=True), default=utcnow)

    def to_dict(self) -> dict:
        return {
            "orderId": self.id,
            "userId": self.user_id,
            "cartId": self.cart_id,
            "cartItems": self.cart_items,
            "addressInfo": self.address_info,
            "totalAmount": self.total_amount,
            "currency": self.currency,
            "orderStatus": self.order_status,
            "paymentStatus": self.payment_status,
            "paymentMethod": self.payment_method,
            "paymentId": self.payment_id,
            "payerId": self.payer_id,
            "paymentDetails": self.payment_details,
            "orderDate": self.order_date.isoformat() if self.order_date else None,
            "orderUpdateDate": self.order_update_date.isoformat() if self.order_update_date else None,
        }


class Product(Base):
    __tablename__ = "products"

    id = Column(String, primary_key=True, default=_new_id)
    title = Column(String, nullable=False)
    total_stock = Column(Integer, nullable=False, default=0)

    sizes = relationship(
        "ProductSize",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductSize.position",
    )

    def bucket(self, size: str):
        return next((s for s in self.sizes if s.size == size), None)


class ProductSize(Base):
    __tablename__ = "product_sizes"
    __table_args__ = (
        UniqueConstraint("product_id", "size"),
        CheckConstraint("stock >= 0", name="ck_product_sizes_stock_non_negative"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(String, ForeignKey("products.id"), nullable=False, index=True)
    size = Column(String, nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    position = Column(Integer, nullable=False, default=0)

    product = relationship("Product", back_populates="sizes")


class Cart(Base):
    __tablename__ = "carts"

    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, index=True, nullable=False)
    items = Column(JSON, nullable=False, default=list)
