import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_checkout.db")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from checkout.config import GatewayConfig
from checkout.database import Base
from checkout.models import Cart, Product, ProductSize
from checkout.stores import InventoryStore
from checkout.stripe_service import PaymentExecution, PaymentIntent
from checkout.workflow import OrderWorkflow


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'checkout.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def TestingSessionLocal(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def gateway_config():
    return GatewayConfig(
        secret_key="sk_test_123",
        return_url="http://shop.test/return",
        cancel_url="http://shop.test/cancel",
    )


@pytest.fixture
def gateway(mocker):
    gateway = mocker.Mock()
    gateway.create_payment_intent.return_value = PaymentIntent(
        intent_id="cs_test_123", approval_url="https://checkout.stripe.test/cs_test_123"
    )
    gateway.execute_payment.return_value = PaymentExecution(state="succeeded", payment_id="pi_test_123")
    return gateway


@pytest.fixture
def workflow(TestingSessionLocal, gateway, gateway_config):
    return OrderWorkflow(TestingSessionLocal, gateway, gateway_config)


@pytest.fixture
def add_product(TestingSessionLocal):
    def _add(product_id, title="Tee", **sizes):
        db = TestingSessionLocal()
        product = Product(id=product_id, title=title)
        product.sizes = [
            ProductSize(size=size, stock=stock, position=position)
            for position, (size, stock) in enumerate(sizes.items())
        ]
        InventoryStore(db).save(product)
        db.close()
    return _add


@pytest.fixture
def add_cart(TestingSessionLocal):
    def _add(cart_id, user_id="user-1"):
        db = TestingSessionLocal()
        db.add(Cart(id=cart_id, user_id=user_id, items=[]))
        db.commit()
        db.close()
    return _add


@pytest.fixture
def stock(TestingSessionLocal):
    def _stock(product_id, size):
        db = TestingSessionLocal()
        product = db.get(Product, product_id)
        bucket = product.bucket(size)
        result = (bucket.stock, product.total_stock)
        db.close()
        return result
    return _stock
