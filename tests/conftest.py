import os
from datetime import datetime, timedelta
from decimal import Decimal

# app.py builds an app at import time; keep that one in memory and without a scheduler thread
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RENEWAL_TASK_ENABLED"] = "false"

import pytest

from app import create_app
from config import TestConfig
from models import db
from models.enums import PaymentMethod, PaymentStatus, SubscriptionStatus
from models.payment import Payment
from models.payment_method_detail import PaymentMethodDetail
from models.subscription import Subscription
from models.user import User
from utils.peach_gateway import gateway


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def now():
    return datetime(2024, 3, 15, 9, 30, 0)


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make(email=None, name="Test User"):
        counter["n"] += 1
        user = User(email=email or f"user{counter['n']}@example.com", name=name)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_subscription(app):
    def _make(user, status=SubscriptionStatus.ACTIVE, period_end=None, price="100.00", plan_name="Pro Monthly"):
        subscription = Subscription(
            user_id=user.id,
            plan_name=plan_name,
            price=Decimal(price),
            currency="ZAR",
            status=status,
            started_at=datetime(2024, 1, 14) if status is not SubscriptionStatus.PENDING else None,
            current_period_end=period_end,
        )
        db.session.add(subscription)
        db.session.commit()
        return subscription

    return _make


@pytest.fixture
def make_payment_method(app):
    def _make(user, token="8ac7a4a1reg0001", is_default=True, is_active=True,
              payment_method=PaymentMethod.CARD):
        method = PaymentMethodDetail(
            user_id=user.id,
            payment_method=payment_method,
            gateway_registration_token=token,
            masked_card_last_four="1111",
            card_brand="VISA",
            expiry_month=12,
            expiry_year=2030,
            is_default=is_default,
            is_active=is_active,
        )
        db.session.add(method)
        db.session.commit()
        return method

    return _make


@pytest.fixture
def make_payment(app):
    def _make(subscription, status=PaymentStatus.COMPLETED, merchant_transaction_id=None,
              checkout_id=None, payment_method=PaymentMethod.CARD):
        payment = Payment(
            user_id=subscription.user_id,
            subscription_id=subscription.id,
            amount=subscription.price,
            currency=subscription.currency,
            status=status,
            payment_method=payment_method,
            merchant_transaction_id=merchant_transaction_id or f"TXN_test{subscription.id}_{status.value}",
            checkout_id=checkout_id,
            created_at=datetime(2024, 2, 14),
        )
        db.session.add(payment)
        db.session.commit()
        return payment

    return _make


@pytest.fixture
def due_subscription(make_user, make_subscription, now):
    """Active, period ended yesterday, price 100."""
    user = make_user()
    return make_subscription(user, period_end=now - timedelta(days=1))


@pytest.fixture
def charge(mocker):
    """Patch the recurring charge on the shared gateway; defaults to an approved result."""
    return mocker.patch.object(gateway, "charge_registration", return_value={
        "id": "8ac7a4a2charge",
        "result": {"code": "000.100.110", "description": "Request successfully processed"},
    })


@pytest.fixture
def reload(app):
    """Fresh row from the database, bypassing the identity map."""
    def _reload(model, ident):
        return db.session.get(model, ident, populate_existing=True)

    return _reload
