"""
Centralized payment status logic for subscriptions.
Applies gateway results to payments and keeps subscription status consistent with them:
a subscription is only Active when its most recent relevant payment is Completed.
"""
import logging
from datetime import datetime

from models import db
from models.enums import PaymentStatus, SubscriptionStatus
from models.payment import Payment
from models.subscription import Subscription
from utils.billing import next_period_end
from utils.notifications import notify_subscription_activated
from utils.payment_methods import store_payment_method
from utils.peach_gateway import (
    GatewayError,
    classify_result_code,
    extract_payment_method_detail,
    result_code,
    result_description,
)

logger = logging.getLogger(__name__)

ACTIVATABLE_STATUSES = (SubscriptionStatus.PENDING, SubscriptionStatus.EXPIRED, SubscriptionStatus.SUSPENDED)


def latest_payment(subscription_id, status=None):
    """Most recent payment of a subscription, optionally filtered by status."""
    query = Payment.query.filter_by(subscription_id=subscription_id)
    if status is not None:
        query = query.filter_by(status=status)
    return query.order_by(Payment.created_at.desc(), Payment.id.desc()).first()


def get_subscription_payment_status(subscription):
    """Status of the latest payment for user-facing display ('Pending' when none exists)."""
    latest = latest_payment(subscription.id)
    return latest.status.value if latest else PaymentStatus.PENDING.value


def activate_subscription(subscription, now=None):
    """
    Start a fresh billing period after a completed initial payment.
    Caller commits. Raises ValueError if the latest payment is not Completed.
    """
    latest = latest_payment(subscription.id)
    if latest is None or latest.status is not PaymentStatus.COMPLETED:
        raise ValueError("Subscription has no completed payment")
    if subscription.status is SubscriptionStatus.ACTIVE:
        return False
    if subscription.status not in ACTIVATABLE_STATUSES:
        raise ValueError(f"Cannot activate a {subscription.status.value} subscription")

    now = now or datetime.utcnow()
    subscription.status = SubscriptionStatus.ACTIVE
    subscription.started_at = subscription.started_at or now
    subscription.current_period_end = next_period_end(now)
    subscription.updated_at = now
    notify_subscription_activated(subscription, commit=False)
    return True


def _auto_store_payment_method(payment, response, gateway):
    """Best effort: keep the instrument for recurring charges when the gateway registered it."""
    if payment.is_recurring or not payment.payment_method.supports_registration:
        return None
    merchant_transaction_id = payment.merchant_transaction_id
    details = response
    if not details.get("registrationId") and payment.peach_payment_id:
        try:
            details = gateway.get_payment_details(payment.peach_payment_id)
        except GatewayError as e:
            logger.warning("Could not fetch payment details for %s: %s", merchant_transaction_id, e)
            return None

    try:
        fields = extract_payment_method_detail(details)
        if not fields.get("gateway_registration_token") or not fields["payment_method"].supports_registration:
            return None
        method = store_payment_method(payment.user_id, fields, set_as_default=True)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.warning("Could not store payment method for %s", merchant_transaction_id, exc_info=True)
        return None

    logger.info("Stored payment method %s for user %s", method.id, method.user_id)
    return method


def apply_gateway_result(payment, response, now=None):
    """
    Apply a checkout status or webhook response to a payment.

    Completed initial payments activate their subscription. Returns the
    resulting PaymentStatus. Caller commits.
    """
    status = classify_result_code(result_code(response))
    peach_payment_id = response.get("id")
    if peach_payment_id and not payment.peach_payment_id:
        payment.peach_payment_id = peach_payment_id

    if payment.status.is_terminal:
        # Gateway notifications can arrive more than once; the first terminal result wins
        return payment.status

    if status is PaymentStatus.PENDING:
        return status

    reason = None if status is PaymentStatus.COMPLETED else (result_description(response) or result_code(response) or None)
    payment.mark(status, failure_reason=reason)

    if status is PaymentStatus.COMPLETED and payment.subscription_id and not payment.is_recurring:
        subscription = db.session.get(Subscription, payment.subscription_id)
        if subscription and subscription.status in ACTIVATABLE_STATUSES:
            activate_subscription(subscription, now=now)
    return status


def record_gateway_result(payment, response, gateway, now=None):
    """
    Apply and commit a gateway result, then store the instrument of a newly
    completed payment in its own transaction. A failure storing the instrument
    never undoes the payment result.
    """
    was_terminal = payment.status.is_terminal
    status = apply_gateway_result(payment, response, now=now)
    db.session.commit()

    if status is PaymentStatus.COMPLETED and not was_terminal:
        _auto_store_payment_method(payment, response, gateway)
    return status
