"""
Subscription renewal engine.

One cycle selects Active subscriptions whose billing period has elapsed and,
for each one independently, charges the user's stored default instrument:

    Active --(charge succeeds)--> Active, period extended by one month
    Active --(charge fails)-----> Expired
    Active --(no payment method)-> Suspended

Each subscription row is claimed with a conditional UPDATE on the
(status, current_period_end) pair read beforehand, so overlapping cycles or a
concurrent manual renew can never charge the same period twice.
"""
import logging
from datetime import datetime

from models import db
from models.enums import PaymentStatus, SubscriptionStatus
from models.payment import Payment
from models.payment_method_detail import PaymentMethodDetail
from models.subscription import Subscription
from models.user import User
from utils.billing import next_period_end
from utils.mail import send_renewal_outcome_email
from utils.notifications import notify_no_payment_method, notify_renewal_failed, notify_renewal_succeeded
from utils.payment_methods import get_chargeable_default
from utils.payment_status_helper import latest_payment
from utils.peach_gateway import (
    GatewayError,
    classify_result_code,
    gateway as default_gateway,
    generate_merchant_transaction_id,
    result_code,
    result_description,
)

logger = logging.getLogger(__name__)

RENEWED = 'renewed'
FAILED = 'failed'
SUSPENDED = 'suspended'
SKIPPED = 'skipped'
ERROR = 'error'

RENEWABLE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.EXPIRED, SubscriptionStatus.SUSPENDED)


class RenewalError(Exception):
    """A manual renew request that cannot be attempted (bad state or no usable instrument)."""


def _outcome(subscription_id, result, payment_id=None, reason=None):
    return {
        'subscription_id': subscription_id,
        'result': result,
        'payment_id': payment_id,
        'reason': reason,
    }


def _claim(subscription_id, status, period_end, values):
    """Conditional UPDATE; returns True only if the row still held the values read earlier."""
    if period_end is None:
        period_clause = Subscription.current_period_end.is_(None)
    else:
        period_clause = Subscription.current_period_end == period_end
    rows = Subscription.query.filter(
        Subscription.id == subscription_id,
        Subscription.status == status,
        period_clause
    ).update(values, synchronize_session=False)
    return rows == 1


def _send_outcome_email(subscription, notification):
    user = db.session.get(User, subscription.user_id)
    if user is not None and notification is not None:
        send_renewal_outcome_email(user, subscription, notification)


def find_due_subscriptions(now):
    """Ids of Active subscriptions whose current period ended at or before now."""
    rows = db.session.query(Subscription.id).filter(
        Subscription.status == SubscriptionStatus.ACTIVE,
        Subscription.current_period_end <= now
    ).order_by(Subscription.current_period_end, Subscription.id).all()
    return [row.id for row in rows]


def suspend_for_missing_method(subscription, now=None):
    """No chargeable default instrument: suspend without attempting a charge."""
    now = now or datetime.utcnow()
    subscription_id = subscription.id
    claimed = _claim(subscription_id, subscription.status, subscription.current_period_end, {
        Subscription.status: SubscriptionStatus.SUSPENDED,
        Subscription.updated_at: now,
    })
    if not claimed:
        db.session.rollback()
        return _outcome(subscription_id, SKIPPED, reason='subscription changed concurrently')

    notification = notify_no_payment_method(subscription, commit=False)
    db.session.commit()
    logger.warning("Suspended subscription %s: no payment method available", subscription_id)
    _send_outcome_email(subscription, notification)
    return _outcome(subscription_id, SUSPENDED, reason='no payment method available')


def charge_subscription(subscription, method, now=None, gateway=None):
    """
    Charge one billing period against a stored instrument and apply the result.

    Shared by the renewal cycle and the manual renew endpoint. Active
    subscriptions are extended from their previous period end; lapsed ones
    (Expired/Suspended) start a new period from now.
    """
    gateway = gateway or default_gateway
    now = now or datetime.utcnow()
    subscription_id = subscription.id
    user_id = subscription.user_id
    previous_status = subscription.status
    previous_end = subscription.current_period_end

    if previous_status is SubscriptionStatus.ACTIVE and previous_end is not None:
        new_end = next_period_end(previous_end)
    else:
        new_end = next_period_end(now)

    if not _claim(subscription_id, previous_status, previous_end, {
        Subscription.current_period_end: new_end,
        Subscription.updated_at: now,
    }):
        db.session.rollback()
        logger.info("Subscription %s already handled by another renewal; skipping", subscription_id)
        return _outcome(subscription_id, SKIPPED, reason='subscription changed concurrently')

    parent = latest_payment(subscription_id)
    payment = Payment(
        user_id=user_id,
        subscription_id=subscription_id,
        amount=subscription.price,
        currency=subscription.currency,
        status=PaymentStatus.PENDING,
        payment_method=method.payment_method,
        merchant_transaction_id=generate_merchant_transaction_id('RENEWAL'),
        is_recurring=True,
        parent_payment_id=parent.id if parent else None
    )
    db.session.add(payment)
    charge_args = (
        method.gateway_registration_token,
        payment.amount,
        payment.merchant_transaction_id,
        user_id,
        payment.currency,
    )
    db.session.commit()

    reason = None
    try:
        response = gateway.charge_registration(*charge_args)
        code = result_code(response)
        charge_status = classify_result_code(code)
        if response.get('id'):
            payment.peach_payment_id = response['id']
        if charge_status is not PaymentStatus.COMPLETED:
            reason = result_description(response) or f"charge declined ({code or 'no result code'})"
    except GatewayError as e:
        charge_status = PaymentStatus.FAILED
        reason = str(e)
    except Exception as e:
        db.session.rollback()
        logger.error("Unexpected error charging subscription %s", subscription_id, exc_info=True)
        charge_status = PaymentStatus.FAILED
        reason = f"processing error ({e.__class__.__name__})"

    if charge_status is PaymentStatus.COMPLETED:
        try:
            payment.mark(PaymentStatus.COMPLETED)
            Subscription.query.filter_by(id=subscription_id, current_period_end=new_end).update({
                Subscription.status: SubscriptionStatus.ACTIVE,
                Subscription.started_at: db.func.coalesce(Subscription.started_at, now),
                Subscription.updated_at: now,
            }, synchronize_session=False)
            notification = notify_renewal_succeeded(subscription, commit=False)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error("Could not record renewal success for subscription %s", subscription_id, exc_info=True)
            reason = f"processing error ({e.__class__.__name__})"
        else:
            logger.info("Renewal succeeded for subscription %s (payment %s)", subscription_id, payment.id)
            _send_outcome_email(subscription, notification)
            return _outcome(subscription_id, RENEWED, payment_id=payment.id)

    return _fail_charge(subscription, payment, previous_end, new_end, reason, now)


def _fail_charge(subscription, payment, previous_end, new_end, reason, now):
    """Failed charge: payment Failed, subscription Expired with the claimed period handed back."""
    subscription_id = subscription.id
    payment.mark(PaymentStatus.FAILED, failure_reason=reason)
    Subscription.query.filter_by(id=subscription_id, current_period_end=new_end).update({
        Subscription.status: SubscriptionStatus.EXPIRED,
        Subscription.current_period_end: previous_end,
        Subscription.updated_at: now,
    }, synchronize_session=False)
    notification = notify_renewal_failed(subscription, reason, commit=False)
    db.session.commit()
    logger.warning("Renewal failed for subscription %s: %s", subscription_id, reason)
    _send_outcome_email(subscription, notification)
    return _outcome(subscription_id, FAILED, payment_id=payment.id, reason=reason)


def process_due_subscription(subscription_id, now, gateway=None):
    """Re-read one selected subscription and renew it if it is still due."""
    subscription = db.session.get(Subscription, subscription_id, populate_existing=True)
    if (subscription is None
            or subscription.status is not SubscriptionStatus.ACTIVE
            or subscription.current_period_end is None
            or subscription.current_period_end > now):
        return _outcome(subscription_id, SKIPPED, reason='no longer due')

    method = get_chargeable_default(subscription.user_id)
    if method is None:
        return suspend_for_missing_method(subscription, now=now)
    return charge_subscription(subscription, method, now=now, gateway=gateway)


def _record_processing_error(subscription_id, error):
    """Surface an unexpected per-subscription failure to the user where the store still allows it."""
    try:
        subscription = db.session.get(Subscription, subscription_id)
        if subscription is None:
            return
        notify_renewal_failed(subscription, f"processing error ({error.__class__.__name__})",
                              expired=False, commit=False)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.error("Could not record renewal failure for subscription %s", subscription_id, exc_info=True)


def run_renewal_cycle(now=None, gateway=None):
    """
    Run one renewal pass. A failure selecting due subscriptions propagates
    (the whole cycle aborts); failures processing one subscription are
    isolated and never stop the scan. Returns per-result counts.
    """
    now = now or datetime.utcnow()
    logger.info("Running renewal cycle at %s", now.isoformat())
    due_ids = find_due_subscriptions(now)

    summary = {RENEWED: 0, FAILED: 0, SUSPENDED: 0, SKIPPED: 0, ERROR: 0}
    for subscription_id in due_ids:
        try:
            outcome = process_due_subscription(subscription_id, now, gateway=gateway)
        except Exception as e:
            db.session.rollback()
            logger.error("Renewal of subscription %s failed: %s", subscription_id, e, exc_info=True)
            _record_processing_error(subscription_id, e)
            outcome = _outcome(subscription_id, ERROR, reason=str(e))
        summary[outcome['result']] += 1

    logger.info("Renewal cycle finished: %s due, %s", len(due_ids), summary)
    return summary


def renew_now(subscription, payment_method_id=None, now=None, gateway=None):
    """
    Manual renew: same charge-and-transition path as the cycle for one subscription.
    Raises RenewalError when the subscription or instrument cannot be charged.
    """
    if subscription.status not in RENEWABLE_STATUSES:
        raise RenewalError(f"Cannot renew a {subscription.status.value} subscription")

    if payment_method_id is not None:
        method = PaymentMethodDetail.query.filter_by(id=payment_method_id, user_id=subscription.user_id).first()
        if method is None:
            raise RenewalError("Payment method not found")
        if not method.can_charge:
            raise RenewalError("Payment method does not support recurring payments")
    else:
        method = get_chargeable_default(subscription.user_id)
        if method is None:
            raise RenewalError("No payment method available for renewal")

    return charge_subscription(subscription, method, now=now, gateway=gateway)
