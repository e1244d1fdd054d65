"""
Stored payment method helpers.
A user has at most one default method; removal only deactivates.
"""
from datetime import datetime

from models import db
from models.payment_method_detail import PaymentMethodDetail


def active_payment_methods(user_id):
    return PaymentMethodDetail.query.filter_by(
        user_id=user_id,
        is_active=True
    ).order_by(PaymentMethodDetail.is_default.desc(), PaymentMethodDetail.created_at.desc()).all()


def get_chargeable_default(user_id):
    """Default, active method with a non-empty registration token, or None."""
    method = PaymentMethodDetail.query.filter_by(
        user_id=user_id,
        is_default=True,
        is_active=True
    ).order_by(PaymentMethodDetail.updated_at.desc()).first()
    if method and method.can_charge:
        return method
    return None


def _clear_default(user_id, keep_id=None):
    query = PaymentMethodDetail.query.filter_by(user_id=user_id, is_default=True)
    if keep_id is not None:
        query = query.filter(PaymentMethodDetail.id != keep_id)
    for other in query.all():
        other.is_default = False
        other.updated_at = datetime.utcnow()


def set_default_payment_method(method):
    """Make method the user's only default. Caller commits."""
    if not method.is_active:
        raise ValueError("Payment method is not active")
    _clear_default(method.user_id, keep_id=method.id)
    method.is_default = True
    method.updated_at = datetime.utcnow()
    return method


def store_payment_method(user_id, fields, set_as_default=True):
    """
    Persist an instrument extracted from gateway payment details.
    The same registration token is never stored twice for a user; an
    existing row is reactivated instead. Caller commits.
    """
    token = fields.get('gateway_registration_token')
    method = None
    if token:
        method = PaymentMethodDetail.query.filter_by(
            user_id=user_id,
            gateway_registration_token=token
        ).first()

    if method is None:
        method = PaymentMethodDetail(user_id=user_id, **fields)
        db.session.add(method)
    else:
        for key, value in fields.items():
            if value is not None:
                setattr(method, key, value)
        method.is_active = True
    db.session.flush()

    has_default = PaymentMethodDetail.query.filter(
        PaymentMethodDetail.user_id == user_id,
        PaymentMethodDetail.is_default.is_(True),
        PaymentMethodDetail.is_active.is_(True),
        PaymentMethodDetail.id != method.id
    ).count() > 0
    if set_as_default or not has_default:
        set_default_payment_method(method)
    return method


def deactivate_payment_method(method):
    """Soft delete: keep the row for audit history. Caller commits."""
    method.is_active = False
    method.is_default = False
    method.updated_at = datetime.utcnow()
    return method
