"""
Subscription routes
"""
from datetime import datetime
from decimal import Decimal, InvalidOperation

from flask import Blueprint, jsonify, request, current_app
from models import db
from models.enums import SubscriptionStatus
from models.subscription import Subscription
from models.user import User
from utils.notifications import notify_subscription_cancelled
from utils.payment_status_helper import activate_subscription, get_subscription_payment_status
from utils.renewal import RenewalError, renew_now

subscriptions_bp = Blueprint('subscriptions', __name__, url_prefix='/api/v1/subscriptions')

def _subscription_payload(subscription):
    data = subscription.to_dict()
    data['payment_status'] = get_subscription_payment_status(subscription)
    return data

@subscriptions_bp.route('/create', methods=['POST'])
def create_subscription():
    """Create a Pending subscription; it becomes Active after the first completed payment"""
    data = request.get_json(silent=True) or {}
    user_id = data.get('user_id')
    plan_name = (data.get('plan_name') or '').strip()

    if not isinstance(user_id, int) or not plan_name:
        return jsonify({'success': False, 'message': 'user_id and plan_name are required'}), 400
    try:
        price = Decimal(str(data.get('price')))
    except (InvalidOperation, ValueError):
        return jsonify({'success': False, 'message': 'price must be a number'}), 400
    if not price.is_finite() or price <= 0:
        return jsonify({'success': False, 'message': 'price must be greater than 0'}), 400

    if not db.session.get(User, user_id):
        return jsonify({'success': False, 'message': 'User not found'}), 404

    subscription = Subscription(
        user_id=user_id,
        plan_name=plan_name,
        price=price.quantize(Decimal('0.01')),
        currency=current_app.config.get('PAYMENT_CURRENCY', 'ZAR'),
        status=SubscriptionStatus.PENDING
    )
    db.session.add(subscription)
    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to create subscription: {str(e)}", exc_info=True)
        return jsonify({'success': False, 'message': 'Failed to create subscription'}), 500

    return jsonify({'success': True, 'subscription': _subscription_payload(subscription)}), 201

@subscriptions_bp.route('/<int:subscription_id>')
def get_subscription(subscription_id):
    subscription = db.session.get(Subscription, subscription_id)
    if not subscription:
        return jsonify({'success': False, 'message': 'Subscription not found'}), 404
    return jsonify({'success': True, 'subscription': _subscription_payload(subscription)})

@subscriptions_bp.route('/user/<int:user_id>')
def get_user_subscriptions(user_id):
    subscriptions = Subscription.query.filter_by(user_id=user_id).order_by(
        Subscription.created_at.desc()
    ).all()
    return jsonify({
        'success': True,
        'subscriptions': [_subscription_payload(s) for s in subscriptions]
    })

@subscriptions_bp.route('/activate', methods=['POST'])
def activate():
    """Activate a subscription whose latest payment is already Completed"""
    data = request.get_json(silent=True) or {}
    subscription = db.session.get(Subscription, data.get('subscription_id')) if data.get('subscription_id') else None
    if not subscription:
        return jsonify({'success': False, 'message': 'Subscription not found'}), 404

    try:
        activate_subscription(subscription)
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': f"Error activating subscription: {e}"}), 400

    return jsonify({'success': True, 'message': 'Subscription activated',
                    'subscription': _subscription_payload(subscription)})

@subscriptions_bp.route('/<int:subscription_id>/renew', methods=['POST'])
def renew(subscription_id):
    """Charge the next period now using the default (or a chosen) stored payment method"""
    subscription = db.session.get(Subscription, subscription_id)
    if not subscription:
        return jsonify({'success': False, 'message': 'Subscription not found'}), 404

    data = request.get_json(silent=True) or {}
    payment_method_id = data.get('payment_method_detail_id')
    if payment_method_id is not None and not isinstance(payment_method_id, int):
        return jsonify({'success': False, 'message': 'payment_method_detail_id must be an integer'}), 400

    try:
        outcome = renew_now(subscription, payment_method_id=payment_method_id)
    except RenewalError as e:
        return jsonify({'success': False, 'message': str(e)}), 400
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Manual renewal of subscription {subscription_id} failed: {str(e)}", exc_info=True)
        return jsonify({'success': False, 'message': 'Renewal could not be processed'}), 500

    if outcome['result'] == 'skipped':
        return jsonify({'success': False, 'message': 'Subscription is already being renewed',
                        'subscription': _subscription_payload(subscription)}), 409

    renewed = outcome['result'] == 'renewed'
    return jsonify({
        'success': renewed,
        'outcome': outcome,
        'subscription': _subscription_payload(subscription)
    }), 200 if renewed else 402

@subscriptions_bp.route('/<int:subscription_id>/cancel', methods=['POST'])
def cancel(subscription_id):
    subscription = db.session.get(Subscription, subscription_id)
    if not subscription:
        return jsonify({'success': False, 'message': 'Subscription not found'}), 404
    if subscription.status is SubscriptionStatus.CANCELLED:
        return jsonify({'success': True, 'message': 'Subscription already cancelled',
                        'subscription': _subscription_payload(subscription)})

    subscription.status = SubscriptionStatus.CANCELLED
    subscription.updated_at = datetime.utcnow()
    notify_subscription_cancelled(subscription, commit=False)
    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': str(e)}), 500

    return jsonify({'success': True, 'message': 'Subscription cancelled',
                    'subscription': _subscription_payload(subscription)})
