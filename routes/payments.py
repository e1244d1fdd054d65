"""
Payment routes: hosted checkout, gateway callbacks and stored payment methods
"""
from decimal import Decimal, InvalidOperation
from urllib.parse import urlencode

from flask import Blueprint, jsonify, request, redirect, current_app
from models import db
from models.enums import PaymentMethod, PaymentStatus, SubscriptionStatus
from models.payment import Payment
from models.payment_method_detail import PaymentMethodDetail
from models.subscription import Subscription
from models.user import User
from utils.payment_methods import (
    active_payment_methods,
    deactivate_payment_method,
    set_default_payment_method,
    store_payment_method,
)
from utils.payment_status_helper import record_gateway_result
from utils.peach_gateway import (
    GatewayError,
    extract_payment_method_detail,
    gateway,
    generate_merchant_transaction_id,
    result_code,
)

payments_bp = Blueprint('payments', __name__, url_prefix='/api/v1/payments')

@payments_bp.route('/initiate', methods=['POST'])
def initiate_payment():
    """Create a Pending payment and a hosted checkout for a Pending subscription"""
    data = request.get_json(silent=True) or {}
    user_id = data.get('user_id')
    subscription_id = data.get('subscription_id')
    if not isinstance(user_id, int) or not isinstance(subscription_id, int):
        return jsonify({'success': False, 'message': 'user_id and subscription_id are required'}), 400

    try:
        payment_method = PaymentMethod.parse(data.get('payment_method'), default=PaymentMethod.CARD)
    except ValueError as e:
        return jsonify({'success': False, 'message': str(e)}), 400

    subscription = db.session.get(Subscription, subscription_id)
    if not subscription or subscription.user_id != user_id:
        return jsonify({'success': False, 'message': 'Subscription not found'}), 404
    if subscription.status is not SubscriptionStatus.PENDING:
        return jsonify({'success': False, 'message': 'Subscription is not pending'}), 400

    amount = subscription.price
    if data.get('amount') is not None:
        try:
            requested = Decimal(str(data['amount']))
        except (InvalidOperation, ValueError):
            return jsonify({'success': False, 'message': 'amount must be a number'}), 400
        if requested != amount:
            return jsonify({'success': False, 'message': 'amount does not match the subscription price'}), 400

    payment = Payment(
        user_id=user_id,
        subscription_id=subscription.id,
        amount=amount,
        currency=subscription.currency,
        status=PaymentStatus.PENDING,
        payment_method=payment_method,
        merchant_transaction_id=generate_merchant_transaction_id(),
        is_recurring=False
    )
    db.session.add(payment)
    db.session.commit()

    enable_recurring = bool(data.get('enable_recurring', True)) and payment_method.supports_registration
    try:
        checkout = gateway.create_checkout(payment, payment_method, enable_recurring=enable_recurring)
    except GatewayError as e:
        payment.mark(PaymentStatus.FAILED, failure_reason=str(e))
        db.session.commit()
        current_app.logger.error(f"Checkout initiation failed for {payment.merchant_transaction_id}: {str(e)}")
        return jsonify({'success': False, 'message': 'Failed to initiate payment with the gateway',
                        'details': str(e)}), 502

    payment.checkout_id = checkout['checkout_id']
    db.session.commit()

    return jsonify({
        'success': True,
        'payment_id': payment.id,
        'merchantTransactionId': payment.merchant_transaction_id,
        'checkoutId': checkout['checkout_id'],
        'checkout_url': checkout['checkout_url'],
        'embed_config': checkout['embed_config'],
    })

@payments_bp.route('/status/<merchant_transaction_id>')
def check_payment_status(merchant_transaction_id):
    """Poll the gateway for a checkout result and apply it"""
    payment = Payment.query.filter_by(merchant_transaction_id=merchant_transaction_id).first()
    if not payment:
        return jsonify({'success': False, 'message': 'Payment not found'}), 404
    if not payment.checkout_id:
        return jsonify({'success': True, 'message': 'No checkout ID available', 'payment': payment.to_dict()})

    try:
        response = gateway.get_checkout_status(payment.checkout_id)
    except GatewayError as e:
        return jsonify({'success': False, 'message': 'Error checking payment status', 'details': str(e)}), 502

    try:
        status = record_gateway_result(payment, response, gateway)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to apply status for {merchant_transaction_id}: {str(e)}", exc_info=True)
        return jsonify({'success': False, 'message': 'Failed to update payment'}), 500

    return jsonify({
        'success': True,
        'updated_status': status.value,
        'result_code': result_code(response),
        'payment': payment.to_dict()
    })

@payments_bp.route('/callback', methods=['GET'])
def payment_return():
    """Shopper browser return from the hosted checkout"""
    resource_path = request.args.get('resourcePath', '')
    parts = [p for p in resource_path.strip('/').split('/') if p]
    checkout_id = parts[1] if len(parts) >= 2 and parts[0] == 'checkouts' else request.args.get('id')
    if not checkout_id:
        return jsonify({'success': False, 'message': 'Invalid or missing resource path'}), 400

    result_page = current_app.config.get('PAYMENT_RESULT_PAGE', '/payment-result.html')
    payment = Payment.query.filter_by(checkout_id=checkout_id).first()
    try:
        response = gateway.get_checkout_status(checkout_id)
        status = PaymentStatus.PENDING
        if payment:
            status = record_gateway_result(payment, response, gateway)
    except GatewayError as e:
        current_app.logger.error(f"Error processing checkout return for {checkout_id}: {str(e)}")
        return redirect(f"{result_page}?{urlencode({'status': 'error'})}")
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to apply checkout return for {checkout_id}: {str(e)}", exc_info=True)
        return redirect(f"{result_page}?{urlencode({'status': 'error'})}")

    outcome = 'success' if status is PaymentStatus.COMPLETED else ('pending' if status is PaymentStatus.PENDING else 'failure')
    query = {
        'id': payment.merchant_transaction_id if payment else response.get('merchantTransactionId', 'unknown'),
        'status': outcome,
    }
    return redirect(f"{result_page}?{urlencode(query)}")

@payments_bp.route('/callback', methods=['POST'])
def payment_webhook():
    """Signed server-to-server notification from the gateway (form encoded)"""
    params = request.form.to_dict()
    signature = params.get('signature', '')
    if not signature:
        current_app.logger.warning("Webhook rejected: no signature provided")
        return jsonify({'success': False, 'message': 'Missing signature'}), 400
    if not gateway.validate_webhook_signature(params, signature):
        current_app.logger.warning("Webhook rejected: signature validation failed")
        return jsonify({'success': False, 'message': 'Invalid signature'}), 401

    merchant_transaction_id = params.get('merchantTransactionId', '')
    payment = Payment.query.filter_by(merchant_transaction_id=merchant_transaction_id).first()
    if not payment:
        current_app.logger.warning(f"Webhook for unknown merchantTransactionId: {merchant_transaction_id}")
        return jsonify({'success': True, 'message': 'Webhook received'})

    try:
        status = record_gateway_result(payment, params, gateway)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to apply webhook for {merchant_transaction_id}: {str(e)}", exc_info=True)
        return jsonify({'success': False, 'message': 'Failed to process webhook'}), 500

    current_app.logger.info(f"Webhook {params.get('result.code')} applied to {merchant_transaction_id}: {status.value}")
    return jsonify({'success': True, 'message': 'Webhook received', 'status': status.value})

@payments_bp.route('/user/<int:user_id>')
def get_user_payments(user_id):
    payments = Payment.query.filter_by(user_id=user_id).order_by(Payment.created_at.desc()).all()
    return jsonify({'success': True, 'payments': [p.to_dict() for p in payments]})

@payments_bp.route('/payment-methods/<int:user_id>')
def get_user_payment_methods(user_id):
    methods = active_payment_methods(user_id)
    return jsonify({
        'success': True,
        'payment_methods': [m.to_dict() for m in methods],
        'count': len(methods)
    })

@payments_bp.route('/payment-methods/store', methods=['POST'])
def store_method():
    """Store the instrument used by a completed payment for future recurring charges"""
    data = request.get_json(silent=True) or {}
    payment_id = data.get('payment_id')
    payment = db.session.get(Payment, payment_id) if isinstance(payment_id, int) else None
    if not payment:
        return jsonify({'success': False, 'message': 'Payment not found'}), 404
    if payment.status is not PaymentStatus.COMPLETED:
        return jsonify({'success': False, 'message': 'Payment is not completed'}), 400
    if not payment.payment_method.supports_registration:
        return jsonify({'success': False, 'message': 'Voucher payments cannot be stored for recurring use'}), 400

    try:
        if payment.peach_payment_id:
            details = gateway.get_payment_details(payment.peach_payment_id)
        elif payment.checkout_id:
            details = gateway.get_checkout_status(payment.checkout_id)
        else:
            return jsonify({'success': False,
                            'message': 'No payment details available to extract payment method'}), 400
    except GatewayError as e:
        return jsonify({'success': False, 'message': 'Failed to retrieve payment details',
                        'details': str(e)}), 502

    fields = extract_payment_method_detail(details)
    if not fields.get('gateway_registration_token'):
        return jsonify({'success': False, 'message': 'Payment method does not support recurring payments'}), 400

    method = store_payment_method(payment.user_id, fields, set_as_default=bool(data.get('set_as_default', True)))
    db.session.commit()
    return jsonify({'success': True, 'message': 'Payment method stored successfully',
                    'payment_method': method.to_dict()}), 201

def _get_user_method(user_id, payment_method_id):
    if not db.session.get(User, user_id):
        return None
    return PaymentMethodDetail.query.filter_by(id=payment_method_id, user_id=user_id).first()

@payments_bp.route('/payment-methods/<int:user_id>/<int:payment_method_id>/default', methods=['POST'])
def make_default(user_id, payment_method_id):
    method = _get_user_method(user_id, payment_method_id)
    if not method:
        return jsonify({'success': False, 'message': 'Payment method not found'}), 404
    try:
        set_default_payment_method(method)
    except ValueError as e:
        return jsonify({'success': False, 'message': str(e)}), 400
    db.session.commit()
    return jsonify({'success': True, 'payment_method': method.to_dict()})

@payments_bp.route('/payment-methods/<int:user_id>/<int:payment_method_id>', methods=['DELETE'])
def deactivate_method(user_id, payment_method_id):
    method = _get_user_method(user_id, payment_method_id)
    if not method:
        return jsonify({'success': False, 'message': 'Payment method not found'}), 404
    deactivate_payment_method(method)
    db.session.commit()
    return jsonify({'success': True, 'message': 'Payment method deactivated successfully'})
