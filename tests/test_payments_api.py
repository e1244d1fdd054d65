import hashlib
import hmac

import pytest

from models.enums import NotificationKind, PaymentMethod, PaymentStatus, SubscriptionStatus
from models.notification import Notification
from models.payment import Payment
from models.payment_method_detail import PaymentMethodDetail
from models.subscription import Subscription
from utils.peach_gateway import GatewayError, gateway, signature_payload


def _signed(params, secret="whsec-test"):
    signature = hmac.new(secret.encode(), signature_payload(params).encode(), hashlib.sha256).hexdigest()
    return dict(params, signature=signature)


@pytest.fixture
def pending_subscription(make_user, make_subscription):
    return make_subscription(make_user(), status=SubscriptionStatus.PENDING)


@pytest.fixture
def checkout(mocker):
    return mocker.patch.object(gateway, "create_checkout", return_value={
        "checkout_id": "chk-1",
        "checkout_url": "https://testsecure.peachpayments.com/v2/checkout/chk-1",
        "embed_config": {"entity_id": "test-entity", "checkout_id": "chk-1", "script_url": ""},
    })


def test_initiate_creates_pending_payment(client, pending_subscription, checkout, reload):
    response = client.post('/api/v1/payments/initiate', json={
        'user_id': pending_subscription.user_id,
        'subscription_id': pending_subscription.id,
        'payment_method': 'card',
    })

    assert response.status_code == 200
    data = response.get_json()
    assert data['checkoutId'] == 'chk-1'
    assert data['merchantTransactionId'].startswith('TXN_')
    payment = reload(Payment, data['payment_id'])
    assert payment.status is PaymentStatus.PENDING
    assert payment.checkout_id == 'chk-1'
    assert payment.is_recurring is False
    assert checkout.call_args.kwargs['enable_recurring'] is True


def test_initiate_voucher_never_requests_registration(client, pending_subscription, checkout):
    response = client.post('/api/v1/payments/initiate', json={
        'user_id': pending_subscription.user_id,
        'subscription_id': pending_subscription.id,
        'payment_method': '1VOUCHER',
    })

    assert response.status_code == 200
    assert checkout.call_args.args[1] is PaymentMethod.VOUCHER
    assert checkout.call_args.kwargs['enable_recurring'] is False


def test_initiate_rejects_active_subscription(client, due_subscription, checkout):
    response = client.post('/api/v1/payments/initiate', json={
        'user_id': due_subscription.user_id,
        'subscription_id': due_subscription.id,
    })

    assert response.status_code == 400
    checkout.assert_not_called()


def test_initiate_rejects_unknown_payment_method(client, pending_subscription, checkout):
    response = client.post('/api/v1/payments/initiate', json={
        'user_id': pending_subscription.user_id,
        'subscription_id': pending_subscription.id,
        'payment_method': 'BITCOIN',
    })

    assert response.status_code == 400


def test_initiate_gateway_failure_returns_502(client, pending_subscription, mocker):
    mocker.patch.object(gateway, "create_checkout", side_effect=GatewayError("Gateway unreachable"))

    response = client.post('/api/v1/payments/initiate', json={
        'user_id': pending_subscription.user_id,
        'subscription_id': pending_subscription.id,
    })

    assert response.status_code == 502
    payment = Payment.query.filter_by(subscription_id=pending_subscription.id).one()
    assert payment.status is PaymentStatus.FAILED


def test_webhook_completes_payment_activates_subscription_and_stores_card(
        client, pending_subscription, make_payment, reload):
    payment = make_payment(pending_subscription, status=PaymentStatus.PENDING,
                           merchant_transaction_id='TXN_hook', checkout_id='chk-1')
    params = _signed({
        'id': '8ac7a4a2pay',
        'merchantTransactionId': 'TXN_hook',
        'paymentBrand': 'VISA',
        'registrationId': '8ac7a4a1reg',
        'card.last4Digits': '4242',
        'card.expiryMonth': '08',
        'card.expiryYear': '2030',
        'result.code': '000.000.000',
        'result.description': 'Transaction succeeded',
    })

    response = client.post('/api/v1/payments/callback', data=params)

    assert response.status_code == 200
    assert reload(Payment, payment.id).status is PaymentStatus.COMPLETED
    subscription = reload(Subscription, pending_subscription.id)
    assert subscription.status is SubscriptionStatus.ACTIVE
    assert subscription.current_period_end is not None
    method = PaymentMethodDetail.query.filter_by(user_id=subscription.user_id).one()
    assert method.gateway_registration_token == '8ac7a4a1reg'
    assert method.masked_card_last_four == '4242'
    assert method.is_default is True
    kinds = [n.kind for n in Notification.query.filter_by(subscription_id=subscription.id)]
    assert kinds == [NotificationKind.SUBSCRIPTION_ACTIVATED]


def test_webhook_completes_payment_when_storing_card_fails(
        client, pending_subscription, make_payment, mocker, reload):
    payment = make_payment(pending_subscription, status=PaymentStatus.PENDING, merchant_transaction_id='TXN_store')
    mocker.patch("utils.payment_status_helper.store_payment_method", side_effect=RuntimeError("disk full"))
    params = _signed({
        'merchantTransactionId': 'TXN_store',
        'paymentBrand': 'VISA',
        'registrationId': '8ac7a4a1reg',
        'result.code': '000.000.000',
    })

    response = client.post('/api/v1/payments/callback', data=params)

    assert response.status_code == 200
    assert response.get_json()['status'] == 'Completed'
    assert reload(Payment, payment.id).status is PaymentStatus.COMPLETED
    assert reload(Subscription, pending_subscription.id).status is SubscriptionStatus.ACTIVE
    assert PaymentMethodDetail.query.filter_by(user_id=pending_subscription.user_id).count() == 0


def test_webhook_replay_keeps_first_terminal_result(client, pending_subscription, make_payment, reload):
    payment = make_payment(pending_subscription, status=PaymentStatus.PENDING, merchant_transaction_id='TXN_dup')
    success = _signed({'merchantTransactionId': 'TXN_dup', 'result.code': '000.000.000', 'registrationId': 'r-1'})
    failure = _signed({'merchantTransactionId': 'TXN_dup', 'result.code': '800.100.151'})

    client.post('/api/v1/payments/callback', data=success)
    client.post('/api/v1/payments/callback', data=success)
    client.post('/api/v1/payments/callback', data=failure)

    assert reload(Payment, payment.id).status is PaymentStatus.COMPLETED
    assert Notification.query.filter_by(subscription_id=pending_subscription.id).count() == 1


def test_webhook_without_signature_is_rejected(client):
    response = client.post('/api/v1/payments/callback', data={'merchantTransactionId': 'TXN_x'})
    assert response.status_code == 400


def test_webhook_with_bad_signature_is_rejected(client, pending_subscription, make_payment, reload):
    payment = make_payment(pending_subscription, status=PaymentStatus.PENDING, merchant_transaction_id='TXN_bad')
    params = _signed({'merchantTransactionId': 'TXN_bad', 'result.code': '000.000.000'}, secret='wrong')

    response = client.post('/api/v1/payments/callback', data=params)

    assert response.status_code == 401
    assert reload(Payment, payment.id).status is PaymentStatus.PENDING


def test_webhook_for_unknown_payment_is_acknowledged(client):
    params = _signed({'merchantTransactionId': 'TXN_missing', 'result.code': '000.000.000'})
    response = client.post('/api/v1/payments/callback', data=params)
    assert response.status_code == 200


def test_status_poll_applies_declined_result(client, pending_subscription, make_payment, mocker, reload):
    payment = make_payment(pending_subscription, status=PaymentStatus.PENDING,
                           merchant_transaction_id='TXN_poll', checkout_id='chk-9')
    mocker.patch.object(gateway, "get_checkout_status", return_value={
        'id': 'pay-9', 'result': {'code': '800.100.151', 'description': 'transaction declined'}})

    response = client.get('/api/v1/payments/status/TXN_poll')

    assert response.status_code == 200
    assert response.get_json()['updated_status'] == 'Failed'
    payment = reload(Payment, payment.id)
    assert payment.status is PaymentStatus.FAILED
    assert payment.failure_reason == 'transaction declined'
    assert reload(Subscription, pending_subscription.id).status is SubscriptionStatus.PENDING


def test_browser_return_redirects_to_result_page(client, pending_subscription, make_payment, mocker):
    make_payment(pending_subscription, status=PaymentStatus.PENDING,
                 merchant_transaction_id='TXN_ret', checkout_id='chk-7')
    mocker.patch.object(gateway, "get_checkout_status", return_value={'result': {'code': '000.200.000'}})

    response = client.get('/api/v1/payments/callback?resourcePath=/checkouts/chk-7/payment')

    assert response.status_code == 302
    assert response.headers['Location'].startswith('/payment-result.html?')
    assert 'id=TXN_ret' in response.headers['Location']
    assert 'status=pending' in response.headers['Location']


def test_browser_return_redirects_with_error_when_applying_fails(
        client, pending_subscription, make_payment, mocker, reload):
    payment = make_payment(pending_subscription, status=PaymentStatus.PENDING,
                           merchant_transaction_id='TXN_err', checkout_id='chk-8')
    mocker.patch.object(gateway, "get_checkout_status", return_value={'result': {'code': '000.000.000'}})
    mocker.patch("routes.payments.record_gateway_result", side_effect=RuntimeError("database unavailable"))

    response = client.get('/api/v1/payments/callback?resourcePath=/checkouts/chk-8/payment')

    assert response.status_code == 302
    assert response.headers['Location'] == '/payment-result.html?status=error'
    assert reload(Payment, payment.id).status is PaymentStatus.PENDING


def test_store_payment_method_from_completed_payment(client, due_subscription, make_payment, mocker):
    payment = make_payment(due_subscription, checkout_id='chk-5')
    mocker.patch.object(gateway, "get_checkout_status", return_value={
        'paymentBrand': 'MASTER', 'registrationId': 'reg-55', 'card': {'last4Digits': '5555'}})

    response = client.post('/api/v1/payments/payment-methods/store',
                           json={'payment_id': payment.id, 'set_as_default': True})

    assert response.status_code == 201
    data = response.get_json()['payment_method']
    assert data['masked_card_last_four'] == '5555'
    assert data['is_default'] is True
    assert 'gateway_registration_token' not in data


def test_store_payment_method_rejects_voucher(client, due_subscription, make_payment):
    payment = make_payment(due_subscription, payment_method=PaymentMethod.VOUCHER)

    response = client.post('/api/v1/payments/payment-methods/store', json={'payment_id': payment.id})

    assert response.status_code == 400


def test_default_switch_and_deactivate(client, make_user, make_payment_method, reload):
    user = make_user()
    first = make_payment_method(user, token='reg-a')
    second = make_payment_method(user, token='reg-b', is_default=False)

    response = client.post(f'/api/v1/payments/payment-methods/{user.id}/{second.id}/default')
    assert response.status_code == 200
    assert reload(PaymentMethodDetail, first.id).is_default is False
    assert reload(PaymentMethodDetail, second.id).is_default is True

    response = client.delete(f'/api/v1/payments/payment-methods/{user.id}/{second.id}')
    assert response.status_code == 200
    listed = client.get(f'/api/v1/payments/payment-methods/{user.id}').get_json()
    assert [m['id'] for m in listed['payment_methods']] == [first.id]


def test_user_payments_listing(client, due_subscription, make_payment):
    make_payment(due_subscription)

    data = client.get(f'/api/v1/payments/user/{due_subscription.user_id}').get_json()

    assert len(data['payments']) == 1
    assert data['payments'][0]['status'] == 'Completed'
