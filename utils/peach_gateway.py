"""
Peach Payments gateway client.

Wraps the remote payment processor: OAuth authentication, hosted checkout
creation, checkout status, recurring charges against a stored registration
token, payment detail lookup and webhook signature validation.
"""
import hashlib
import hmac
import logging
import threading
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from models.enums import PaymentMethod, PaymentStatus

logger = logging.getLogger(__name__)

SUCCESS_CODE_PREFIXES = ("000.000", "000.100")
PENDING_CODE_PREFIXES = ("000.200",)
CANCELLED_BY_USER_CODE = "100.396.104"

# Gateway brand -> stored payment method kind
BRAND_METHODS = {
    "EFT": PaymentMethod.EFT,
    "1VOUCHER": PaymentMethod.VOUCHER,
    "SCAN_TO_PAY": PaymentMethod.SCAN_TO_PAY,
}


class GatewayError(Exception):
    """Transport, timeout or non-2xx failure talking to the gateway."""


def generate_merchant_transaction_id(prefix="TXN"):
    """Generate unique merchant transaction id (correlation key sent to the gateway)"""
    return f"{prefix}_{uuid.uuid4().hex}"


def classify_result_code(code: Optional[str]) -> PaymentStatus:
    """Map a gateway result code onto a payment status."""
    code = (code or "").strip()
    if code.startswith(SUCCESS_CODE_PREFIXES):
        return PaymentStatus.COMPLETED
    if code.startswith(PENDING_CODE_PREFIXES):
        return PaymentStatus.PENDING
    if code == CANCELLED_BY_USER_CODE:
        return PaymentStatus.CANCELLED
    return PaymentStatus.FAILED


def result_code(response: Dict[str, Any]) -> str:
    """Extract result.code from a JSON response or a flattened webhook form."""
    result = response.get("result")
    if isinstance(result, dict) and result.get("code"):
        return result["code"]
    return response.get("result.code", "") or ""


def result_description(response: Dict[str, Any]) -> str:
    result = response.get("result")
    if isinstance(result, dict):
        return result.get("description", "") or ""
    return response.get("result.description", "") or ""


def signature_payload(params: Dict[str, str]) -> str:
    """Alphabetically sorted key+value pairs, no separators, signature excluded."""
    return "".join(f"{key}{value}" for key, value in sorted(params.items()) if key != "signature")


def extract_payment_method_detail(details: Dict[str, Any]) -> Dict[str, Any]:
    """
    Pull reusable instrument fields out of a payment details response.

    Returns a dict of PaymentMethodDetail column values. The registration
    token is None when the gateway did not register the instrument.
    """
    def _field(group, name):
        # JSON responses nest groups; webhook forms flatten them as "group.name"
        nested = details.get(group)
        if isinstance(nested, dict) and nested.get(name) is not None:
            return nested[name]
        return details.get(f"{group}.{name}")

    def _int(value):
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    brand = (details.get("paymentBrand") or "").upper()
    return {
        "payment_method": BRAND_METHODS.get(brand, PaymentMethod.CARD),
        "gateway_registration_token": details.get("registrationId") or None,
        "masked_card_last_four": _field("card", "last4Digits"),
        "card_brand": brand or None,
        "card_holder": _field("card", "holder"),
        "expiry_month": _int(_field("card", "expiryMonth")),
        "expiry_year": _int(_field("card", "expiryYear")),
        "bank_name": _field("bankAccount", "bankName"),
    }


class PeachGateway:
    """Flask extension holding the gateway settings and an httpx client."""

    TOKEN_REFRESH_MARGIN = timedelta(minutes=5)

    def __init__(self, app=None):
        self.config: Dict[str, Any] = {}
        self._client: Optional[httpx.Client] = None
        self._token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None
        self._token_lock = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.config = {
            "auth_service_url": app.config.get("PEACH_AUTH_SERVICE_URL", "").rstrip("/"),
            "checkout_endpoint": app.config.get("PEACH_CHECKOUT_ENDPOINT", "").rstrip("/"),
            "status_endpoint": app.config.get("PEACH_STATUS_ENDPOINT", "").rstrip("/"),
            "client_id": app.config.get("PEACH_CLIENT_ID"),
            "client_secret": app.config.get("PEACH_CLIENT_SECRET"),
            "merchant_id": app.config.get("PEACH_MERCHANT_ID"),
            "entity_id": app.config.get("PEACH_ENTITY_ID"),
            "webhook_secret": app.config.get("PEACH_WEBHOOK_SECRET") or "",
            "notification_url": app.config.get("PEACH_NOTIFICATION_URL", ""),
            "shopper_result_url": app.config.get("PEACH_SHOPPER_RESULT_URL", ""),
            "origin_domain": app.config.get("PEACH_ORIGIN_DOMAIN", ""),
            "checkout_script_url": app.config.get("PEACH_CHECKOUT_SCRIPT_URL", ""),
            "currency": app.config.get("PAYMENT_CURRENCY", "ZAR"),
        }
        if self._client is not None:
            self._client.close()
        self._client = httpx.Client(timeout=app.config.get("GATEWAY_TIMEOUT_SECONDS", 30))
        self._token = None
        self._token_expires_at = None
        app.extensions["peach_gateway"] = self

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            raise RuntimeError("Peach gateway not initialized. Call init_app() first.")
        return self._client

    def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise GatewayError(f"Gateway timeout: {e}") from e
        except httpx.HTTPError as e:
            raise GatewayError(f"Gateway unreachable: {e}") from e

        if response.status_code >= 400:
            raise GatewayError(f"Gateway error {response.status_code}: {response.text}")
        try:
            body = response.json()
        except ValueError as e:
            raise GatewayError(f"Gateway returned invalid JSON: {response.text[:200]}") from e
        if not isinstance(body, dict):
            raise GatewayError(f"Gateway returned unexpected JSON: {response.text[:200]}")
        return body

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.authenticate()}",
            "Origin": self.config["origin_domain"],
            "Content-Type": "application/json",
        }

    def authenticate(self) -> str:
        """Return a cached OAuth access token, requesting a new one near expiry."""
        with self._token_lock:
            now = datetime.utcnow()
            if self._token and self._token_expires_at and self._token_expires_at > now + self.TOKEN_REFRESH_MARGIN:
                return self._token

            logger.info("Requesting new Peach access token")
            body = self._request(
                "POST",
                f"{self.config['auth_service_url']}/api/oauth/token",
                json={
                    "clientId": self.config["client_id"],
                    "clientSecret": self.config["client_secret"],
                    "merchantId": self.config["merchant_id"],
                },
            )
            token = body.get("access_token")
            if not token:
                raise GatewayError("No access_token in authentication response")

            try:
                expires_in = int(body.get("expires_in") or 3600)
            except (TypeError, ValueError) as e:
                raise GatewayError(f"Invalid expires_in in authentication response: {body.get('expires_in')!r}") from e

            self._token = token
            self._token_expires_at = now + timedelta(seconds=expires_in)
            return token

    def create_checkout(self, payment, payment_method: PaymentMethod, enable_recurring: bool = False) -> Dict[str, Any]:
        """Create a hosted checkout for an initial (non-recurring) payment."""
        payload: Dict[str, Any] = {
            "entityId": self.config["entity_id"],
            "amount": f"{Decimal(payment.amount):.2f}",
            "currency": payment.currency or self.config["currency"],
            "paymentType": "DB",
            "merchantTransactionId": payment.merchant_transaction_id,
            "nonce": str(uuid.uuid4()),
            "notificationUrl": self.config["notification_url"],
            "shopperResultUrl": self.config["shopper_result_url"],
            "customParameters": {
                "user_id": str(payment.user_id),
                "subscription_id": str(payment.subscription_id or ""),
            },
        }
        if payment_method is PaymentMethod.CARD:
            if enable_recurring:
                payload["createRegistration"] = True
        else:
            payload["paymentBrand"] = payment_method.value

        logger.info("Creating checkout for %s", payment.merchant_transaction_id)
        body = self._request(
            "POST",
            f"{self.config['checkout_endpoint']}/v2/checkout",
            headers=self._auth_headers(),
            json=payload,
        )
        checkout_id = body.get("checkoutId")
        if not checkout_id:
            raise GatewayError(f"Checkout response missing checkoutId: {body}")

        return {
            "checkout_id": checkout_id,
            "checkout_url": f"{self.config['checkout_endpoint']}/v2/checkout/{checkout_id}",
            "embed_config": {
                "entity_id": self.config["entity_id"],
                "checkout_id": checkout_id,
                "script_url": self.config["checkout_script_url"],
            },
        }

    def get_checkout_status(self, checkout_id: str) -> Dict[str, Any]:
        logger.info("Checking checkout status for %s", checkout_id)
        return self._request(
            "GET",
            f"{self.config['status_endpoint']}/v2/checkout/{checkout_id}/status",
            headers={"Accept": "application/json"},
        )

    def charge_registration(self, registration_id: str, amount, merchant_transaction_id: str,
                            user_id, currency: Optional[str] = None) -> Dict[str, Any]:
        """Debit a stored instrument. Returns the raw gateway response; raises GatewayError on transport failure."""
        payload = {
            "entityId": self.config["entity_id"],
            "amount": f"{Decimal(amount):.2f}",
            "currency": currency or self.config["currency"],
            "paymentType": "DB",
            "merchantTransactionId": merchant_transaction_id,
            "nonce": str(uuid.uuid4()),
            "registrationId": registration_id,
            "customer": {"merchantCustomerId": str(user_id)},
            "notificationUrl": self.config["notification_url"],
            "customParameters": {"paymentType": "recurring"},
        }
        logger.info("Processing recurring payment %s", merchant_transaction_id)
        return self._request(
            "POST",
            f"{self.config['checkout_endpoint']}/v2/payments",
            headers=self._auth_headers(),
            json=payload,
        )

    def get_payment_details(self, peach_payment_id: str) -> Dict[str, Any]:
        return self._request(
            "GET",
            f"{self.config['checkout_endpoint']}/v1/payments/{peach_payment_id}",
            headers={"Authorization": f"Bearer {self.authenticate()}", "Accept": "application/json"},
        )

    def validate_webhook_signature(self, params: Dict[str, str], signature: str) -> bool:
        secret = self.config.get("webhook_secret") or ""
        if not secret or not signature:
            return False
        expected = hmac.new(
            secret.encode("utf-8"),
            signature_payload(params).encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, signature)


gateway = PeachGateway()
