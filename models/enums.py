"""
Closed status enumerations shared by the models and the API.
Values are the string tokens used on the wire and in the database.
"""
import enum

from sqlalchemy import Enum


class SubscriptionStatus(str, enum.Enum):
    PENDING = 'Pending'
    ACTIVE = 'Active'
    EXPIRED = 'Expired'
    CANCELLED = 'Cancelled'
    SUSPENDED = 'Suspended'


class PaymentStatus(str, enum.Enum):
    PENDING = 'Pending'
    COMPLETED = 'Completed'
    FAILED = 'Failed'
    CANCELLED = 'Cancelled'

    @property
    def is_terminal(self):
        return self is not PaymentStatus.PENDING


class PaymentMethod(str, enum.Enum):
    CARD = 'CARD'
    EFT = 'EFT'
    VOUCHER = '1VOUCHER'
    SCAN_TO_PAY = 'SCAN_TO_PAY'

    @property
    def supports_registration(self):
        """Vouchers are single-use and never yield a reusable registration token."""
        return self is not PaymentMethod.VOUCHER

    @classmethod
    def parse(cls, value, default=None):
        """Accept the wire token or the member name (case-insensitive)."""
        if value is None or value == '':
            return default
        if isinstance(value, cls):
            return value
        text = str(value).strip().upper()
        for member in cls:
            if text in (member.value, member.name):
                return member
        if text == 'VOUCHER':
            return cls.VOUCHER
        raise ValueError(f"Unsupported payment method: {value}")


class NotificationKind(str, enum.Enum):
    RENEWAL_SUCCEEDED = 'renewal_succeeded'
    RENEWAL_FAILED = 'renewal_failed'
    NO_PAYMENT_METHOD = 'no_payment_method'
    SUBSCRIPTION_ACTIVATED = 'subscription_activated'
    SUBSCRIPTION_CANCELLED = 'subscription_cancelled'
    TEST = 'test'


def enum_column(enum_cls, length=20):
    """Column type that stores the enum's value token rather than its member name."""
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        validate_strings=True,
        length=length,
    )
