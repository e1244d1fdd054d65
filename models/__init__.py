"""
Models package for the subscription billing application
"""
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# Import all models here to ensure they're registered
from models.enums import SubscriptionStatus, PaymentStatus, PaymentMethod, NotificationKind
from models.user import User
from models.subscription import Subscription
from models.payment import Payment
from models.payment_method_detail import PaymentMethodDetail
from models.notification import Notification

__all__ = [
    'db',
    'SubscriptionStatus',
    'PaymentStatus',
    'PaymentMethod',
    'NotificationKind',
    'User',
    'Subscription',
    'Payment',
    'PaymentMethodDetail',
    'Notification',
]
