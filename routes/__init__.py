"""
Routes package for the subscription billing service
"""
# Export blueprints for registration in app.py
from routes.public import public_bp
from routes.users import users_bp
from routes.subscriptions import subscriptions_bp
from routes.payments import payments_bp
from routes.notifications import notifications_bp

__all__ = [
    'public_bp',
    'users_bp',
    'subscriptions_bp',
    'payments_bp',
    'notifications_bp',
]
