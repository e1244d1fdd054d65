"""
User notification utility functions
"""
from models import db
from models.enums import NotificationKind
from models.notification import Notification
from flask import current_app

def create_notification(user_id, kind, message, subscription_id=None, commit=True):
    """
    Create a new user notification

    Args:
        user_id: Owner of the notification
        kind: NotificationKind
        message: Human readable message
        subscription_id: Optional related subscription
        commit: Commit immediately; pass False to join the caller's transaction

    Returns:
        Notification object, or None if a standalone commit failed
    """
    notification = Notification(
        user_id=user_id,
        subscription_id=subscription_id,
        kind=kind,
        message=message,
        acknowledged=False
    )
    db.session.add(notification)
    if not commit:
        return notification
    try:
        db.session.commit()
        return notification
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to create notification: {str(e)}", exc_info=True)
        return None

def notify_renewal_succeeded(subscription, commit=True):
    period_end = subscription.current_period_end.strftime('%Y-%m-%d') if subscription.current_period_end else 'N/A'
    message = f"Renewal succeeded: your {subscription.plan_name} subscription is paid until {period_end}."
    return create_notification(subscription.user_id, NotificationKind.RENEWAL_SUCCEEDED, message,
                               subscription_id=subscription.id, commit=commit)

def notify_renewal_failed(subscription, reason, expired=True, commit=True):
    message = f"Renewal failed: {reason}."
    if expired:
        message += f" Your {subscription.plan_name} subscription has expired; renew it to restore access."
    return create_notification(subscription.user_id, NotificationKind.RENEWAL_FAILED, message,
                               subscription_id=subscription.id, commit=commit)

def notify_no_payment_method(subscription, commit=True):
    message = (f"No payment method available to renew your {subscription.plan_name} subscription. "
               f"It has been suspended until a payment method is added.")
    return create_notification(subscription.user_id, NotificationKind.NO_PAYMENT_METHOD, message,
                               subscription_id=subscription.id, commit=commit)

def notify_subscription_activated(subscription, commit=True):
    message = f"Your {subscription.plan_name} subscription is now active."
    return create_notification(subscription.user_id, NotificationKind.SUBSCRIPTION_ACTIVATED, message,
                               subscription_id=subscription.id, commit=commit)

def notify_subscription_cancelled(subscription, commit=True):
    message = f"Your {subscription.plan_name} subscription was cancelled."
    return create_notification(subscription.user_id, NotificationKind.SUBSCRIPTION_CANCELLED, message,
                               subscription_id=subscription.id, commit=commit)

def acknowledge_notification(notification):
    """Set acknowledged; re-acknowledging is a no-op. Caller commits."""
    if notification.acknowledged:
        return False
    notification.acknowledged = True
    return True
