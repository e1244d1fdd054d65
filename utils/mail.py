"""
Email utility functions
"""
from flask_mail import Mail, Message
from flask import current_app

mail = Mail()

def send_email(subject, recipients, body, html=None):
    """
    Send an email

    Args:
        subject: Email subject
        recipients: List of recipient email addresses
        body: Plain text body
        html: HTML body (optional)
    """
    msg = Message(
        subject=subject,
        recipients=recipients,
        body=body,
        html=html
    )
    mail.send(msg)

def mail_configured():
    return bool(current_app.config.get('MAIL_SERVER'))

def send_renewal_outcome_email(user, subscription, notification):
    """
    Mirror a renewal notification to the user's inbox.
    Best effort: returns False when mail is not configured or sending fails.
    """
    if not mail_configured():
        return False

    subjects = {
        'renewal_succeeded': "Your subscription has been renewed",
        'renewal_failed': "Action required: subscription renewal failed",
        'no_payment_method': "Action required: add a payment method",
    }
    subject = subjects.get(notification.kind.value, "Subscription update")
    body = f"""
Hello {user.name},

{notification.message}

Plan: {subscription.plan_name}
Amount: {subscription.currency} {subscription.price}

Best regards,
Billing Team
"""
    try:
        send_email(subject, [user.email], body)
        return True
    except Exception as e:
        current_app.logger.error(f"SMTP error sending renewal email to {user.email}: {str(e)}", exc_info=True)
        return False
