"""
User notification routes
"""
from flask import Blueprint, jsonify, request
from models import db
from models.enums import NotificationKind
from models.notification import Notification
from models.subscription import Subscription
from models.user import User
from utils.notifications import acknowledge_notification, create_notification

notifications_bp = Blueprint('notifications', __name__, url_prefix='/api/v1/notifications')

def get_notifications_for_user(user_id, unread_only=False, limit=None):
    """Notifications for a user, newest first"""
    query = Notification.query.filter_by(user_id=user_id)
    if unread_only:
        query = query.filter_by(acknowledged=False)
    query = query.order_by(Notification.created_at.desc(), Notification.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()

@notifications_bp.route('/user/<int:user_id>')
def get_notifications(user_id):
    """Get notifications for a user"""
    if not db.session.get(User, user_id):
        return jsonify({'success': False, 'message': 'User not found'}), 404

    limit = request.args.get('limit', type=int)
    unread_only = request.args.get('unread_only', 'false').lower() == 'true'
    notifications = get_notifications_for_user(user_id, unread_only=unread_only, limit=limit)

    return jsonify({
        'success': True,
        'notifications': [n.to_dict() for n in notifications]
    })

@notifications_bp.route('/user/<int:user_id>/unread-count')
def get_unread_count(user_id):
    """Get unread notification count for a user"""
    unread_count = Notification.query.filter_by(user_id=user_id, acknowledged=False).count()
    return jsonify({
        'success': True,
        'unread_count': unread_count
    })

@notifications_bp.route('/<int:notification_id>/acknowledge', methods=['POST'])
def acknowledge(notification_id):
    """Mark a notification as read; repeating the call is a no-op"""
    notification = db.session.get(Notification, notification_id)
    if not notification:
        return jsonify({'success': False, 'message': 'Notification not found'}), 404

    if not acknowledge_notification(notification):
        return jsonify({'success': True, 'message': 'Notification already acknowledged',
                        'notification': notification.to_dict()})
    try:
        db.session.commit()
        return jsonify({'success': True, 'message': 'Notification marked as read',
                        'notification': notification.to_dict()})
    except Exception as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': str(e)}), 500

@notifications_bp.route('/test', methods=['POST'])
def create_test_notification():
    """Create a notification by hand (development helper)"""
    data = request.get_json(silent=True) or {}
    user_id = data.get('user_id')
    message = (data.get('message') or '').strip()
    subscription_id = data.get('subscription_id')

    if not isinstance(user_id, int) or not message:
        return jsonify({'success': False, 'message': 'user_id and message are required'}), 400
    if not db.session.get(User, user_id):
        return jsonify({'success': False, 'message': 'User not found'}), 404
    if subscription_id is not None:
        subscription = db.session.get(Subscription, subscription_id)
        if not subscription or subscription.user_id != user_id:
            return jsonify({'success': False, 'message': 'Subscription not found'}), 404

    notification = create_notification(user_id, NotificationKind.TEST, message, subscription_id=subscription_id)
    if notification is None:
        return jsonify({'success': False, 'message': 'Failed to create notification'}), 500
    return jsonify({'success': True, 'notification': notification.to_dict()}), 201
