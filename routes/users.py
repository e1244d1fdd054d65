"""
User registration routes
"""
import re

from flask import Blueprint, jsonify, request, current_app
from sqlalchemy.exc import IntegrityError
from models import db
from models.user import User

users_bp = Blueprint('users', __name__, url_prefix='/api/v1/users')

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

@users_bp.route('/register', methods=['POST'])
def register_user():
    """Register a new user by email and name"""
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    name = (data.get('name') or '').strip()

    if not email or not name:
        return jsonify({'success': False, 'message': 'Email and name are required'}), 400
    if not EMAIL_RE.match(email):
        return jsonify({'success': False, 'message': 'Invalid email address'}), 400

    if User.query.filter_by(email=email).first():
        return jsonify({'success': False, 'message': 'A user with this email already exists'}), 409

    user = User(email=email, name=name)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({'success': False, 'message': 'A user with this email already exists'}), 409

    current_app.logger.info(f"User registered: {user.email}")
    return jsonify({'success': True, 'user': user.to_dict()}), 201

@users_bp.route('/email/<path:email>')
def get_user_by_email(email):
    user = User.query.filter_by(email=email.strip().lower()).first()
    if not user:
        return jsonify({'success': False, 'message': 'User not found'}), 404
    return jsonify({'success': True, 'user': user.to_dict()})

@users_bp.route('/<int:user_id>')
def get_user(user_id):
    user = db.session.get(User, user_id)
    if not user:
        return jsonify({'success': False, 'message': 'User not found'}), 404
    return jsonify({'success': True, 'user': user.to_dict()})
