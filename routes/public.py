"""
Public routes: service health
"""
from datetime import datetime

from flask import Blueprint, jsonify, current_app
from sqlalchemy import text
from models import db

public_bp = Blueprint('public', __name__)

@public_bp.route('/health')
def health():
    """Liveness plus a cheap database round trip"""
    try:
        db.session.execute(text('SELECT 1'))
        database = 'ok'
    except Exception as e:
        db.session.rollback()
        current_app.logger.warning(f"Health check database query failed: {str(e)}")
        database = 'unavailable'

    scheduler = current_app.extensions.get('renewal_scheduler')
    return jsonify({
        'success': database == 'ok',
        'status': 'healthy' if database == 'ok' else 'degraded',
        'database': database,
        'renewal_scheduler': 'running' if scheduler is not None and scheduler.running else 'stopped',
        'timestamp': datetime.utcnow().isoformat()
    }), 200 if database == 'ok' else 503
