"""
Subscription model definition
"""
from models import db
from models.enums import SubscriptionStatus, enum_column
from datetime import datetime

class Subscription(db.Model):
    """A user's recurring plan, billed once per calendar month"""
    __tablename__ = 'subscriptions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    plan_name = db.Column(db.String(100), nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default='ZAR')
    status = db.Column(enum_column(SubscriptionStatus), nullable=False,
                       default=SubscriptionStatus.PENDING, index=True)
    started_at = db.Column(db.DateTime, nullable=True)
    current_period_end = db.Column(db.DateTime, nullable=True, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    payments = db.relationship('Payment', backref='subscription', lazy=True)
    notifications = db.relationship('Notification', backref='subscription', lazy=True)

    def __repr__(self):
        return f'<Subscription {self.id} {self.status.value if self.status else None}>'

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'plan_name': self.plan_name,
            'price': float(self.price) if self.price is not None else None,
            'currency': self.currency,
            'status': self.status.value if self.status else None,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'current_period_end': self.current_period_end.isoformat() if self.current_period_end else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
