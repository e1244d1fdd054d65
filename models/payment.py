"""
Payment model definition
"""
from models import db
from models.enums import PaymentStatus, PaymentMethod, enum_column
from datetime import datetime

class Payment(db.Model):
    """A single charge attempt, initial checkout or recurring renewal"""
    __tablename__ = 'payments'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    subscription_id = db.Column(db.Integer, db.ForeignKey('subscriptions.id'), nullable=True, index=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default='ZAR')
    status = db.Column(enum_column(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    payment_method = db.Column(enum_column(PaymentMethod), nullable=False, default=PaymentMethod.CARD)
    merchant_transaction_id = db.Column(db.String(100), unique=True, nullable=False)
    checkout_id = db.Column(db.String(100), nullable=True, index=True)
    peach_payment_id = db.Column(db.String(100), nullable=True)
    is_recurring = db.Column(db.Boolean, nullable=False, default=False)
    parent_payment_id = db.Column(db.Integer, db.ForeignKey('payments.id'), nullable=True)
    failure_reason = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)

    parent_payment = db.relationship('Payment', remote_side=[id], backref='recurring_charges')

    def __repr__(self):
        return f'<Payment {self.merchant_transaction_id}>'

    def mark(self, status, failure_reason=None):
        """Record a gateway result; terminal statuses stamp completed_at."""
        self.status = status
        self.failure_reason = failure_reason
        self.updated_at = datetime.utcnow()
        if status.is_terminal:
            self.completed_at = self.updated_at

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'subscription_id': self.subscription_id,
            'amount': float(self.amount) if self.amount is not None else None,
            'currency': self.currency,
            'status': self.status.value if self.status else None,
            'payment_method': self.payment_method.value if self.payment_method else None,
            'merchant_transaction_id': self.merchant_transaction_id,
            'checkout_id': self.checkout_id,
            'peach_payment_id': self.peach_payment_id,
            'is_recurring': self.is_recurring,
            'parent_payment_id': self.parent_payment_id,
            'failure_reason': self.failure_reason,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }
