"""
Stored payment method model definition
"""
from models import db
from models.enums import PaymentMethod, enum_column
from datetime import datetime

class PaymentMethodDetail(db.Model):
    """Reusable instrument registered with the gateway; deactivation is soft"""
    __tablename__ = 'payment_method_details'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    payment_method = db.Column(enum_column(PaymentMethod), nullable=False, default=PaymentMethod.CARD)
    gateway_registration_token = db.Column(db.String(255), nullable=True)
    masked_card_last_four = db.Column(db.String(4), nullable=True)
    card_brand = db.Column(db.String(50), nullable=True)
    card_holder = db.Column(db.String(100), nullable=True)
    expiry_month = db.Column(db.Integer, nullable=True)
    expiry_year = db.Column(db.Integer, nullable=True)
    bank_name = db.Column(db.String(100), nullable=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<PaymentMethodDetail {self.id} {self.card_brand or self.payment_method}>'

    @property
    def can_charge(self):
        """Active and holding a registration token."""
        return bool(self.is_active and self.gateway_registration_token and self.gateway_registration_token.strip())

    def to_dict(self):
        # The registration token is never exposed to API consumers
        return {
            'id': self.id,
            'user_id': self.user_id,
            'payment_method': self.payment_method.value if self.payment_method else None,
            'masked_card_last_four': self.masked_card_last_four,
            'card_brand': self.card_brand,
            'card_holder': self.card_holder,
            'expiry_month': self.expiry_month,
            'expiry_year': self.expiry_year,
            'bank_name': self.bank_name,
            'is_default': self.is_default,
            'is_active': self.is_active,
            'supports_recurring': self.can_charge,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
