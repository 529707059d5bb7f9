from datetime import datetime, timezone
from extensions import db


TRANSACTION_TYPES = ('income', 'expense')


class Transaction(db.Model):
    __tablename__ = 'transactions'

    id = db.Column(db.Integer, primary_key=True)
    ledger_id = db.Column(db.Integer, db.ForeignKey('ledgers.id', ondelete='CASCADE'), nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey('categories.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)  # author
    amount = db.Column(db.Numeric(10, 2), nullable=False)  # always positive; direction comes from transaction_type
    transaction_type = db.Column(db.String(20), nullable=False)  # income | expense
    transaction_date = db.Column(db.Date, nullable=False, index=True)
    note = db.Column(db.String(255), default='')

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc).replace(tzinfo=None))
    updated_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc).replace(tzinfo=None), onupdate=lambda: datetime.now(timezone.utc).replace(tzinfo=None))

    # Relationships
    ledger = db.relationship('Ledger', back_populates='transactions')
    user = db.relationship('User')

    @property
    def is_expense(self):
        return self.transaction_type == 'expense'

    def to_dict(self):
        return {
            'id': self.id,
            'ledger_id': self.ledger_id,
            'category_id': self.category_id,
            'category_name': self.category.name if self.category else None,
            'user_id': self.user_id,
            'amount': str(self.amount),
            'type': self.transaction_type,
            'date': self.transaction_date.isoformat(),
            'note': self.note or '',
        }

    def __repr__(self):
        return f'<Transaction {self.transaction_date}: {self.transaction_type} {self.amount}>'
