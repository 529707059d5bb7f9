from extensions import db
from datetime import datetime, timezone


CATEGORY_TYPES = ('income', 'expense')


class Category(db.Model):
    __tablename__ = 'categories'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'category_type', 'name', name='uq_category_user_type_name'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    category_type = db.Column(db.String(20), nullable=False)  # income | expense
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc).replace(tzinfo=None))

    # Relationships
    user = db.relationship('User', back_populates='categories')
    transactions = db.relationship('Transaction', backref='category', lazy=True)
    budget_limits = db.relationship('BudgetLimit', backref='category', lazy=True)

    def to_dict(self):
        return {'id': self.id, 'user_id': self.user_id, 'name': self.name, 'type': self.category_type}

    def __repr__(self):
        return f'<Category {self.category_type}:{self.name}>'
