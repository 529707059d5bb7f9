from extensions import db
from datetime import datetime, timezone


class BudgetPeriod(db.Model):
    """One calendar month of budgeting for a ledger.

    ``start_date`` is the first day of the month and ``end_date`` the last
    (inclusive).  Older databases can hold several rows for the same month;
    readers always take the lowest id.
    """
    __tablename__ = 'budget_periods'

    id = db.Column(db.Integer, primary_key=True)
    ledger_id = db.Column(db.Integer, db.ForeignKey('ledgers.id', ondelete='CASCADE'), nullable=False, index=True)
    title = db.Column(db.String(255))
    # Overall budget for the month; when set it overrides the sum of category limits
    total_budget = db.Column(db.Numeric(10, 2), nullable=True)
    start_date = db.Column(db.Date, nullable=False, index=True)
    end_date = db.Column(db.Date, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc).replace(tzinfo=None))
    updated_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc).replace(tzinfo=None), onupdate=lambda: datetime.now(timezone.utc).replace(tzinfo=None))

    ledger = db.relationship('Ledger', back_populates='periods')
    limits = db.relationship('BudgetLimit', back_populates='period', lazy='dynamic',
                             cascade='all, delete-orphan')

    @property
    def period_key(self):
        return self.start_date.strftime('%Y-%m')

    def __repr__(self):
        return f'<BudgetPeriod {self.id}: ledger={self.ledger_id} {self.period_key}>'


class BudgetLimit(db.Model):
    __tablename__ = 'budget_limits'
    __table_args__ = (
        db.UniqueConstraint('period_id', 'category_id', name='uq_budget_limit_period_category'),
    )

    id = db.Column(db.Integer, primary_key=True)
    period_id = db.Column(db.Integer, db.ForeignKey('budget_periods.id', ondelete='CASCADE'), nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey('categories.id'), nullable=False)
    limit_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    rollover = db.Column(db.Boolean, default=False, nullable=False)
    updated_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc).replace(tzinfo=None), onupdate=lambda: datetime.now(timezone.utc).replace(tzinfo=None))

    period = db.relationship('BudgetPeriod', back_populates='limits')

    def __repr__(self):
        return f'<BudgetLimit period={self.period_id} category={self.category_id}: {self.limit_amount}>'
