"""
Ledger and LedgerMember models.

A Ledger is a shared spending book.  Members join it with one of three roles
(owner, editor, viewer).  Exactly one member holds ``owner``; ``Ledger.owner_id``
mirrors that member's user id and is kept in step by MembershipService.
"""
import enum
from datetime import datetime, timezone
from extensions import db


class MemberRole(str, enum.Enum):
    """Closed set of ledger roles."""
    OWNER = 'owner'
    EDITOR = 'editor'
    VIEWER = 'viewer'

    @classmethod
    def parse(cls, value):
        """Return the MemberRole for *value* (a role or its string), or raise ValueError."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown ledger role: {value!r}") from None

    @property
    def can_edit(self):
        if self is MemberRole.OWNER:
            return True
        if self is MemberRole.EDITOR:
            return True
        if self is MemberRole.VIEWER:
            return False
        raise AssertionError(f'unhandled role {self}')

    @property
    def can_manage_members(self):
        if self is MemberRole.OWNER:
            return True
        if self is MemberRole.EDITOR:
            return False
        if self is MemberRole.VIEWER:
            return False
        raise AssertionError(f'unhandled role {self}')


class Ledger(db.Model):
    """A shared ledger."""
    __tablename__ = 'ledgers'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    owner_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc).replace(tzinfo=None), nullable=False)

    # Relationships
    owner = db.relationship('User', foreign_keys=[owner_id])
    members = db.relationship('LedgerMember', back_populates='ledger', lazy='dynamic',
                              cascade='all, delete-orphan')
    periods = db.relationship('BudgetPeriod', back_populates='ledger', lazy='dynamic',
                              cascade='all, delete-orphan')
    transactions = db.relationship('Transaction', back_populates='ledger', lazy='dynamic',
                                   cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'owner_id': self.owner_id,
            'owner_name': self.owner.username if self.owner else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Ledger {self.name}>'


class LedgerMember(db.Model):
    """Membership of a user in a ledger."""
    __tablename__ = 'ledger_members'
    __table_args__ = (
        db.UniqueConstraint('ledger_id', 'user_id', name='uq_ledger_member'),
    )

    id = db.Column(db.Integer, primary_key=True)
    ledger_id = db.Column(db.Integer, db.ForeignKey('ledgers.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    role = db.Column(
        db.Enum(MemberRole, name='member_role', values_callable=lambda roles: [r.value for r in roles]),
        nullable=False,
        default=MemberRole.VIEWER,
    )
    joined_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc).replace(tzinfo=None), nullable=False)

    ledger = db.relationship('Ledger', back_populates='members')
    user = db.relationship('User', back_populates='memberships')

    @property
    def is_owner(self):
        return self.role is MemberRole.OWNER

    def to_dict(self):
        return {
            'member_id': self.id,
            'user_id': self.user_id,
            'username': self.user.username if self.user else None,
            'email': self.user.email if self.user else None,
            'role': self.role.value,
            'joined_at': self.joined_at.isoformat() if self.joined_at else None,
        }

    def __repr__(self):
        return f'<LedgerMember ledger={self.ledger_id} user={self.user_id} role={self.role.value}>'
