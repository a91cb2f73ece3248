"""
Practice records: clients, sessions and therapy notes.
All rows are scoped to the owning therapist (users.id).
"""
import enum
from datetime import datetime

from therapydesk.extensions import db


class SessionStatus(str, enum.Enum):
    SCHEDULED = 'scheduled'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class Client(db.Model):
    """A person under care of the owning therapist."""

    __tablename__ = 'clients'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id', ondelete='CASCADE'),
        nullable=False,
        index=True,
    )
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(50), nullable=True)
    date_of_birth = db.Column(db.Date, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    sessions = db.relationship(
        'Session', backref='client', lazy='dynamic', cascade='all, delete-orphan',
    )
    notes = db.relationship(
        'TherapyNote', backref='client', lazy='dynamic', cascade='all, delete-orphan',
    )

    def __repr__(self):
        return f'<Client {self.full_name}>'

    @property
    def full_name(self):
        return f'{self.first_name} {self.last_name}'

    @classmethod
    def for_owner(cls, user_id):
        return cls.query.filter_by(user_id=user_id)


class Session(db.Model):
    """A scheduled appointment between therapist and client."""

    __tablename__ = 'sessions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id', ondelete='CASCADE'),
        nullable=False,
        index=True,
    )
    client_id = db.Column(
        db.Integer,
        db.ForeignKey('clients.id', ondelete='CASCADE'),
        nullable=False,
        index=True,
    )
    date = db.Column(db.DateTime, nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False, default=50)
    status = db.Column(
        db.Enum(SessionStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=SessionStatus.SCHEDULED,
    )
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f'<Session client={self.client_id} date={self.date}>'

    @classmethod
    def for_owner(cls, user_id):
        return cls.query.filter_by(user_id=user_id)


class TherapyNote(db.Model):
    """Clinical note attached to a client, optionally to one session."""

    __tablename__ = 'therapy_notes'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id', ondelete='CASCADE'),
        nullable=False,
        index=True,
    )
    client_id = db.Column(
        db.Integer,
        db.ForeignKey('clients.id', ondelete='CASCADE'),
        nullable=False,
        index=True,
    )
    session_id = db.Column(
        db.Integer,
        db.ForeignKey('sessions.id', ondelete='SET NULL'),
        nullable=True,
    )
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=True, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<TherapyNote client={self.client_id}>'

    @classmethod
    def for_owner(cls, user_id):
        return cls.query.filter_by(user_id=user_id)
