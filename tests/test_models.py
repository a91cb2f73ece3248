# =============================================================================
# TherapyDesk - Model Tests
# =============================================================================

import importlib.util
from datetime import date, datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy.exc import IntegrityError

from therapydesk.extensions import db
from therapydesk.models import BillingEvent, Client, Session, SessionStatus, TherapyNote, User


@pytest.fixture
def practice(app, trialing_user, subscribed_user):
    """One client with a session and a note for each of two therapists."""
    records = {}
    for owner in (trialing_user, subscribed_user):
        client = Client(
            user_id=owner.id,
            first_name='Alex',
            last_name=f'Client{owner.id}',
            date_of_birth=date(1990, 5, 17),
        )
        db.session.add(client)
        db.session.flush()

        session = Session(
            user_id=owner.id,
            client_id=client.id,
            date=datetime.utcnow() + timedelta(days=1),
        )
        db.session.add(session)
        db.session.flush()

        note = TherapyNote(
            user_id=owner.id,
            client_id=client.id,
            session_id=session.id,
            content='Initial intake.',
        )
        db.session.add(note)
        records[owner.id] = (client, session, note)
    db.session.commit()
    return records


class TestUserModel:

    def test_email_unique(self, app, trialing_user):
        db.session.add(User(email='trial@test.com'))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

    def test_subscription_id_unique(self, app, subscribed_user):
        db.session.add(User(email='other@test.com', stripe_subscription_id='sub_existing'))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

    def test_repr(self, app, trialing_user):
        assert repr(trialing_user) == '<User trial@test.com status=trialing>'


class TestPracticeModels:

    def test_defaults(self, app, practice, trialing_user):
        client, session, _ = practice[trialing_user.id]

        assert client.is_active is True
        assert client.full_name == f'Alex Client{trialing_user.id}'
        assert session.duration_minutes == 50
        assert session.status == SessionStatus.SCHEDULED

    def test_relationships(self, app, practice, trialing_user):
        client, session, note = practice[trialing_user.id]

        assert client.owner.id == trialing_user.id
        assert session.client.id == client.id
        assert note.client.id == client.id
        assert client.sessions.count() == 1
        assert client.notes.count() == 1

    def test_for_owner_scopes_rows(self, app, practice, trialing_user, subscribed_user):
        for model in (Client, Session, TherapyNote):
            rows = model.for_owner(trialing_user.id).all()
            assert len(rows) == 1
            assert all(row.user_id == trialing_user.id for row in rows)

        assert Client.for_owner(subscribed_user.id).count() == 1

    def test_deleting_user_removes_practice_rows(self, app, practice, trialing_user, subscribed_user):
        db.session.delete(trialing_user)
        db.session.commit()

        assert Client.query.count() == 1
        assert Session.query.count() == 1
        assert TherapyNote.query.count() == 1
        assert Client.for_owner(subscribed_user.id).count() == 1


class TestBillingEventModel:

    def test_is_processed(self, app):
        assert BillingEvent.is_processed('evt_1') is False

        db.session.add(BillingEvent(stripe_event_id='evt_1', event_type='invoice.payment_failed'))
        db.session.commit()

        assert BillingEvent.is_processed('evt_1') is True

    def test_event_id_unique(self, app):
        db.session.add(BillingEvent(stripe_event_id='evt_1', event_type='a'))
        db.session.commit()
        db.session.add(BillingEvent(stripe_event_id='evt_1', event_type='a'))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()


class TestInitialMigration:
    """The initial Alembic revision declares the same enum types as the models."""

    @pytest.fixture
    def revision(self):
        path = Path(__file__).resolve().parents[1] / 'migrations' / 'versions' / \
            'c4a7e1d92b30_practice_and_billing_schema.py'
        spec = importlib.util.spec_from_file_location('initial_revision', path)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module

    @pytest.mark.parametrize('column,attr', [
        (User.__table__.c.subscription_status, 'subscription_status'),
        (User.__table__.c.subscription_period, 'subscription_period'),
        (Session.__table__.c.status, 'session_status'),
    ])
    def test_enum_matches_model(self, revision, column, attr):
        migration_enum = getattr(revision, attr)

        assert migration_enum.name == column.type.name
        assert list(migration_enum.enums) == list(column.type.enums)
