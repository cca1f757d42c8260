"""
Tests for database.py - SQLite schema and sessions.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from smsfix.database import (
    Message,
    Preference,
    MESSAGE_TYPE_INBOX,
    MESSAGE_TYPE_SENT,
    init_database,
    create_db_engine,
    get_session_factory,
)


def open_session(db_path):
    return get_session_factory(create_db_engine(db_path))()


class TestDatabaseInit:
    """Test database initialization."""

    def test_init_creates_database_file(self, tmp_path):
        """Test that init_database creates the database file."""
        db_path = tmp_path / "test.db"
        assert not db_path.exists()

        init_database(db_path)

        assert db_path.exists()

    def test_init_creates_tables(self, tmp_path):
        """Test that init_database creates the sms and preferences tables."""
        db_path = tmp_path / "test.db"
        init_database(db_path)

        session = open_session(db_path)
        assert session.query(Message).count() == 0
        assert session.query(Preference).count() == 0
        session.close()

    def test_init_creates_parent_directories(self, tmp_path):
        """Test that init_database creates parent directories if missing."""
        db_path = tmp_path / "nested" / "dir" / "test.db"
        assert not db_path.parent.exists()

        init_database(db_path)

        assert db_path.exists()

    def test_init_is_repeatable(self, tmp_path):
        db_path = tmp_path / "test.db"
        init_database(db_path)
        init_database(db_path)

        session = open_session(db_path)
        assert session.query(Message).count() == 0
        session.close()


class TestMessageTable:
    """Test the sms table."""

    @pytest.fixture
    def db_session(self, tmp_path):
        """Create a temporary database and return a session."""
        db_path = tmp_path / "test.db"
        init_database(db_path)
        session = open_session(db_path)
        yield session
        session.close()

    def test_ids_increase(self, db_session):
        first = Message(body="a", date=1000)
        second = Message(body="b", date=2000)
        db_session.add(first)
        db_session.commit()
        db_session.add(second)
        db_session.commit()

        assert second.id > first.id

    def test_ids_not_reused_after_delete(self, db_session):
        """Deleting the newest message must not hand its id out again."""
        message = Message(body="a", date=1000)
        db_session.add(message)
        db_session.commit()
        deleted_id = message.id

        db_session.delete(message)
        db_session.commit()

        replacement = Message(body="b", date=2000)
        db_session.add(replacement)
        db_session.commit()

        assert replacement.id > deleted_id

    def test_defaults(self, db_session):
        db_session.add(Message(date=1000))
        db_session.commit()

        saved = db_session.query(Message).first()
        assert saved.type == MESSAGE_TYPE_INBOX
        assert saved.address == ""
        assert saved.body == ""

    def test_date_required(self, db_session):
        db_session.add(Message(body="no date"))

        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_large_millisecond_dates(self, db_session):
        db_session.add(Message(date=4_102_444_800_337))
        db_session.commit()

        assert db_session.query(Message).first().date == 4_102_444_800_337

    def test_filter_by_type(self, db_session):
        db_session.add(Message(type=MESSAGE_TYPE_INBOX, date=1000))
        db_session.add(Message(type=MESSAGE_TYPE_SENT, date=2000))
        db_session.commit()

        inbox = db_session.query(Message).filter(Message.type == MESSAGE_TYPE_INBOX).all()
        assert [m.date for m in inbox] == [1000]


class TestPreferenceTable:
    """Test the preferences table."""

    def test_preference_round_trip(self, tmp_path):
        db_path = tmp_path / "test.db"
        init_database(db_path)
        session = open_session(db_path)

        session.add(Preference(key="active", value="true"))
        session.commit()

        assert session.get(Preference, "active").value == "true"
        session.close()


class TestSessionFactory:
    """Test the session factory shared with the message store."""

    def test_objects_readable_after_commit(self, tmp_path):
        """Committed rows keep their loaded values once the session closes."""
        db_path = tmp_path / "test.db"
        init_database(db_path)
        engine = create_db_engine(db_path)
        Session = get_session_factory(engine)

        with Session() as session:
            message = Message(body="kept", date=1337)
            session.add(message)
            session.commit()

        assert message.id is not None
        assert message.date == 1337
        engine.dispose()

    def test_sessions_share_engine(self, tmp_path):
        db_path = tmp_path / "test.db"
        init_database(db_path)
        engine = create_db_engine(db_path)
        Session = get_session_factory(engine)

        with Session() as writer:
            writer.add(Preference(key="active", value="true"))
            writer.commit()
        with Session() as reader:
            assert reader.get(Preference, "active").value == "true"
        engine.dispose()
