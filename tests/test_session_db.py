"""
Tests for the SQLite session database and settings store.

Tests cover:
  - Session save / load round trip with messages and checkpoints
  - Rewriting of sub-collections after a rollback
  - Listing by recency and by program, cascading delete
  - SessionStore binding to one database path
  - Settings validation against the manifest
  - Database > environment > default resolution with fallback past bad values
"""

import sqlite3

import pytest

from game_editor_core.chat_session import DEFAULT_TITLE_MAX_LENGTH, ChatSession, ToolInvocationPart
from game_editor_core.exceptions import AddressNotFound, StructureError
from web_interface import session_db


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def db_path(tmp_path):
    """Path of a fresh database file."""
    return str(tmp_path / 'sessions.db')


@pytest.fixture
def chat():
    """A session with two messages and one checkpoint."""
    session = ChatSession.create('prog-1')
    first = session.add_message('user', 'draw a ball')
    session.add_message('assistant', [ToolInvocationPart('str_replace_based_edit_tool', 'c1',
                                                         {'command': 'view'}, {'success': True})])
    session.create_checkpoint(first.message_id, '{"version": 1}', summary='ball')
    return session


# =============================================================================
# SESSION CRUD
# =============================================================================

class TestSessionCrud:
    """Test save / load / list / delete."""

    def test_save_and_load(self, chat, db_path):
        meta = session_db.save_session(chat.to_dict(), db_path)
        assert meta['id'] == chat.session_id
        assert meta['message_count'] == 2

        data = session_db.load_session(chat.session_id, db_path)
        restored = ChatSession.from_dict(data)
        assert restored.title == 'draw a ball'
        assert [m.message_id for m in restored.messages] == [m.message_id for m in chat.messages]
        assert restored.messages[1].parts == chat.messages[1].parts
        assert restored.checkpoints == chat.checkpoints
        assert restored.next_sequence == chat.next_sequence

    def test_load_missing(self, db_path):
        assert session_db.load_session('ghost', db_path) is None

    def test_save_replaces_sub_collections(self, chat, db_path):
        """Test that a rollback's deleted rows disappear on the next save."""
        session_db.save_session(chat.to_dict(), db_path)
        chat.add_message('user', 'later')
        later_cp = chat.create_checkpoint(chat.messages[-1].message_id, 'later')
        session_db.save_session(chat.to_dict(), db_path)
        assert len(session_db.load_session(chat.session_id, db_path)['messages']) == 3

        chat.rollback_to(chat.checkpoints[0].checkpoint_id)
        session_db.save_session(chat.to_dict(), db_path)
        data = session_db.load_session(chat.session_id, db_path)
        assert len(data['messages']) == 1
        assert later_cp.checkpoint_id not in [c['id'] for c in data['checkpoints']]
        assert data['state'] == 'archived-from'
        assert data['message_count'] == 1

    def test_list(self, chat, db_path):
        other = ChatSession.create('prog-2')
        other.updated_at = chat.updated_at + 10
        session_db.save_session(chat.to_dict(), db_path)
        session_db.save_session(other.to_dict(), db_path)

        listed = session_db.list_sessions(db_path=db_path)
        assert [s['id'] for s in listed] == [other.session_id, chat.session_id]
        assert listed[1]['checkpoint_count'] == 1
        assert 'messages' not in listed[0]

        only = session_db.list_sessions('prog-1', db_path)
        assert [s['id'] for s in only] == [chat.session_id]

    def test_delete_cascades(self, chat, db_path):
        session_db.save_session(chat.to_dict(), db_path)
        assert session_db.delete_session(chat.session_id, db_path)
        assert not session_db.delete_session(chat.session_id, db_path)

        conn = sqlite3.connect(db_path)
        counts = [conn.execute(f'SELECT COUNT(*) FROM {t}').fetchone()[0]
                  for t in ('chat_messages', 'chat_checkpoints')]
        conn.close()
        assert counts == [0, 0]

    def test_store_binds_path(self, chat, db_path):
        store = session_db.SessionStore(db_path)
        store.save_session(chat.to_dict())
        assert store.load_session(chat.session_id)['id'] == chat.session_id
        assert len(store.list_sessions()) == 1
        assert store.delete_session(chat.session_id)


# =============================================================================
# SETTINGS
# =============================================================================

class TestSettings:
    """Test the settings store and three-tier resolution."""

    def test_set_get(self, db_path):
        saved = session_db.set_setting('Log_Level', 'debug', db_path)
        assert saved['key'] == 'log_level'
        assert saved['value'] == 'DEBUG'
        assert session_db.get_setting('LOG_LEVEL', db_path) == 'DEBUG'

    def test_upsert(self, db_path):
        session_db.set_setting('log_level', 'DEBUG', db_path)
        session_db.set_setting('log_level', 'ERROR', db_path)
        assert session_db.get_all_settings(db_path) == {'log_level': 'ERROR'}

    def test_delete(self, db_path):
        session_db.set_setting('log_level', 'DEBUG', db_path)
        assert session_db.delete_setting('log_level', db_path)
        assert not session_db.delete_setting('log_level', db_path)
        assert session_db.get_setting('log_level', db_path) is None

    def test_unknown_key_rejected(self, db_path):
        with pytest.raises(AddressNotFound):
            session_db.set_setting('theme', 'dark', db_path)
        assert session_db.get_all_settings(db_path) == {}

    @pytest.mark.parametrize('key,value', [
        ('log_level', 'LOUD'),
        ('title_max_length', 'forty'),
        ('title_max_length', 2),
    ])
    def test_invalid_value_rejected(self, db_path, key, value):
        with pytest.raises(StructureError):
            session_db.set_setting(key, value, db_path)
        assert session_db.get_setting(key, db_path) is None

    def test_resolve_default(self, db_path, monkeypatch):
        monkeypatch.delenv('GAME_EDITOR_TITLE_MAX_LENGTH', raising=False)
        assert session_db.resolve_setting('title_max_length', db_path) == str(DEFAULT_TITLE_MAX_LENGTH)

    def test_resolve_env_over_default(self, db_path, monkeypatch):
        monkeypatch.setenv('GAME_EDITOR_TITLE_MAX_LENGTH', '25')
        assert session_db.resolve_setting('title_max_length', db_path) == '25'

    def test_resolve_db_over_env(self, db_path, monkeypatch):
        monkeypatch.setenv('GAME_EDITOR_TITLE_MAX_LENGTH', '25')
        session_db.set_setting('title_max_length', 60, db_path)
        assert session_db.resolve_setting('title_max_length', db_path) == '60'

    def test_invalid_env_falls_back_to_default(self, db_path, monkeypatch):
        monkeypatch.setenv('GAME_EDITOR_LOG_LEVEL', 'chatty')
        assert session_db.resolve_setting('log_level', db_path) == 'INFO'

    def test_resolve_unknown_key(self, db_path):
        with pytest.raises(AddressNotFound):
            session_db.resolve_setting('theme', db_path)

    def test_describe_reports_source(self, db_path, monkeypatch):
        monkeypatch.setenv('GAME_EDITOR_TITLE_MAX_LENGTH', '30')
        monkeypatch.delenv('GAME_EDITOR_LOG_LEVEL', raising=False)
        session_db.set_setting('log_level', 'WARNING', db_path)
        described = {d['key']: d for d in session_db.describe_settings(db_path)}
        assert set(described) == set(session_db.SETTINGS_MANIFEST)
        assert (described['log_level']['value'], described['log_level']['source']) == ('WARNING', 'database')
        assert (described['title_max_length']['value'],
                described['title_max_length']['source']) == ('30', 'environment')
        assert described['log_level']['default'] == 'INFO'
