"""
Session Database: SQLite-backed chat session persistence.

Stores every editor session with its ordered messages and checkpoints, so a
conversation and its program survive a restart.

Schema:
  chat_sessions   : id, program_id, mode, title, message_count, last_snapshot,
                    state, archived_from, created_at, updated_at
  chat_messages   : id, session_id, role, parts_json, created_at, sequence
  chat_checkpoints: id, session_id, message_id, number, snapshot, summary,
                    created_at, sequence
  settings        : key, value, updated_at  (keys from SETTINGS_MANIFEST)
"""

import os
import json
import logging
import sqlite3
import time
from typing import Dict, List, Optional, Any, Tuple

from game_editor_core.chat_session import DEFAULT_TITLE_MAX_LENGTH
from game_editor_core.exceptions import AddressNotFound, StructureError

logger = logging.getLogger(__name__)


def _resolve_db_path() -> str:
    """Resolve the database path from env → default.

    Priority:
        1. GAME_EDITOR_DB_PATH environment variable
        2. ``<web_interface>/sessions.db``
    """
    env_path = os.environ.get('GAME_EDITOR_DB_PATH', '').strip()
    if env_path:
        os.makedirs(os.path.dirname(env_path) or '.', exist_ok=True)
        return env_path
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), 'sessions.db')


DB_PATH = _resolve_db_path()


def _get_db(db_path: Optional[str] = None) -> sqlite3.Connection:
    """Return a connection to the sessions database, creating tables if needed."""
    conn = sqlite3.connect(db_path or DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA journal_mode=WAL')
    conn.execute('PRAGMA foreign_keys=ON')

    conn.executescript('''
        CREATE TABLE IF NOT EXISTS chat_sessions (
            id             TEXT PRIMARY KEY,
            program_id     TEXT NOT NULL,
            mode           TEXT NOT NULL,
            title          TEXT NOT NULL,
            message_count  INTEGER NOT NULL DEFAULT 0,
            last_snapshot  TEXT NOT NULL DEFAULT '',
            state          TEXT NOT NULL DEFAULT 'active',
            archived_from  TEXT,
            created_at     REAL NOT NULL,
            updated_at     REAL NOT NULL
        );

        CREATE TABLE IF NOT EXISTS chat_messages (
            id             TEXT PRIMARY KEY,
            session_id     TEXT NOT NULL,
            role           TEXT NOT NULL,
            parts_json     TEXT NOT NULL DEFAULT '[]',
            created_at     REAL NOT NULL,
            sequence       INTEGER NOT NULL,
            FOREIGN KEY (session_id) REFERENCES chat_sessions(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS chat_checkpoints (
            id             TEXT PRIMARY KEY,
            session_id     TEXT NOT NULL,
            message_id     TEXT NOT NULL,
            number         INTEGER NOT NULL,
            snapshot       TEXT NOT NULL DEFAULT '',
            summary        TEXT,
            created_at     REAL NOT NULL,
            sequence       INTEGER NOT NULL,
            FOREIGN KEY (session_id) REFERENCES chat_sessions(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_sessions_program ON chat_sessions(program_id);
        CREATE INDEX IF NOT EXISTS idx_messages_session ON chat_messages(session_id, sequence);
        CREATE INDEX IF NOT EXISTS idx_checkpoints_session ON chat_checkpoints(session_id, sequence);

        CREATE TABLE IF NOT EXISTS settings (
            key           TEXT PRIMARY KEY,
            value         TEXT NOT NULL,
            updated_at    REAL NOT NULL
        );
    ''')
    conn.commit()
    return conn


_SUMMARY_COLUMNS = '''id, program_id, mode, title, message_count, last_snapshot,
                      state, archived_from, created_at, updated_at'''


def _summary(row: sqlite3.Row, checkpoint_count: int = 0) -> Dict[str, Any]:
    data = dict(row)
    data['checkpoint_count'] = checkpoint_count
    return data


# ─────────────────────────────────────────────────────────────────────
# Session CRUD
# ─────────────────────────────────────────────────────────────────────

def save_session(session: Dict[str, Any], db_path: Optional[str] = None) -> Dict[str, Any]:
    """Save or update a session with its messages and checkpoints.

    Args:
        session:  ``ChatSession.to_dict()`` output.
        db_path:  Database file; defaults to ``DB_PATH``.

    Returns:
        Dict with session metadata.
    """
    conn = _get_db(db_path)
    now = time.time()
    session_id = session['id']
    messages = session.get('messages', [])
    checkpoints = session.get('checkpoints', [])

    conn.execute('''
        INSERT INTO chat_sessions (id, program_id, mode, title, message_count, last_snapshot,
                                   state, archived_from, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE
           SET title = excluded.title,
               message_count = excluded.message_count,
               last_snapshot = excluded.last_snapshot,
               state = excluded.state,
               archived_from = excluded.archived_from,
               updated_at = excluded.updated_at
    ''', (
        session_id, session['program_id'], session['mode'], session['title'],
        len(messages), session.get('last_snapshot', ''),
        session.get('state', 'active'), session.get('archived_from'),
        session.get('created_at') or now, session.get('updated_at') or now,
    ))

    # Replace sub-collections; rollback may have deleted rows
    conn.execute('DELETE FROM chat_messages WHERE session_id = ?', (session_id,))
    conn.execute('DELETE FROM chat_checkpoints WHERE session_id = ?', (session_id,))

    conn.executemany('''
        INSERT INTO chat_messages (id, session_id, role, parts_json, created_at, sequence)
        VALUES (?, ?, ?, ?, ?, ?)
    ''', [
        (m['id'], session_id, m['role'], json.dumps(m.get('parts', [])),
         m.get('created_at', now), m.get('sequence', 0))
        for m in messages
    ])
    conn.executemany('''
        INSERT INTO chat_checkpoints (id, session_id, message_id, number, snapshot, summary,
                                      created_at, sequence)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    ''', [
        (c['id'], session_id, c['message_id'], c['number'], c.get('snapshot', ''),
         c.get('summary'), c.get('created_at', now), c.get('sequence', 0))
        for c in checkpoints
    ])

    conn.commit()
    conn.close()

    return {
        'id': session_id,
        'program_id': session['program_id'],
        'title': session['title'],
        'message_count': len(messages),
        'updated_at': session.get('updated_at') or now,
    }


def list_sessions(program_id: Optional[str] = None,
                  db_path: Optional[str] = None) -> List[Dict[str, Any]]:
    """Return session records (no messages or checkpoints), newest first."""
    conn = _get_db(db_path)
    query = f'''
        SELECT {_SUMMARY_COLUMNS},
               (SELECT COUNT(*) FROM chat_checkpoints c WHERE c.session_id = s.id) AS checkpoint_count
          FROM chat_sessions s
    '''
    params: tuple = ()
    if program_id is not None:
        query += ' WHERE program_id = ?'
        params = (program_id,)
    rows = conn.execute(query + ' ORDER BY updated_at DESC', params).fetchall()
    conn.close()

    return [dict(r) for r in rows]


def load_session(session_id: str, db_path: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Load a full session in ``ChatSession.from_dict`` shape."""
    conn = _get_db(db_path)
    row = conn.execute(f'SELECT {_SUMMARY_COLUMNS} FROM chat_sessions WHERE id = ?',
                       (session_id,)).fetchone()
    if not row:
        conn.close()
        return None

    messages = conn.execute('''
        SELECT id, session_id, role, parts_json, created_at, sequence
          FROM chat_messages
         WHERE session_id = ?
         ORDER BY sequence
    ''', (session_id,)).fetchall()
    checkpoints = conn.execute('''
        SELECT id, session_id, message_id, number, snapshot, summary, created_at, sequence
          FROM chat_checkpoints
         WHERE session_id = ?
         ORDER BY sequence
    ''', (session_id,)).fetchall()
    conn.close()

    data = _summary(row, len(checkpoints))
    data['messages'] = [
        {
            'id': m['id'],
            'session_id': m['session_id'],
            'role': m['role'],
            'parts': json.loads(m['parts_json']),
            'created_at': m['created_at'],
            'sequence': m['sequence'],
        }
        for m in messages
    ]
    data['checkpoints'] = [dict(c) for c in checkpoints]
    return data


def delete_session(session_id: str, db_path: Optional[str] = None) -> bool:
    """Delete a session with its messages and checkpoints."""
    conn = _get_db(db_path)
    cursor = conn.execute('DELETE FROM chat_sessions WHERE id = ?', (session_id,))
    conn.commit()
    deleted = cursor.rowcount > 0
    conn.close()
    return deleted


class SessionStore:
    """The CRUD functions above bound to one database file."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or DB_PATH

    def save_session(self, session: Dict[str, Any]) -> Dict[str, Any]:
        return save_session(session, self.db_path)

    def load_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return load_session(session_id, self.db_path)

    def list_sessions(self, program_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return list_sessions(program_id, self.db_path)

    def delete_session(self, session_id: str) -> bool:
        return delete_session(session_id, self.db_path)




# ─────────────────────────────────────────────────────────────────────
# Settings  (database overrides for .env defaults)
# ─────────────────────────────────────────────────────────────────────
#
# Only the keys in SETTINGS_MANIFEST can be stored. Resolution order:
#   1. Database setting  (set via API)
#   2. Environment variable  (.env / shell)
#   3. Manifest default
# A stored or exported value that fails validation is skipped with a
# warning and the next tier is used.
# ─────────────────────────────────────────────────────────────────────

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')

SETTINGS_MANIFEST: Dict[str, Dict[str, Any]] = {
    'log_level': {
        'env': 'GAME_EDITOR_LOG_LEVEL',
        'default': 'INFO',
        'label': 'Root log level of the web app',
        'type': 'choice',
        'choices': LOG_LEVELS,
        'restart': True,
    },
    'title_max_length': {
        'env': 'GAME_EDITOR_TITLE_MAX_LENGTH',
        'default': str(DEFAULT_TITLE_MAX_LENGTH),
        'label': 'Length of session titles derived from the first message',
        'type': 'number',
        'min': 4,
        'restart': True,
    },
}


def _manifest_entry(key: str) -> Dict[str, Any]:
    entry = SETTINGS_MANIFEST.get(key.lower())
    if entry is None:
        raise AddressNotFound(f"Unknown setting {key!r}; known settings: {sorted(SETTINGS_MANIFEST)}",
                              address=key)
    return entry


def normalize_setting(key: str, value: Any) -> str:
    """Validate ``value`` for ``key`` and return its stored string form."""
    entry = _manifest_entry(key)
    text = str(value).strip()
    if entry['type'] == 'choice':
        text = text.upper()
        if text not in entry['choices']:
            raise StructureError(f"Setting {key!r} must be one of {list(entry['choices'])}, got {value!r}",
                                 {'key': key})
        return text
    try:
        number = int(text)
    except ValueError:
        raise StructureError(f"Setting {key!r} must be an integer, got {value!r}", {'key': key}) from None
    if number < entry['min']:
        raise StructureError(f"Setting {key!r} must be at least {entry['min']}", {'key': key})
    return str(number)


def get_setting(key: str, db_path: Optional[str] = None) -> Optional[str]:
    """Return the stored value of a setting, or None if unset."""
    conn = _get_db(db_path)
    row = conn.execute(
        'SELECT value FROM settings WHERE key = ?', (key.lower(),)
    ).fetchone()
    conn.close()
    return row['value'] if row else None


def set_setting(key: str, value: Any, db_path: Optional[str] = None) -> Dict[str, Any]:
    """Validate and upsert a known setting. Returns the saved record."""
    key = key.lower()
    stored = normalize_setting(key, value)
    now = time.time()
    conn = _get_db(db_path)
    conn.execute('''
        INSERT INTO settings (key, value, updated_at)
        VALUES (?, ?, ?)
        ON CONFLICT(key) DO UPDATE
           SET value = excluded.value,
               updated_at = excluded.updated_at
    ''', (key, stored, now))
    conn.commit()
    conn.close()
    logger.info("Setting %s set to %s", key, stored)
    return {'key': key, 'value': stored, 'updated_at': now}


def get_all_settings(db_path: Optional[str] = None) -> Dict[str, str]:
    """Stored (database-tier) values only, as a flat dict."""
    conn = _get_db(db_path)
    rows = conn.execute('SELECT key, value FROM settings').fetchall()
    conn.close()
    return {r['key']: r['value'] for r in rows}


def delete_setting(key: str, db_path: Optional[str] = None) -> bool:
    """Remove a stored setting (reverts to env / default)."""
    conn = _get_db(db_path)
    cursor = conn.execute('DELETE FROM settings WHERE key = ?', (key.lower(),))
    conn.commit()
    deleted = cursor.rowcount > 0
    conn.close()
    return deleted


def _resolve(key: str, db_path: Optional[str]) -> Tuple[str, str]:
    entry = _manifest_entry(key)
    tiers = (
        ('database', get_setting(key, db_path)),
        ('environment', os.environ.get(entry['env'], '').strip()),
    )
    for source, raw in tiers:
        if not raw:
            continue
        try:
            return normalize_setting(key, raw), source
        except StructureError as e:
            logger.warning("Ignoring %s value for %s: %s", source, key, e.message)
    return entry['default'], 'default'


def resolve_setting(key: str, db_path: Optional[str] = None) -> str:
    """Three-tier resolution: DB → env → manifest default."""
    return _resolve(key, db_path)[0]


def describe_settings(db_path: Optional[str] = None) -> List[Dict[str, Any]]:
    """Every known setting with its effective value and the tier it came from."""
    described = []
    for key, entry in SETTINGS_MANIFEST.items():
        value, source = _resolve(key, db_path)
        described.append({
            'key': key,
            'value': value,
            'source': source,
            'env': entry['env'],
            'default': entry['default'],
            'label': entry['label'],
            'restart': entry['restart'],
        })
    return described
