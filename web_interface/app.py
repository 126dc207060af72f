"""
Flask web interface for the Game Editor Core.

JSON REST API over the block catalog, code generation, chat sessions,
checkpoints and the agent command interpreter. Every mutating route persists
the session through ``session_db``.

Run with ``python -m web_interface.app`` or ``flask --app web_interface.app run``.
"""

import logging
import os
from typing import Any, Dict, Optional, Tuple

from flask import Blueprint, Flask, current_app, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from game_editor_core.block_registry import get_default_registry
from game_editor_core.blockly_format import from_blockly_json, is_blockly_workspace
from game_editor_core.chat_session import MessageRole, part_from_dict
from game_editor_core.code_generator import CodeGenerator
from game_editor_core.editor_session import SessionManager
from game_editor_core.exceptions import AddressNotFound, Busy, EditorError, StructureError
from game_editor_core.program_graph import ProgramGraph
from web_interface import session_db
from web_interface.session_db import SessionStore, resolve_setting

logger = logging.getLogger(__name__)

editor_api = Blueprint('editor_api', __name__, url_prefix='/api')


def _manager() -> SessionManager:
    return current_app.extensions['game_editor']


def _body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise StructureError("Request body must be a JSON object")
    return data


def _status_for(error: EditorError) -> int:
    if isinstance(error, AddressNotFound):
        return 404
    if isinstance(error, Busy):
        return 409
    return 400


# ==================== BLOCK CATALOG + GENERATION ====================

@editor_api.route('/blocks', methods=['GET'])
def get_blocks():
    """Registry catalog grouped by category."""
    return jsonify({'success': True, 'data': get_default_registry().toolbox()})


@editor_api.route('/generate', methods=['POST'])
def generate():
    """Generate a sketch from a serialized graph (native or Blockly workspace)."""
    data = _body().get('graph')
    if data is None:
        raise StructureError("Request needs a 'graph'")
    registry = get_default_registry()
    if is_blockly_workspace(data):
        graph = from_blockly_json(data, registry)
    else:
        graph = ProgramGraph.deserialize(data, registry)
    result = CodeGenerator().generate(graph)
    return jsonify({'success': True, **result.to_dict()})


# ==================== SESSIONS ====================

@editor_api.route('/sessions', methods=['POST'])
def create_session():
    data = _body()
    program_id = data.get('program_id')
    if not isinstance(program_id, str) or not program_id:
        raise StructureError("Request needs a 'program_id'")
    session = _manager().create_session(program_id, data.get('mode', 'blockly'),
                                        data.get('snapshot', ''))
    return jsonify({'success': True, 'data': session.to_dict()}), 201


@editor_api.route('/sessions', methods=['GET'])
def list_sessions():
    program_id = request.args.get('program_id')
    return jsonify({'success': True, 'data': _manager().list_sessions(program_id)})


@editor_api.route('/sessions/<session_id>', methods=['GET'])
def get_session(session_id):
    session = _manager().get_session(session_id)
    data = session.to_dict()
    generation = session.generate()
    if generation is not None:
        data['generated'] = generation.to_dict()
    return jsonify({'success': True, 'data': data})


@editor_api.route('/sessions/<session_id>', methods=['DELETE'])
def delete_session(session_id):
    _manager().delete_session(session_id)
    return jsonify({'success': True, 'message': f'Session {session_id} deleted'})


@editor_api.route('/sessions/<session_id>/messages', methods=['POST'])
def add_message(session_id):
    data = _body()
    if 'parts' in data:
        if not isinstance(data['parts'], list):
            raise StructureError("'parts' must be a list")
        content = [part_from_dict(p) for p in data['parts']]
    elif isinstance(data.get('text'), str):
        content = data['text']
    else:
        raise StructureError("Request needs 'text' or 'parts'")
    try:
        role = MessageRole(data.get('role', 'user'))
    except ValueError:
        raise StructureError(f"Unknown role {data.get('role')!r}") from None
    message = _manager().add_message(session_id, role, content)
    return jsonify({'success': True, 'data': message.to_dict()}), 201


@editor_api.route('/sessions/<session_id>/commands', methods=['POST'])
def execute_command(session_id):
    """One agent tool invocation; failures come back as a failed command result."""
    data = _body()
    payload = data.get('input', data)
    result = _manager().execute(session_id, payload, data.get('tool_call_id'))
    status = 409 if result.error_kind == Busy.error_kind else 200
    return jsonify(result.to_dict()), status


# ==================== CHECKPOINTS ====================

@editor_api.route('/sessions/<session_id>/checkpoints', methods=['POST'])
def create_checkpoint(session_id):
    data = _body()
    checkpoint = _manager().create_checkpoint(session_id, data.get('message_id'),
                                              data.get('summary'))
    return jsonify({'success': True, 'data': checkpoint.to_dict()}), 201


@editor_api.route('/sessions/<session_id>/checkpoints/<checkpoint_id>', methods=['DELETE'])
def delete_checkpoint(session_id, checkpoint_id):
    _manager().delete_checkpoint(session_id, checkpoint_id)
    return jsonify({'success': True, 'message': f'Checkpoint {checkpoint_id} deleted'})


@editor_api.route('/sessions/<session_id>/checkpoints/<checkpoint_id>/rollback', methods=['POST'])
def rollback(session_id, checkpoint_id):
    """Destructive: later messages and checkpoints are gone for good."""
    manager = _manager()
    checkpoint = manager.rollback_to(session_id, checkpoint_id)
    session = manager.get_session(session_id)
    return jsonify({
        'success': True,
        'data': {'checkpoint': checkpoint.to_dict(), 'session': session.to_dict()},
    })


# ==================== SETTINGS ====================

@editor_api.route('/settings', methods=['GET'])
def get_settings():
    """Every known setting with its effective value and source tier."""
    db_path = current_app.config['GAME_EDITOR_DB_PATH']
    return jsonify({'success': True, 'data': session_db.describe_settings(db_path)})


@editor_api.route('/settings/<key>', methods=['PUT'])
def put_setting(key):
    value = _body().get('value')
    if value is None:
        raise StructureError("Request needs a 'value'")
    db_path = current_app.config['GAME_EDITOR_DB_PATH']
    return jsonify({'success': True, 'data': session_db.set_setting(key, value, db_path)})


@editor_api.route('/settings/<key>', methods=['DELETE'])
def delete_setting(key):
    db_path = current_app.config['GAME_EDITOR_DB_PATH']
    if not session_db.delete_setting(key, db_path):
        raise AddressNotFound(f"No setting {key!r}", address=key)
    return jsonify({'success': True, 'message': f'Setting {key} reset'})


# ==================== ERRORS ====================

def _handle_editor_error(error: EditorError) -> Tuple[Any, int]:
    status = _status_for(error)
    logger.warning("%s %s -> %d %s: %s", request.method, request.path, status,
                   error.error_kind, error.message)
    return jsonify({'success': False, **error.to_dict()}), status


def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unhandled error on %s %s", request.method, request.path)
    return jsonify({'success': False, 'error': str(error)}), 500


def _configure_logging(db_path: str) -> None:
    logging.basicConfig(
        level=getattr(logging, resolve_setting('log_level', db_path)),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )


def create_app(db_path: Optional[str] = None) -> Flask:
    """Application factory; ``db_path`` overrides ``GAME_EDITOR_DB_PATH``."""
    db_path = db_path or session_db.DB_PATH
    _configure_logging(db_path)

    title_max_length = int(resolve_setting('title_max_length', db_path))

    app = Flask(__name__)
    app.config['GAME_EDITOR_DB_PATH'] = db_path
    CORS(app)

    app.extensions['game_editor'] = SessionManager(
        store=SessionStore(db_path),
        registry=get_default_registry(),
        title_max_length=title_max_length,
    )
    app.register_blueprint(editor_api)
    app.register_error_handler(EditorError, _handle_editor_error)
    app.register_error_handler(Exception, _handle_unexpected)

    logger.info("Game editor API ready (db=%s)", db_path)
    return app


if __name__ == '__main__':
    host = os.environ.get('GAME_EDITOR_HOST', '0.0.0.0')
    port = int(os.environ.get('GAME_EDITOR_PORT', '5003'))
    print(f"Access the API at: http://localhost:{port}/api/blocks")
    create_app().run(host=host, port=port, debug=True, use_reloader=False)
