"""
Tests for the Flask REST API.

Tests cover:
  - Block catalog and stateless code generation
  - Session create / list / get / delete
  - Messages, agent commands and checkpoints over HTTP
  - Error mapping to status codes
  - Settings routes
"""

import pytest

from web_interface.app import create_app

START_GRAPH = {
    'version': 1,
    'entry_points': ['start'],
    'blocks': {
        'start': {'kind': 'p5_setup', 'fields': {}, 'slots': {'STATEMENTS': 'bg'}},
        'bg': {'kind': 'p5_background', 'fields': {'COLOR': '#336699'}, 'next': 'dot'},
        'dot': {'kind': 'p5_circle', 'fields': {}, 'sockets': {
            'X': {'literal': 10}, 'Y': {'literal': 10}, 'D': {'literal': 5},
        }},
    },
}


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def app(tmp_path):
    return create_app(str(tmp_path / 'api.db'))


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def session_id(client):
    """Id of a fresh graph-mode session."""
    resp = client.post('/api/sessions', json={'program_id': 'prog-1'})
    return resp.get_json()['data']['id']


# =============================================================================
# CATALOG + GENERATION
# =============================================================================

class TestCatalog:
    """Test the block catalog and /generate."""

    def test_blocks(self, client):
        resp = client.get('/api/blocks')
        assert resp.status_code == 200
        body = resp.get_json()
        assert body['success']
        assert body['data']

    def test_generate(self, client):
        resp = client.post('/api/generate', json={'graph': START_GRAPH})
        body = resp.get_json()
        assert resp.status_code == 200
        assert body['code'] == (
            "function setup() {\n"
            "  background('#336699');\n"
            "  circle(10, 10, 5);\n"
            "}\n"
        )
        assert body['diagnostics'] == []

    def test_generate_needs_graph(self, client):
        resp = client.post('/api/generate', json={})
        assert resp.status_code == 400
        assert resp.get_json()['errorKind'] == 'StructureError'

    def test_generate_unknown_kind(self, client):
        graph = {'version': 1, 'entry_points': ['x'], 'blocks': {'x': {'kind': 'nope'}}}
        resp = client.post('/api/generate', json={'graph': graph})
        assert resp.status_code == 400
        assert resp.get_json()['errorKind'] == 'UnknownKind'

    def test_non_object_body(self, client):
        resp = client.post('/api/generate', json=[1, 2])
        assert resp.status_code == 400


# =============================================================================
# SESSIONS
# =============================================================================

class TestSessions:
    """Test session lifecycle routes."""

    def test_create(self, client):
        resp = client.post('/api/sessions', json={'program_id': 'p', 'mode': 'javascript'})
        assert resp.status_code == 201
        data = resp.get_json()['data']
        assert data['mode'] == 'javascript'
        assert data['title'] == 'New Chat'
        assert data['messages'] == []

    def test_create_needs_program(self, client):
        assert client.post('/api/sessions', json={}).status_code == 400

    def test_create_bad_mode(self, client):
        resp = client.post('/api/sessions', json={'program_id': 'p', 'mode': 'lua'})
        assert resp.status_code == 400

    def test_list(self, client, session_id):
        client.post('/api/sessions', json={'program_id': 'other'})
        everything = client.get('/api/sessions').get_json()['data']
        assert len(everything) == 2
        filtered = client.get('/api/sessions?program_id=prog-1').get_json()['data']
        assert [s['id'] for s in filtered] == [session_id]

    def test_get(self, client, session_id):
        data = client.get(f'/api/sessions/{session_id}').get_json()['data']
        assert data['id'] == session_id
        assert data['generated']['code'] == ''

    def test_get_missing(self, client):
        resp = client.get('/api/sessions/ghost')
        assert resp.status_code == 404
        assert resp.get_json()['success'] is False

    def test_delete(self, client, session_id):
        assert client.delete(f'/api/sessions/{session_id}').status_code == 200
        assert client.get(f'/api/sessions/{session_id}').status_code == 404
        assert client.delete(f'/api/sessions/{session_id}').status_code == 404


# =============================================================================
# CONVERSATION + CHECKPOINTS
# =============================================================================

class TestConversation:
    """Test messages, commands and checkpoints over HTTP."""

    def test_add_message(self, client, session_id):
        resp = client.post(f'/api/sessions/{session_id}/messages',
                           json={'role': 'user', 'text': 'Draw a blue background'})
        assert resp.status_code == 201
        assert resp.get_json()['data']['parts'] == [{'type': 'text', 'text': 'Draw a blue background'}]
        session = client.get(f'/api/sessions/{session_id}').get_json()['data']
        assert session['title'] == 'Draw a blue background'
        assert session['message_count'] == 1

    def test_add_message_bad_role(self, client, session_id):
        resp = client.post(f'/api/sessions/{session_id}/messages', json={'role': 'robot', 'text': 'x'})
        assert resp.status_code == 400

    def test_add_message_needs_content(self, client, session_id):
        resp = client.post(f'/api/sessions/{session_id}/messages', json={'role': 'user'})
        assert resp.status_code == 400

    def test_command_create(self, client, session_id):
        """Test the create command returns the new graph and its generated code."""
        resp = client.post(f'/api/sessions/{session_id}/commands',
                           json={'tool_call_id': 'call-1',
                                 'input': {'command': 'create', 'graph': START_GRAPH}})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body['success']
        assert 'circle(10, 10, 5);' in body['generatedCode']
        assert body['newGraph']['entry_points'] == ['start']

        session = client.get(f'/api/sessions/{session_id}').get_json()['data']
        assert 'circle(10, 10, 5);' in session['generated']['code']
        part = session['messages'][-1]['parts'][-1]
        assert part['toolCallId'] == 'call-1'
        assert part['state'] == 'output-available'

    def test_command_failure(self, client, session_id):
        """Test a failed command still answers 200 with the failure in the body."""
        resp = client.post(f'/api/sessions/{session_id}/commands', json={'command': 'delete'})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body['success'] is False
        assert body['errorKind'] == 'StructureError'

    def test_malformed_command_is_not_a_server_error(self, client, session_id):
        """Test wrongly-typed ids come back as a failed result and the session stays usable."""
        base = f'/api/sessions/{session_id}'
        resp = client.post(f'{base}/commands', json={
            'input': {'command': 'create', 'graph': {'entry_points': [{}], 'blocks': {}}}})
        assert resp.status_code == 200
        assert resp.get_json()['errorKind'] == 'StructureError'
        resp = client.post(f'{base}/commands', json={'command': 'create', 'graph': START_GRAPH})
        assert resp.get_json()['success']

    def test_command_missing_session(self, client):
        resp = client.post('/api/sessions/ghost/commands', json={'command': 'view'})
        assert resp.status_code == 404

    def test_checkpoint_and_rollback(self, client, session_id):
        """Test rollback through the API drops later messages and restores the program."""
        base = f'/api/sessions/{session_id}'
        client.post(f'{base}/messages', json={'role': 'user', 'text': 'draw'})
        client.post(f'{base}/commands', json={'command': 'create', 'graph': START_GRAPH})
        resp = client.post(f'{base}/checkpoints', json={'summary': 'first'})
        assert resp.status_code == 201
        checkpoint = resp.get_json()['data']
        assert checkpoint['label'] == 'first'
        assert checkpoint['number'] == 1

        client.post(f'{base}/messages', json={'role': 'user', 'text': 'make it red'})
        client.post(f'{base}/commands',
                    json={'command': 'str_replace', 'old_str': '#336699', 'new_str': '#ff0000'})
        client.post(f'{base}/checkpoints', json={})

        resp = client.post(f"{base}/checkpoints/{checkpoint['id']}/rollback")
        assert resp.status_code == 200
        session = resp.get_json()['data']['session']
        assert session['message_count'] == 2
        assert [c['id'] for c in session['checkpoints']] == [checkpoint['id']]
        assert session['state'] == 'archived-from'
        assert '#336699' in session['program']

    def test_rollback_missing(self, client, session_id):
        resp = client.post(f'/api/sessions/{session_id}/checkpoints/ghost/rollback')
        assert resp.status_code == 404

    def test_checkpoint_without_messages(self, client, session_id):
        assert client.post(f'/api/sessions/{session_id}/checkpoints', json={}).status_code == 400

    def test_delete_checkpoint(self, client, session_id):
        base = f'/api/sessions/{session_id}'
        client.post(f'{base}/messages', json={'role': 'user', 'text': 'draw'})
        cp = client.post(f'{base}/checkpoints', json={}).get_json()['data']
        assert client.delete(f"{base}/checkpoints/{cp['id']}").status_code == 200
        session = client.get(base).get_json()['data']
        assert session['checkpoints'] == []


# =============================================================================
# SETTINGS
# =============================================================================

class TestSettingsRoutes:
    """Test the settings API."""

    def test_put_get_delete(self, client):
        resp = client.put('/api/settings/log_level', json={'value': 'debug'})
        assert resp.get_json()['data']['value'] == 'DEBUG'
        described = {d['key']: d for d in client.get('/api/settings').get_json()['data']}
        assert described['log_level']['value'] == 'DEBUG'
        assert described['log_level']['source'] == 'database'
        assert 'title_max_length' in described
        assert client.delete('/api/settings/log_level').status_code == 200
        assert client.delete('/api/settings/log_level').status_code == 404

    def test_put_needs_value(self, client):
        assert client.put('/api/settings/log_level', json={}).status_code == 400

    def test_put_unknown_key(self, client):
        resp = client.put('/api/settings/theme', json={'value': 'dark'})
        assert resp.status_code == 404
        assert resp.get_json()['errorKind'] == 'AddressNotFound'

    def test_put_invalid_value(self, client):
        resp = client.put('/api/settings/title_max_length', json={'value': 'long'})
        assert resp.status_code == 400
        assert resp.get_json()['errorKind'] == 'StructureError'


def test_unknown_route(client):
    assert client.get('/api/nothing').status_code == 404
