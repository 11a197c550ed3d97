"""
app.py — HTTP API for mathdocs.

Run:  python app.py
Settings come from MATHDOCS_* environment variables (see mathdocs/config.py).
"""
import logging
import threading

from flask import Flask, request, jsonify

from mathdocs.config import get_settings
from mathdocs.documents import DocumentStore, is_valid_document_id
from mathdocs.errors import DocumentNotFoundError
from mathdocs.logging_config import setup_logging
from mathdocs.session import FIELD_KINDS, INLINE, DocumentSession

logger = logging.getLogger('mathdocs.app')


class Workspace:
    """Open document sessions, keyed by document id."""

    def __init__(self, store, settings):
        self.store = store
        self.settings = settings
        self._sessions = {}
        self._contents = {}
        self._lock = threading.Lock()

    def open(self, doc_id):
        with self._lock:
            session = self._sessions.get(doc_id)
            if session is not None:
                return session
            data = self.store.load(doc_id)
            session = DocumentSession(
                doc_id,
                fields=data['fields'],
                options=self.settings.format_options(),
                max_depth=self.settings.max_dependency_depth,
            )
            self._sessions[doc_id] = session
            self._contents[doc_id] = data['content']
            logger.info('Opened document %s (%d fields)', doc_id, len(data['fields']))
            return session

    def content(self, doc_id):
        with self._lock:
            return self._contents.get(doc_id, '')

    def set_content(self, doc_id, content):
        self.open(doc_id)
        with self._lock:
            self._contents[doc_id] = content
        self.save(doc_id)

    def save(self, doc_id):
        with self._lock:
            session = self._sessions.get(doc_id)
            content = self._contents.get(doc_id, '')
        if session is not None:
            self.store.save(doc_id, content, session.fields())

    def close(self, doc_id):
        with self._lock:
            session = self._sessions.pop(doc_id, None)
            content = self._contents.pop(doc_id, '')
        if session is None:
            return False
        if self.store.exists(doc_id):
            self.store.save(doc_id, content, session.fields())
        session.close()
        logger.info('Closed document %s', doc_id)
        return True


def _evaluation(session):
    return {'ok': True, 'results': session.results, 'errors': session.errors}


def _error(message, status):
    return jsonify({'ok': False, 'error': message}), status


def create_app(settings=None):
    settings = settings or get_settings()
    app = Flask(__name__)
    app.config['MATHDOCS_SETTINGS'] = settings
    workspace = Workspace(DocumentStore(settings.data_dir), settings)
    app.extensions['mathdocs'] = workspace

    @app.errorhandler(DocumentNotFoundError)
    def not_found(exc):
        logger.warning('%s', exc)
        return _error(str(exc), 404)

    @app.url_value_preprocessor
    def check_doc_id(endpoint, values):
        if values and 'doc_id' in values and not is_valid_document_id(values['doc_id']):
            raise DocumentNotFoundError(values['doc_id'])

    # ── Documents ───────────────────────────────────────────

    @app.route('/documents', methods=['GET'])
    def list_documents():
        return jsonify({'ok': True, 'documents': workspace.store.list_documents()})

    @app.route('/documents', methods=['POST'])
    def create_document():
        doc_id = workspace.store.create()
        logger.info('Created document %s', doc_id)
        return jsonify({'ok': True, 'id': doc_id}), 201

    @app.route('/documents/<doc_id>', methods=['GET'])
    def get_document(doc_id):
        session = workspace.open(doc_id)
        return jsonify({
            'ok': True,
            'id': doc_id,
            'content': workspace.content(doc_id),
            'fields': session.fields(),
            'results': session.results,
            'errors': session.errors,
        })

    @app.route('/documents/<doc_id>', methods=['PUT'])
    def save_document(doc_id):
        content = (request.get_json(silent=True) or {}).get('content')
        if not isinstance(content, str):
            return _error("'content' must be a string", 400)
        workspace.set_content(doc_id, content)
        return jsonify({'ok': True})

    @app.route('/documents/<doc_id>', methods=['DELETE'])
    def delete_document(doc_id):
        workspace.close(doc_id)
        workspace.store.delete(doc_id)
        return jsonify({'ok': True})

    @app.route('/documents/<doc_id>/close', methods=['POST'])
    def close_document(doc_id):
        if not workspace.store.exists(doc_id):
            raise DocumentNotFoundError(doc_id)
        workspace.close(doc_id)
        return jsonify({'ok': True})

    # ── Fields ──────────────────────────────────────────────

    @app.route('/documents/<doc_id>/fields', methods=['POST'])
    def insert_field(doc_id):
        content = request.get_json(silent=True) or {}
        kind = content.get('kind', INLINE)
        latex = content.get('latex', '')
        if kind not in FIELD_KINDS:
            return _error(f'kind must be one of {list(FIELD_KINDS)}', 400)
        if not isinstance(latex, str):
            return _error("'latex' must be a string", 400)
        session = workspace.open(doc_id)
        field_id = session.insert_field(kind, latex)
        workspace.save(doc_id)
        return jsonify({'id': field_id, **_evaluation(session)}), 201

    @app.route('/documents/<doc_id>/fields/<field_id>', methods=['PUT'])
    def update_field(doc_id, field_id):
        content = request.get_json(silent=True) or {}
        latex = content.get('latex')
        kind = content.get('kind')
        if not isinstance(latex, str):
            return _error("'latex' must be a string", 400)
        if kind is not None and kind not in FIELD_KINDS:
            return _error(f'kind must be one of {list(FIELD_KINDS)}', 400)
        session = workspace.open(doc_id)
        session.update_expression(field_id, latex, kind)
        workspace.save(doc_id)
        return jsonify(_evaluation(session))

    @app.route('/documents/<doc_id>/fields/<field_id>', methods=['DELETE'])
    def delete_field(doc_id, field_id):
        session = workspace.open(doc_id)
        session.update_expression(field_id, None)
        workspace.save(doc_id)
        return jsonify(_evaluation(session))

    # ── Evaluation state ────────────────────────────────────

    @app.route('/documents/<doc_id>/results', methods=['GET'])
    def get_results(doc_id):
        return jsonify(_evaluation(workspace.open(doc_id)))

    @app.route('/documents/<doc_id>/variables', methods=['GET'])
    def get_variables(doc_id):
        return jsonify({'ok': True, 'variables': workspace.open(doc_id).variables()})

    return app


if __name__ == '__main__':
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_file)
    create_app(settings).run(host=settings.host, port=settings.port)
