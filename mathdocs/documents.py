"""
documents.py — JSON-file document storage.

Each document is one file ``mathdocs-<doc_id>.json`` in the data directory:

    {"content": "<h1>…</h1>…", "fields": {id: {"kind": …, "latex": …}}, "updated_at": …}
"""

import json
import logging
import os
import re
import secrets
import string
import tempfile
import time
from pathlib import Path

from mathdocs.errors import DocumentNotFoundError

logger = logging.getLogger(__name__)

FILE_PREFIX = 'mathdocs-'

_DOC_ID_RE = re.compile(r'^[a-z0-9]{1,64}$')
_TITLE_RE = re.compile(r'<h1[^>]*>([^<]+)</h1>')
_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_document_id():
    """Random 9-character base-36 id."""
    return ''.join(secrets.choice(_ID_ALPHABET) for _ in range(9))


def is_valid_document_id(doc_id):
    return bool(_DOC_ID_RE.match(doc_id or ''))


def document_title(doc_id, content):
    """Text of the first <h1>, or a generic title."""
    m = _TITLE_RE.search(content or '')
    return m.group(1).strip() if m else f'Document {doc_id}'


class DocumentStore:

    def __init__(self, data_dir):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, doc_id):
        if not is_valid_document_id(doc_id):
            raise ValueError(f'invalid document id: {doc_id!r}')
        return self.data_dir / f'{FILE_PREFIX}{doc_id}.json'

    def exists(self, doc_id):
        return is_valid_document_id(doc_id) and self._path(doc_id).exists()

    def create(self):
        doc_id = new_document_id()
        while self.exists(doc_id):
            doc_id = new_document_id()
        self.save(doc_id, '', {})
        return doc_id

    def load(self, doc_id):
        path = self._path(doc_id)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            raise DocumentNotFoundError(doc_id) from None
        data.setdefault('content', '')
        data.setdefault('fields', {})
        data.setdefault('updated_at', path.stat().st_mtime)
        return data

    def save(self, doc_id, content, fields):
        path = self._path(doc_id)
        data = {
            'content': content,
            'fields': fields,
            'updated_at': time.time(),
        }
        # Atomic replace; readers never see a partial file
        with tempfile.NamedTemporaryFile(
            'w', encoding='utf-8', dir=self.data_dir, suffix='.tmp', delete=False
        ) as f:
            json.dump(data, f)
        os.replace(f.name, path)
        logger.debug('Saved document %s (%d fields)', doc_id, len(fields))
        return data

    def delete(self, doc_id):
        path = self._path(doc_id)
        try:
            path.unlink()
        except FileNotFoundError:
            raise DocumentNotFoundError(doc_id) from None
        logger.info('Deleted document %s', doc_id)

    def list_documents(self):
        """Summaries of every stored document, most recently updated first."""
        docs = []
        for path in self.data_dir.glob(f'{FILE_PREFIX}*.json'):
            doc_id = path.stem[len(FILE_PREFIX):]
            if not is_valid_document_id(doc_id):
                continue
            try:
                data = self.load(doc_id)
            except (json.JSONDecodeError, DocumentNotFoundError) as exc:
                logger.warning('Skipping unreadable document %s: %s', path.name, exc)
                continue
            docs.append({
                'id': doc_id,
                'title': document_title(doc_id, data['content']),
                'updated_at': data['updated_at'],
            })
        docs.sort(key=lambda d: d['updated_at'], reverse=True)
        return docs
