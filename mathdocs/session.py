"""
session.py — Per-document expression store and evaluation session.

A ``DocumentSession`` is created when a document is opened and discarded
when it is closed.  It owns the expression store, its own engine instance and
the results of the latest evaluation pass.  Every edit triggers a full pass;
a pass whose snapshot is older than the store when it finishes is dropped
(last edit wins).
"""

import logging
import secrets
import string
import threading

from mathdocs.engine import SympyEngine
from mathdocs.evaluator import DEFAULT_MAX_DEPTH, Empty, evaluate_all
from mathdocs.formatting import FormatOptions

logger = logging.getLogger(__name__)

BLOCK = 'block'
INLINE = 'inline'
FIELD_KINDS = (BLOCK, INLINE)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_field_id(length=8):
    return ''.join(secrets.choice(_ID_ALPHABET) for _ in range(length))


class ExpressionStore:
    """Field id → raw expression text, plus each field's display kind."""

    def __init__(self, fields=None):
        self._texts = {}
        self._kinds = {}
        for field_id, data in (fields or {}).items():
            self.set(field_id, data.get('latex', ''), data.get('kind', INLINE))

    def set(self, field_id, text, kind=None):
        if kind is not None and kind not in FIELD_KINDS:
            raise ValueError(f'field kind must be one of {FIELD_KINDS}, got {kind!r}')
        self._texts[field_id] = text
        self._kinds[field_id] = kind or self._kinds.get(field_id, INLINE)

    def remove(self, field_id):
        """Delete a field; returns False if it did not exist."""
        self._kinds.pop(field_id, None)
        return self._texts.pop(field_id, None) is not None

    def __contains__(self, field_id):
        return field_id in self._texts

    def __len__(self):
        return len(self._texts)

    def get(self, field_id, default=None):
        return self._texts.get(field_id, default)

    def kind(self, field_id):
        return self._kinds.get(field_id)

    def snapshot(self):
        return dict(self._texts)

    def to_dict(self):
        return {fid: {'kind': self._kinds[fid], 'latex': text} for fid, text in self._texts.items()}


class DocumentSession:
    """
    Evaluation context for one open document.

    ``results`` and ``errors`` always come from one complete pass and are
    replaced wholesale; consumers read them by field id.
    """

    def __init__(self, doc_id=None, fields=None, engine=None, options=None,
                 max_depth=DEFAULT_MAX_DEPTH):
        self.doc_id = doc_id
        self.store = ExpressionStore(fields)
        self.engine = engine or SympyEngine()
        self.options = options or FormatOptions()
        self.max_depth = max_depth

        self._lock = threading.Lock()
        self._engine_lock = threading.RLock()
        self._generation = 0
        self._pass = None
        self._listeners = []
        self.closed = False

        if len(self.store):
            self.reevaluate()

    # ── Edits ───────────────────────────────────────────────

    def update_expression(self, field_id, text, kind=None):
        """
        Set a field's text, or remove the field when ``text`` is None.
        Triggers a full evaluation pass.
        """
        with self._lock:
            self._check_open()
            if text is None:
                existed = self.store.remove(field_id)
                logger.debug('[%s] removed field %s (existed=%s)', self.doc_id, field_id, existed)
            else:
                self.store.set(field_id, text, kind)
            self._generation += 1
        return self.reevaluate()

    def insert_field(self, kind=INLINE, text=''):
        """Add a new field and return its id."""
        with self._lock:
            self._check_open()
            field_id = new_field_id()
            while field_id in self.store:
                field_id = new_field_id()
        self.update_expression(field_id, text, kind)
        return field_id

    def remove_field(self, field_id):
        return self.update_expression(field_id, None)

    def _check_open(self):
        if self.closed:
            raise RuntimeError(f'session {self.doc_id} is closed')

    # ── Evaluation ──────────────────────────────────────────

    def reevaluate(self):
        """Run a pass over the current store; returns the published pass."""
        with self._lock:
            generation = self._generation
            snapshot = self.store.snapshot()

        # The engine's binding table is shared by the whole pass
        with self._engine_lock:
            result = evaluate_all(snapshot, self.engine, self.options, self.max_depth)

        with self._lock:
            if generation != self._generation:
                logger.debug('[%s] discarding stale pass %d', self.doc_id, generation)
                return self._pass
            self._pass = result
            listeners = list(self._listeners)

        for callback in listeners:
            callback(self)
        return result

    def subscribe(self, callback):
        """Call ``callback(session)`` after every published pass."""
        self._listeners.append(callback)
        return lambda: self._listeners.remove(callback)

    # ── Read side ───────────────────────────────────────────

    @property
    def results(self):
        return self._pass.results if self._pass else {}

    @property
    def errors(self):
        return self._pass.errors if self._pass else {}

    def outcome(self, field_id):
        if self._pass is None:
            return Empty()
        return self._pass.outcomes.get(field_id, Empty())

    def fields(self):
        return self.store.to_dict()

    def variables(self):
        """User-defined variables with their field, text, dependencies and value."""
        if self._pass is None:
            return {}
        table = {}
        for field_id, binding in self._pass.bindings.items():
            if binding.is_synthetic:
                continue
            table[binding.name] = {
                'field_id': field_id,
                'expression': binding.expression,
                'dependencies': list(self._pass.dependencies.get(binding.name, [])),
                'value': self._pass.results.get(field_id),
                'error': self._pass.errors.get(field_id),
            }
        return table

    def snapshot(self):
        """Serializable view of the current state."""
        return {
            'doc_id': self.doc_id,
            'fields': self.fields(),
            'results': self.results,
            'errors': self.errors,
        }

    def close(self):
        with self._lock:
            self.closed = True
            self._listeners.clear()
        with self._engine_lock:
            self.engine.reset()
        logger.debug('[%s] session closed', self.doc_id)
