"""
errors.py — Exception hierarchy for mathdocs.

Engine failures are raised as one of these and converted to field-scoped
outcomes by the evaluator; they never escape an evaluation pass.
"""


class MathdocsError(Exception):
    """Base class for every error raised by mathdocs."""


class EngineError(MathdocsError):
    """Raised by an evaluation engine for any failure it reports."""


class ParseError(EngineError):
    """The raw text is not a valid expression."""


class EvaluationError(EngineError):
    """The engine failed while computing a value (division by zero, …)."""


class CircularDependencyError(EvaluationError):
    """A variable transitively depends on itself."""

    def __init__(self, name):
        super().__init__(f'Circular dependency detected for variable {name}')
        self.name = name


class DocumentNotFoundError(MathdocsError):
    """No stored document has the requested id."""

    def __init__(self, doc_id):
        super().__init__(f"Document '{doc_id}' not found")
        self.doc_id = doc_id
