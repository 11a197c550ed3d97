"""
mathdocs — live-evaluated math fields for rich-text documents.
"""

from mathdocs.engine import Engine, SympyEngine, NOTHING
from mathdocs.evaluator import Empty, Error, Value, evaluate_all
from mathdocs.formatting import FormatOptions
from mathdocs.session import DocumentSession, ExpressionStore

__version__ = '0.1.0'

__all__ = [
    'DocumentSession',
    'Empty',
    'Engine',
    'Error',
    'ExpressionStore',
    'FormatOptions',
    'NOTHING',
    'SympyEngine',
    'Value',
    'evaluate_all',
]
