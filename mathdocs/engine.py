"""
engine.py — Evaluation engine capability interface and its SymPy back-end
==========================================================================
The evaluator only talks to an engine through the narrow ``Engine``
interface, so the symbolic library can be swapped (tests use a fake):

    reset(names)            clear every binding, declare this pass's names
    parse(text)             → ParsedExpression          (raises ParseError)
    free_variables(parsed)  → set of referenced names
    evaluate(parsed)        → value | NOTHING           (raises EvaluationError)
    assign(name, value) / unassign(name)
    is_nothing(value)
    format(value, options)  → display LaTeX

``SympyEngine`` parses math-field LaTeX with ``mathdocs.latex`` and evaluates
numerically with ``sympy.N``.  Each instance owns its binding table.
"""

import logging
import re
from abc import ABC, abstractmethod

from sympy import Basic, Eq, N, S, latex

from mathdocs import latex as latex_parser
from mathdocs.errors import EngineError, EvaluationError, ParseError
from mathdocs.formatting import FormatOptions, format_real

logger = logging.getLogger(__name__)


class _Nothing:
    """The engine's "no defined result" value."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return 'NOTHING'

    def __bool__(self):
        return False


NOTHING = _Nothing()


class ParsedExpression:
    """A parsed expression together with the text it came from."""

    __slots__ = ('text', 'expr')

    def __init__(self, text, expr):
        self.text = text
        self.expr = expr

    def __repr__(self):
        return f'ParsedExpression({self.text!r}, {self.expr!r})'


class Engine(ABC):
    """Capabilities the dependency evaluator needs from a math engine."""

    @abstractmethod
    def reset(self, names=()):
        """Drop all bindings; ``names`` are the variables defined this pass."""

    @abstractmethod
    def parse(self, text):
        """Return a parsed expression or raise ParseError."""

    @abstractmethod
    def free_variables(self, parsed):
        """Names referenced by ``parsed``."""

    @abstractmethod
    def evaluate(self, parsed):
        """Numeric value of ``parsed`` under the current bindings."""

    @abstractmethod
    def assign(self, name, value):
        """Bind ``name`` so later evaluations see ``value``."""

    @abstractmethod
    def unassign(self, name):
        """Remove any binding for ``name``."""

    def is_nothing(self, value):
        return value is NOTHING or value is None

    @abstractmethod
    def format(self, value, options=None):
        """Display text for an evaluated value."""


class SympyEngine(Engine):
    """Engine backed by SymPy."""

    def __init__(self):
        self._bindings = {}
        self._declared = frozenset()

    # ── Bindings ────────────────────────────────────────────

    def reset(self, names=()):
        self._bindings = {}
        self._declared = frozenset(names)

    def assign(self, name, value):
        self._bindings[name] = value

    def unassign(self, name):
        self._bindings.pop(name, None)

    @property
    def bindings(self):
        return dict(self._bindings)

    # ── Parsing ─────────────────────────────────────────────

    def parse(self, text):
        if latex_parser.is_blank(text):
            return ParsedExpression(text, None)
        tex = latex_parser.preprocess(text)
        try:
            expr = self._parse_equation(tex)
            if expr is None:
                expr = latex_parser.parse(tex, self._declared)
        except EngineError:
            raise
        except Exception as exc:
            logger.debug('Parse failed for %r: %s', text, exc)
            raise ParseError(f"Could not parse '{text.strip()}'") from exc
        if not isinstance(expr, Basic):
            raise ParseError(f"Could not parse '{text.strip()}'")
        return ParsedExpression(text, expr)

    def _parse_equation(self, tex):
        """``lhs = rhs`` that is not an assignment parses as an equation."""
        if tex.count('=') != 1 or re.search(r'[<>!]=', tex):
            return None
        lhs, rhs = tex.split('=')
        if not lhs.strip() or not rhs.strip():
            raise ParseError('Equation is missing a side')
        return Eq(
            latex_parser.parse(lhs.strip(), self._declared),
            latex_parser.parse(rhs.strip(), self._declared),
        )

    @staticmethod
    def canonical_name(symbol):
        return latex_parser.sanitize_name(str(symbol))

    def free_variables(self, parsed):
        if parsed.expr is None:
            return set()
        return {self.canonical_name(s) for s in parsed.expr.free_symbols}

    # ── Evaluation ──────────────────────────────────────────

    def evaluate(self, parsed):
        if parsed.expr is None:
            return NOTHING
        expr = parsed.expr
        try:
            subs = {}
            for sym in expr.free_symbols:
                name = self.canonical_name(sym)
                if name in self._bindings:
                    subs[sym] = self._bindings[name]
            if subs:
                expr = expr.subs(subs)
            if hasattr(expr, 'doit'):
                expr = expr.doit()
            value = N(expr) if hasattr(expr, 'evalf') else expr
        except EngineError:
            raise
        except Exception as exc:
            raise EvaluationError(str(exc) or type(exc).__name__) from exc

        if isinstance(value, Basic):
            if value.has(S.NaN):
                raise EvaluationError('Result is undefined')
            if value.has(S.ComplexInfinity):
                raise EvaluationError('Division by zero')
        return value

    # ── Formatting ──────────────────────────────────────────

    def format(self, value, options=None):
        options = options or FormatOptions()
        if self.is_nothing(value):
            return ''
        if getattr(value, 'is_number', False):
            if value.is_extended_real:
                return format_real(float(value), options)
            re_part, im_part = value.as_real_imag()
            if re_part.is_extended_real and im_part.is_extended_real:
                return self._format_complex(float(re_part), float(im_part), options)
        return latex(value, full_prec=False)

    @staticmethod
    def _format_complex(re_part, im_part, options):
        im_text = format_real(abs(im_part), options)
        im_text = 'i' if im_text == '1' else f'{im_text}i'
        if re_part == 0:
            return f'-{im_text}' if im_part < 0 else im_text
        sign = '-' if im_part < 0 else '+'
        return f'{format_real(re_part, options)}{sign}{im_text}'
