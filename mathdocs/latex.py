"""
latex.py — LaTeX → SymPy parsing for math-field input
======================================================
Math fields deliver LaTeX (``\\frac{1}{2}``, ``x_{1}``, ``2\\cdot x``).  This
module normalises that text and turns it into a SymPy expression:

  • LaTeX with backslash commands goes through ``sympy.parsing.latex``
    (ANTLR back-end) first
  • anything else, anything naming a multi-letter declared variable, or
    anything the LaTeX parser rejects, is rewritten into
    algebraic notation and handed to ``parse_expr`` with implicit
    multiplication enabled

Names the caller declares (user variables) are kept as single symbols, so
``rate`` does not become ``r*a*t*e``.
"""

import re

import sympy
from sympy import Symbol, pi, E, I, oo, sympify
from sympy.parsing.latex import parse_latex
from sympy.parsing.sympy_parser import (
    parse_expr,
    standard_transformations,
    implicit_multiplication_application,
    convert_xor,
)

_TRANSFORMATIONS = standard_transformations + (implicit_multiplication_application, convert_xor)

# ── Names ───────────────────────────────────────────────────

_NAME_RE = re.compile(r'^[A-Za-z][A-Za-z0-9_]*$')

# Names the parser maps onto SymPy constants; they cannot be assigned.
RESERVED_NAMES = {'e', 'i', 'pi', 'E', 'I', 'oo', 'inf', 'infty'}


def sanitize_name(name):
    r"""Strip LaTeX decoration from a variable name:  \alpha → alpha,  x_{1} → x_1."""
    return re.sub(r'[\\{}]', '', name).strip()


def is_valid_name(name):
    return bool(_NAME_RE.match(name)) and name not in RESERVED_NAMES


# Known function / constant names that should NOT become Symbol products
_KNOWN_NAMES = {
    'sin', 'cos', 'tan', 'cot', 'sec', 'csc',
    'asin', 'acos', 'atan', 'atan2',
    'arcsin', 'arccos', 'arctan',
    'sinh', 'cosh', 'tanh', 'coth',
    'asinh', 'acosh', 'atanh',
    'sqrt', 'cbrt', 'root', 'abs', 'Abs',
    'log', 'ln', 'exp',
    'factorial', 'binomial',
    'floor', 'ceiling', 'ceil',
    'gcd', 'lcm',
    'pi', 'oo', 'inf',
    'Rational', 'Integer', 'Float',
    'True', 'False',
}

# Multi-character names that must be preserved as single symbols
# (not split by implicit_multiplication_application).
_MULTICHAR_SYMBOLS = {
    'alpha', 'beta', 'gamma', 'delta', 'epsilon', 'varepsilon',
    'zeta', 'eta', 'theta', 'vartheta',
    'iota', 'kappa', 'mu', 'nu', 'xi',
    'rho', 'sigma', 'tau', 'upsilon', 'phi', 'varphi',
    'chi', 'psi', 'omega',
    'Gamma', 'Delta', 'Theta', 'Lambda', 'Xi',
    'Sigma', 'Upsilon', 'Phi', 'Psi', 'Omega',
    'infty', 'infinity',
}

# Symbols replaced with SymPy constants after parsing
_CONSTANT_SUBS = {
    Symbol('pi'): pi,
    Symbol('e'): E,
    Symbol('i'): I,
    Symbol('oo'): oo,
    Symbol('inf'): oo,
    Symbol('infty'): oo,
    Symbol('infinity'): oo,
}

# parse_expr evaluates Python; anything beyond arithmetic on names is refused
_UNSAFE_RE = re.compile(r'__|[\'"`;]|[A-Za-z_)\]]\s*\.\s*[A-Za-z_]')

# Namespace for parse_expr: SymPy only, no Python builtins
_GLOBALS = {name: getattr(sympy, name) for name in sympy.__all__}
_GLOBALS['__builtins__'] = {}
_GLOBALS.update({
    'abs': _GLOBALS['Abs'],
    'ceil': _GLOBALS['ceiling'],
    'arcsin': _GLOBALS['asin'],
    'arccos': _GLOBALS['acos'],
    'arctan': _GLOBALS['atan'],
    'max': _GLOBALS['Max'],
    'min': _GLOBALS['Min'],
})


# ── Pre-processing ──────────────────────────────────────────

def preprocess(tex):
    """
    Clean and normalize LaTeX before parsing.
    Handles the markup math-input widgets commonly emit.
    """
    s = tex.strip()

    # \left( … \right) → ( … )
    s = s.replace(r'\left', '').replace(r'\right', '')

    # Spacing commands carry no meaning
    s = re.sub(r'\\(?:qquad|quad)(?![a-zA-Z])', ' ', s)
    s = re.sub(r'\\[,;:! ]', ' ', s)

    s = s.replace(r'\cdot', '*')
    s = s.replace(r'\times', '*')
    s = s.replace(r'\div', '/')

    # Widget-specific spellings of e and i
    s = s.replace(r'\exponentialE', 'e').replace(r'\imaginaryI', 'i')

    # \operatorname{f} / \mathrm{f} → f
    s = re.sub(r'\\(?:operatorname|mathrm|text)\{([^}]+)\}', r'\1', s)

    s = s.replace(r'\ln', r'\log')

    # Mixed plain/LaTeX input: give bare function names their backslash
    if re.search(r'\\[a-zA-Z]', s):
        s = re.sub(
            r'(?<![\w\\])(sin|cos|tan|cot|sec|csc|arcsin|arccos|arctan'
            r'|sinh|cosh|tanh|coth|exp|log)(?=\s*[\(\{])',
            r'\\\1', s)

    # ^x → ^{x} for a single non-brace, non-backslash char
    s = re.sub(r'\^\s*([^{\\\s])', r'^{\1}', s)

    return s.strip()


def is_blank(tex):
    """True when nothing but braces and whitespace is left after cleaning."""
    return not re.sub(r'[{}\s]', '', preprocess(tex))


# ── Parsing ─────────────────────────────────────────────────

def fix_constants(expr):
    """Replace pi/e/i Symbols with their SymPy constant counterparts."""
    subs = {}
    for sym in getattr(expr, 'free_symbols', ()):
        if sym in _CONSTANT_SUBS:
            subs[sym] = _CONSTANT_SUBS[sym]
    return expr.subs(subs) if subs else expr


def _group(s, pos):
    """``(inner, end)`` for the brace group opening at ``s[pos]``, else ``(None, pos)``."""
    if not s.startswith('{', pos):
        return None, pos
    depth = 0
    for end, ch in enumerate(s[pos:], pos):
        depth += {'{': 1, '}': -1}.get(ch, 0)
        if depth == 0:
            return s[pos + 1:end], end + 1
    return None, pos


def latex_to_algebra(tex):
    r"""Rewrite \frac, \sqrt and ^{...} into Python operators in one scan."""
    out = []
    i = 0
    while i < len(tex):
        if tex.startswith(r'\frac', i):
            num, j = _group(tex, i + 5)
            den, k = _group(tex, j)
            if num is not None and den is not None:
                out.append(f'(({latex_to_algebra(num)})/({latex_to_algebra(den)}))')
                i = k
                continue
        elif tex.startswith(r'\sqrt', i):
            j = i + 5
            index = None
            if tex.startswith('[', j) and ']' in tex[j:]:
                close = tex.index(']', j)
                index, j = tex[j + 1:close], close + 1
            arg, k = _group(tex, j)
            if arg is not None:
                arg = latex_to_algebra(arg)
                if index is None:
                    out.append(f'sqrt({arg})')
                else:
                    out.append(f'(({arg})**(1/({latex_to_algebra(index)})))')
                i = k
                continue
        elif tex.startswith('^{', i):
            power, k = _group(tex, i + 1)
            if power is not None:
                out.append(f'**({latex_to_algebra(power)})')
                i = k
                continue
        out.append(tex[i])
        i += 1
    return ''.join(out).replace('{', '(').replace('}', ')')


def _bare_words(tex):
    """Identifiers in ``tex`` that are not LaTeX command names."""
    return set(re.findall(r'(?<![\\A-Za-z])[A-Za-z][A-Za-z0-9]*', tex))


def parse(tex, known_names=()):
    """
    Parse (already pre-processed) LaTeX into a SymPy expression.

    ``known_names`` are kept as single symbols.  ``parse_latex`` reads every
    letter as its own symbol, so text mentioning a multi-letter known name
    always takes the algebraic route.
    Raises whatever the underlying parser raises.
    """
    multi_letter = {n for n in known_names if len(n) > 1}
    if re.search(r'\\[a-zA-Z]', tex) and not (_bare_words(tex) & multi_letter):
        try:
            return fix_constants(parse_latex(tex))
        except Exception:
            pass  # fall through to algebra conversion

    # Subscript braces first so x_{1} becomes the identifier x_1
    cleaned = re.sub(r'_\{([^{}]*)\}', lambda m: '_' + sanitize_name(m.group(1)), tex)
    cleaned = latex_to_algebra(cleaned)
    cleaned = re.sub(r'\\([a-zA-Z]+)', r'\1', cleaned)

    if _UNSAFE_RE.search(cleaned):
        raise ValueError('Unsupported syntax')

    local = {}
    for n in set(re.findall(r'[a-zA-Z_]\w*', cleaned)):
        if n in known_names or n in _MULTICHAR_SYMBOLS:
            local[n] = Symbol(n)
        elif n in _KNOWN_NAMES:
            continue
        elif len(n) == 1 and n not in ('E', 'I'):
            local[n] = Symbol(n)
        # other multi-letter words are split by implicit multiplication
    result = parse_expr(
        cleaned,
        transformations=_TRANSFORMATIONS,
        local_dict=local,
        global_dict=_GLOBALS,
    )
    return fix_constants(sympify(result))
