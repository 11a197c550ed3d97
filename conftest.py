"""
Shared fixtures: a tiny fake engine for exercising the evaluator without SymPy.

Fake expressions are sums of integers and names:  ``a + b + 3``.
Special tokens:  ``boom`` raises a plain RuntimeError on evaluate,
``nothing`` evaluates to the engine's nothing sentinel.
"""
import re

import pytest

from mathdocs.engine import NOTHING, Engine
from mathdocs.errors import EvaluationError, ParseError

_TOKEN = re.compile(r'^(\d+|[A-Za-z_]\w*)$')


class FakeEngine(Engine):

    def __init__(self):
        self.bindings = {}
        self.declared = ()
        self.evaluated = []
        self.resets = 0
        self.on_evaluate = None

    def reset(self, names=()):
        self.bindings = {}
        self.declared = tuple(names)
        self.resets += 1

    def parse(self, text):
        tokens = [t.strip() for t in text.split('+')]
        if not all(_TOKEN.match(t) for t in tokens):
            raise ParseError(f"Could not parse '{text}'")
        return tokens

    def free_variables(self, parsed):
        return {t for t in parsed if not t.isdigit() and t not in ('boom', 'nothing')}

    def evaluate(self, parsed):
        self.evaluated.append(tuple(parsed))
        if self.on_evaluate is not None:
            self.on_evaluate(parsed)
        if 'boom' in parsed:
            raise RuntimeError('engine exploded')
        if parsed == ['nothing']:
            return NOTHING
        total = 0
        for t in parsed:
            if t.isdigit():
                total += int(t)
            elif t in self.bindings:
                total += self.bindings[t]
            else:
                raise EvaluationError(f'Unknown variable {t}')
        return total

    def assign(self, name, value):
        self.bindings[name] = value

    def unassign(self, name):
        self.bindings.pop(name, None)

    def format(self, value, options=None):
        return str(value)


@pytest.fixture
def fake_engine():
    return FakeEngine()
