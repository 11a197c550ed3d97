"""
test_evaluator.py — Memoized dependency evaluation.

Most cases use the fake engine from conftest.py so failures can be injected;
the last section repeats the key properties against SymPy.
"""
import random

import pytest

from mathdocs.bindings import EXPRESSION
from mathdocs.engine import SympyEngine
from mathdocs.evaluator import (
    CIRCULAR, EVALUATION, PARSE,
    Empty, Error, Value, evaluate_all,
)


def run(store, engine, **kwargs):
    return evaluate_all(store, engine, **kwargs)


# ── Dependencies ────────────────────────────────────────────

def test_dependency_propagation(fake_engine):
    result = run({'A': 'x = 2', 'B': 'y = x + 3'}, fake_engine)
    assert result.outcomes == {'A': Value('2'), 'B': Value('5')}
    assert result.errors == {}


def test_chain_of_dependencies(fake_engine):
    result = run({'A': 'c = b + 1', 'B': 'b = a + 1', 'C': 'a = 2', 'D': 'c + c'}, fake_engine)
    assert result.results == {'A': '4', 'B': '3', 'C': '2', 'D': '8'}


def test_shared_dependency_evaluated_once(fake_engine):
    run({'A': 'x = 2', 'B': 'y = x + 1', 'C': 'z = x + 2', 'D': 'x + y + z'}, fake_engine)
    assert fake_engine.evaluated.count(('2',)) == 1


def test_undefined_name_is_evaluation_error(fake_engine):
    result = run({'A': 'q + 1'}, fake_engine)
    assert result.outcomes['A'] == Error(EVALUATION, 'Unknown variable q')


def test_bare_expression_bound_under_synthetic_name(fake_engine):
    result = run({'A': '4 + 5'}, fake_engine)
    assert result.results == {'A': '9'}
    assert fake_engine.bindings == {'_expr_A': 9}


# ── Cycles ──────────────────────────────────────────────────

def test_two_variable_cycle(fake_engine):
    result = run({'A': 'x = y', 'B': 'y = x'}, fake_engine)
    assert result.outcomes['A'] == Error(CIRCULAR, 'Circular dependency detected for variable x')
    assert result.outcomes['B'] == Error(CIRCULAR, 'Circular dependency detected for variable y')
    assert result.results == {}


def test_self_reference(fake_engine):
    result = run({'A': 'x = x + 1'}, fake_engine)
    assert result.outcomes['A'].kind == CIRCULAR


def test_dependent_of_cycle_fails_without_circular_error(fake_engine):
    result = run({'A': 'x = y', 'B': 'y = x', 'C': 'z = x + 1', 'D': '7'}, fake_engine)
    assert result.outcomes['C'] == Error(EVALUATION, "Cannot evaluate: 'x' has an error")
    assert result.outcomes['D'] == Value('7')


def test_three_variable_cycle_reported_on_every_member(fake_engine):
    store = {'A': 'a = b', 'B': 'b = c', 'C': 'c = a + 1'}
    result = run(store, fake_engine)
    assert {o.kind for o in result.outcomes.values()} == {CIRCULAR}


# ── Failures ────────────────────────────────────────────────

def test_parse_error_is_field_scoped(fake_engine):
    result = run({'A': 'x = 2 *', 'B': '3'}, fake_engine)
    assert result.outcomes['A'].kind == PARSE
    assert result.outcomes['B'] == Value('3')


def test_engine_exception_does_not_escape(fake_engine):
    result = run({'A': 'x = boom', 'B': 'y = 4'}, fake_engine)
    assert result.outcomes['A'] == Error(EVALUATION, 'engine exploded')
    assert result.outcomes['B'] == Value('4')


def test_failed_dependency_propagates(fake_engine):
    result = run({'A': 'x = boom', 'B': 'y = x + 1'}, fake_engine)
    assert result.outcomes['B'] == Error(EVALUATION, "Cannot evaluate: 'x' has an error")


def test_failing_dependent_leaves_dependency_intact(fake_engine):
    result = run({'A': 'x = 2', 'B': 'y = x + boom'}, fake_engine)
    assert result.outcomes['A'] == Value('2')
    assert result.outcomes['B'].kind == EVALUATION


def test_reset_failure_fails_every_field(fake_engine):
    def broken_reset(names=()):
        raise RuntimeError('no engine')
    fake_engine.reset = broken_reset
    result = run({'A': '1', 'B': 'x = 2'}, fake_engine)
    assert set(result.errors) == {'A', 'B'}


def test_format_failure_becomes_error(fake_engine):
    def broken_format(value, options=None):
        raise ValueError('cannot display')
    fake_engine.format = broken_format
    result = run({'A': '1'}, fake_engine)
    assert result.outcomes['A'] == Error(EVALUATION, 'cannot display')


def test_depth_limit(fake_engine):
    store = {f'f{i}': f'v{i} = v{i + 1} + 1' for i in range(20)}
    store['f20'] = 'v20 = 0'
    result = run(store, fake_engine, max_depth=5)
    assert result.errors
    assert any('deeper than 5' in msg for msg in result.errors.values())

    result = run(store, fake_engine, max_depth=50)
    assert result.results['f0'] == '20'


def test_long_chain_does_not_hit_recursion_limit(fake_engine):
    n = 3000
    store = {f'f{i}': f'v{i} = v{i + 1} + 1' for i in range(n)}
    store[f'f{n}'] = f'v{n} = 0'
    result = run(store, fake_engine, max_depth=n + 10)
    assert result.results['f0'] == str(n)


# ── Empty ───────────────────────────────────────────────────

@pytest.mark.parametrize('text', ['', '   ', '\t'])
def test_blank_text_is_empty(fake_engine, text):
    result = run({'A': text}, fake_engine)
    assert result.outcomes['A'] == Empty()
    assert result.results == {}
    assert result.errors == {}


def test_nothing_sentinel_is_empty(fake_engine):
    result = run({'A': 'nothing'}, fake_engine)
    assert result.outcomes['A'] == Empty()
    assert 'A' not in result.errors


def test_unassigned_variable_has_no_value(fake_engine):
    result = run({'A': 'x = ', 'B': 'y = x + 3'}, fake_engine)
    assert result.outcomes['A'] == Empty()
    assert result.outcomes['B'] == Error(EVALUATION, "Variable 'x' has no value")


def test_duplicate_definition(fake_engine):
    result = run({'b': 'x = 2', 'a': 'x = 1', 'c': 'x + 1'}, fake_engine)
    assert result.outcomes['a'] == Value('1')
    assert result.outcomes['b'] == Error(EVALUATION, "Variable 'x' is already defined")
    assert result.outcomes['c'] == Value('2')


# ── Pass properties ─────────────────────────────────────────

STORE = {
    'A': 'x = 2',
    'B': 'y = x + 3',
    'C': 'p = q',
    'D': 'q = p + 1',
    'E': 'r = q + y',
    'F': 'z = boom',
    'G': 'w = z + x',
    'H': '',
    'I': 'y + x',
    'J': 'k = ',
    'K': 'k + 1',
}


def test_idempotent(fake_engine):
    first = run(STORE, fake_engine)
    second = run(STORE, fake_engine)
    assert first.outcomes == second.outcomes
    assert first.results == second.results
    assert first.errors == second.errors


def test_order_independent(fake_engine):
    expected = run(STORE, fake_engine).outcomes
    keys = list(STORE)
    rng = random.Random(1234)
    orders = [list(reversed(keys))]
    for _ in range(30):
        order = keys[:]
        rng.shuffle(order)
        orders.append(order)
    for order in orders:
        shuffled = {k: STORE[k] for k in order}
        assert run(shuffled, fake_engine).outcomes == expected


def test_each_pass_resets_bindings(fake_engine):
    run({'A': 'x = 5'}, fake_engine)
    result = run({'B': 'x + 1'}, fake_engine)
    assert result.outcomes['B'] == Error(EVALUATION, 'Unknown variable x')
    assert fake_engine.resets == 2


def test_dependencies_reported(fake_engine):
    result = run({'A': 'x = 2', 'B': 'y = x + 3'}, fake_engine)
    assert result.dependencies['y'] == ['x']
    assert result.dependencies['x'] == []


# ── SymPy engine ────────────────────────────────────────────

def test_sympy_dependency_propagation():
    result = run({'A': 'x = 2', 'B': 'y = x + 3'}, SympyEngine())
    assert result.results == {'A': '2', 'B': '5'}


def test_sympy_cycle():
    result = run({'A': 'x = y', 'B': 'y = x'}, SympyEngine())
    assert result.results == {}
    assert result.outcomes['A'].kind == CIRCULAR
    assert result.outcomes['B'].kind == CIRCULAR


def test_sympy_empty_rhs_removes_variable():
    engine = SympyEngine()
    before = run({'A': 'x = 5', 'B': 'y = x + 1'}, engine)
    assert before.results['B'] == '6'
    after = run({'A': 'x = ', 'B': 'y = x + 1'}, engine)
    assert 'B' not in after.results
    assert after.outcomes['B'].kind == EVALUATION


def test_sympy_multi_letter_names():
    result = run({'A': 'rate = 2', 'B': 'cost = rate * 3'}, SympyEngine())
    assert result.results['B'] == '6'


def test_sympy_subscripted_names():
    result = run({'A': 'x_{1} = 3', 'B': 'x_{1} + 1'}, SympyEngine())
    assert result.results['B'] == '4'


def test_sympy_division_by_zero_is_field_scoped():
    result = run({'A': '1/0', 'B': '2 + 2'}, SympyEngine())
    assert result.outcomes['A'] == Error(EVALUATION, 'Division by zero')
    assert result.results['B'] == '4'


def test_sympy_parse_error():
    result = run({'A': 'x = 2 +'}, SympyEngine())
    assert result.outcomes['A'].kind == PARSE


def test_sympy_double_equals_is_not_assignment():
    result = run({'A': 'x == 5', 'B': 'x = 1', 'C': 'x + 1'}, SympyEngine())
    assert result.results['C'] == '2'
    assert result.bindings['A'].kind == EXPRESSION


def test_sympy_multi_letter_names_in_latex():
    store = {'A': 'rate = 4', 'B': r'half = \frac{rate}{2}', 'C': r'\sqrt{rate} + half'}
    result = run(store, SympyEngine())
    assert result.results == {'A': '4', 'B': '2', 'C': '4'}
    assert result.dependencies['half'] == ['rate']


def test_sympy_cycle_written_in_latex():
    result = run({'A': r'ab = \frac{cd}{2}', 'B': r'cd = \frac{ab}{2}'}, SympyEngine())
    assert result.results == {}
    assert result.outcomes['A'] == Error(CIRCULAR, 'Circular dependency detected for variable ab')
    assert result.outcomes['B'] == Error(CIRCULAR, 'Circular dependency detected for variable cd')


# ── Depth limit ─────────────────────────────────────────────

def _chain(n):
    store = {f'f{i:02d}': f'v{i} = v{i + 1} + 1' for i in range(n)}
    store[f'f{n:02d}'] = f'v{n} = 0'
    return store


def test_depth_limit_fails_only_deep_names(fake_engine):
    result = run(_chain(20), fake_engine, max_depth=5)
    too_deep = {f'f{i:02d}' for i in range(16)}
    assert set(result.errors) == too_deep
    assert all(msg == 'Dependency chain is deeper than 5 variables' for msg in result.errors.values())
    assert result.results == {f'f{i:02d}': str(20 - i) for i in range(16, 21)}


def test_depth_limit_is_order_independent(fake_engine):
    store = _chain(20)
    store.update({'g': 'w = v18 + 1', 'h': 'v3 + w'})
    expected = run(store, fake_engine, max_depth=5).outcomes
    keys = list(store)
    rng = random.Random(99)
    orders = [list(reversed(keys))]
    for _ in range(20):
        order = keys[:]
        rng.shuffle(order)
        orders.append(order)
    for order in orders:
        shuffled = {k: store[k] for k in order}
        assert run(shuffled, fake_engine, max_depth=5).outcomes == expected


def test_cycle_members_share_depth(fake_engine):
    store = {'A': 'a = b', 'B': 'b = a + c', 'C': 'c = d', 'D': 'd = 1'}
    result = run(store, fake_engine, max_depth=2)
    assert result.outcomes['A'].message == 'Dependency chain is deeper than 2 variables'
    assert result.outcomes['B'].message == 'Dependency chain is deeper than 2 variables'
    assert result.results == {'C': '1', 'D': '1'}
