"""
evaluator.py — Memoized dependency evaluation over all math fields
===================================================================
One *pass* takes a snapshot of the expression store (field id → raw text),
classifies every field, and evaluates every variable exactly once in
dependency order.

Each variable moves through ``UNVISITED → IN_PROGRESS → DONE``.  The walk is
depth-first on an explicit stack, so a long chain of definitions can never
exhaust the interpreter's recursion limit.  Before the walk, every name whose
longest dependency chain exceeds ``max_depth`` is failed up front, measured on
the graph of strongly connected components.

Meeting an ``IN_PROGRESS`` variable means a cycle: every variable in that strongly connected component is failed with a
circular-dependency error, which keeps the result independent of the order
in which the driver visits names.

Engine failures never escape a pass; they become per-field ``Error``
outcomes and every independent field still evaluates.
"""

import logging

from mathdocs.bindings import SYNTHETIC_PREFIX, UNASSIGN, build_dependency_maps
from mathdocs.errors import CircularDependencyError, ParseError
from mathdocs.formatting import FormatOptions

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 500

# Error kinds
PARSE = 'parse'
CIRCULAR = 'circular'
EVALUATION = 'evaluation'

# Variable states
UNVISITED = 'unvisited'
IN_PROGRESS = 'in_progress'
DONE = 'done'


# ── Outcomes ────────────────────────────────────────────────

class Outcome:
    status = None

    def __eq__(self, other):
        return type(self) is type(other) and vars(self) == vars(other)

    def __hash__(self):
        return hash((type(self), tuple(sorted(vars(self).items()))))

    def to_dict(self):
        return {'status': self.status, **vars(self)}


class Value(Outcome):
    """Successful evaluation, formatted for display."""

    status = 'value'

    def __init__(self, text):
        self.text = text

    def __repr__(self):
        return f'Value({self.text!r})'


class Error(Outcome):
    """Field-scoped failure: parse, circular or evaluation."""

    status = 'error'

    def __init__(self, kind, message):
        self.kind = kind
        self.message = message

    def __repr__(self):
        return f'Error({self.kind!r}, {self.message!r})'


class Empty(Outcome):
    """Nothing to display."""

    status = 'empty'

    def __repr__(self):
        return 'Empty()'


class PassResult:
    """Everything one evaluation pass produced."""

    def __init__(self, outcomes, bindings, dependencies, values):
        self.outcomes = outcomes
        self.bindings = bindings
        self.dependencies = dependencies
        self.values = values

    @property
    def results(self):
        return {fid: o.text for fid, o in self.outcomes.items() if isinstance(o, Value)}

    @property
    def errors(self):
        return {fid: o.message for fid, o in self.outcomes.items() if isinstance(o, Error)}


# ── Pass ────────────────────────────────────────────────────

class _Frame:
    __slots__ = ('name', 'deps', 'index')

    def __init__(self, name, deps):
        self.name = name
        self.deps = deps
        self.index = 0


class _Pass:

    def __init__(self, maps, engine, options, max_depth):
        self.maps = maps
        self.engine = engine
        self.options = options
        self.max_depth = max_depth
        self.binding_by_name = {b.name: b for b in maps.bindings.values()}

        self.state = dict.fromkeys(maps.expr_by_name, UNVISITED)
        self.values = {}
        self.failures = {}
        self.empty = set()
        self._parsed = {}

    # ── Parsing / dependencies ──

    def parsed(self, name):
        """(parsed expression, dependency names) or an Error, computed once."""
        if name in self._parsed:
            return self._parsed[name]
        text = self.maps.expr_by_name[name]
        try:
            expr = self.engine.parse(text)
            deps = sorted(
                n for n in self.engine.free_variables(expr)
                if n in self.maps.expr_by_name and not n.startswith(SYNTHETIC_PREFIX)
            )
            entry = (expr, deps)
        except ParseError as exc:
            entry = Error(PARSE, str(exc))
        except Exception as exc:
            logger.debug('Engine failed parsing %r: %s', text, exc)
            entry = Error(PARSE, str(exc) or type(exc).__name__)
        self._parsed[name] = entry
        return entry

    def dependencies(self, name):
        if self._pre_resolved(name) is not None:
            return []
        entry = self.parsed(name)
        return [] if isinstance(entry, Error) else entry[1]

    def _pre_resolved(self, name):
        """Outcome decided without parsing, or None."""
        binding = self.binding_by_name[name]
        if binding.field_id in self.maps.conflicts:
            return Error(EVALUATION, f"Variable '{self.maps.conflicts[binding.field_id]}' is already defined")
        if binding.kind == UNASSIGN or not binding.expression.strip():
            return Empty()
        return None

    # ── State transitions ──

    def fail(self, name, error):
        if name not in self.failures:
            self.failures[name] = error
        self.state[name] = DONE

    def succeed(self, name, value):
        self.values[name] = value
        self.state[name] = DONE

    def mark_empty(self, name):
        self.empty.add(name)
        self.state[name] = DONE
        try:
            self.engine.unassign(name)
        except Exception as exc:
            logger.debug('Unassigning %s failed: %s', name, exc)

    def enter(self, name, stack):
        """UNVISITED → IN_PROGRESS; pushes a frame unless resolved on the spot."""
        self.state[name] = IN_PROGRESS
        pre = self._pre_resolved(name)
        if isinstance(pre, Empty):
            self.mark_empty(name)
            return
        if pre is not None:
            self.fail(name, pre)
            return
        entry = self.parsed(name)
        if isinstance(entry, Error):
            self.fail(name, entry)
            return
        stack.append(_Frame(name, entry[1]))

    def mark_cycle(self, name):
        """Fail every unresolved variable on a cycle through ``name``."""
        reach = self._reachable(name)
        for member in sorted(reach):
            if self.state[member] is DONE:
                continue
            if name in self._reachable(member):
                self.fail(member, Error(CIRCULAR, str(CircularDependencyError(member))))

    def _reachable(self, start):
        seen = set()
        todo = list(self.dependencies(start))
        while todo:
            n = todo.pop()
            if n in seen:
                continue
            seen.add(n)
            todo.extend(self.dependencies(n))
        return seen

    def finish(self, name, parsed_expr):
        """All dependencies have values: evaluate and bind ``name``."""
        try:
            value = self.engine.evaluate(parsed_expr)
        except ParseError as exc:
            self.fail(name, Error(PARSE, str(exc)))
            return
        except Exception as exc:
            logger.debug('Evaluation of %s failed: %s', name, exc)
            self.fail(name, Error(EVALUATION, str(exc) or type(exc).__name__))
            return
        if self.engine.is_nothing(value):
            self.mark_empty(name)
            return
        try:
            self.engine.assign(name, value)
        except Exception as exc:
            self.fail(name, Error(EVALUATION, str(exc) or type(exc).__name__))
            return
        self.succeed(name, value)

    def dependency_error(self, dep):
        if dep in self.empty:
            return Error(EVALUATION, f"Variable '{dep}' has no value")
        return Error(EVALUATION, f"Cannot evaluate: '{dep}' has an error")

    # ── Depth ──

    def _components(self):
        """Strongly connected components of the dependency graph, sinks first."""
        index = {}
        low = {}
        on_stack = set()
        stack = []
        components = []
        for root in self.maps.expr_by_name:
            if root in index:
                continue
            index[root] = low[root] = len(index)
            stack.append(root)
            on_stack.add(root)
            work = [(root, iter(self.dependencies(root)))]
            while work:
                name, deps = work[-1]
                for dep in deps:
                    if dep not in index:
                        index[dep] = low[dep] = len(index)
                        stack.append(dep)
                        on_stack.add(dep)
                        work.append((dep, iter(self.dependencies(dep))))
                        break
                    if dep in on_stack:
                        low[name] = min(low[name], index[dep])
                else:
                    work.pop()
                    if work:
                        parent = work[-1][0]
                        low[parent] = min(low[parent], low[name])
                    if low[name] == index[name]:
                        component = []
                        while True:
                            member = stack.pop()
                            on_stack.discard(member)
                            component.append(member)
                            if member == name:
                                break
                        components.append(component)
        return components

    def fail_too_deep(self):
        """Fail every name whose dependency chain is longer than ``max_depth`` variables.

        Heights are taken over the component graph, so the outcome does not
        depend on which name a walk starts from.
        """
        height = {}
        for component in self._components():
            members = set(component)
            h = 0
            for name in component:
                for dep in self.dependencies(name):
                    if dep not in members:
                        h = max(h, height[dep] + 1)
            for name in component:
                height[name] = h
            if h >= self.max_depth:
                for name in component:
                    self.fail(name, Error(
                        EVALUATION,
                        f'Dependency chain is deeper than {self.max_depth} variables',
                    ))

    # ── Driver ──

    def visit(self, root):
        if self.state[root] is DONE:
            return
        stack = []
        self.enter(root, stack)
        while stack:
            frame = stack[-1]
            name = frame.name
            if self.state[name] is DONE:
                # resolved while waiting, e.g. failed as part of a cycle
                stack.pop()
                continue
            if frame.index == len(frame.deps):
                stack.pop()
                self.finish(name, self.parsed(name)[0])
                continue

            dep = frame.deps[frame.index]
            dep_state = self.state[dep]
            if dep_state is DONE:
                if dep in self.values:
                    frame.index += 1
                else:
                    self.fail(name, self.dependency_error(dep))
                    stack.pop()
            elif dep_state is IN_PROGRESS:
                self.mark_cycle(dep)
            else:
                self.enter(dep, stack)

    def run(self):
        names = [n for n in self.maps.expr_by_name if not self.binding_by_name[n].is_synthetic]
        try:
            self.engine.reset(names)
        except Exception as exc:
            logger.warning('Engine reset failed: %s', exc)
            for name in self.maps.expr_by_name:
                self.fail(name, Error(EVALUATION, f"Engine unavailable: {exc}"))
            return self.collect()
        self.fail_too_deep()
        for name in self.maps.expr_by_name:
            self.visit(name)
        return self.collect()

    def collect(self):
        outcomes = {}
        for field_id, binding in self.maps.bindings.items():
            name = binding.name
            if name in self.failures:
                outcomes[field_id] = self.failures[name]
            elif name in self.values:
                outcomes[field_id] = self._format(name)
            else:
                outcomes[field_id] = Empty()
        dependencies = {n: self.dependencies(n) for n in self.maps.expr_by_name}
        return PassResult(outcomes, self.maps.bindings, dependencies, dict(self.values))

    def _format(self, name):
        try:
            text = self.engine.format(self.values[name], self.options)
        except Exception as exc:
            logger.debug('Formatting %s failed: %s', name, exc)
            return Error(EVALUATION, str(exc) or type(exc).__name__)
        return Value(text) if text else Empty()


def evaluate_all(expressions, engine, options=None, max_depth=DEFAULT_MAX_DEPTH):
    """
    Run one full evaluation pass.

    Args:
        expressions: mapping field id → raw expression text.
        engine: an ``mathdocs.engine.Engine``; its bindings are reset first.
        options: ``FormatOptions`` for numeric results.
        max_depth: longest dependency chain followed before giving up.

    Returns:
        PassResult with ``outcomes``, ``results`` and ``errors`` keyed by field id.
    """
    maps = build_dependency_maps(expressions)
    run = _Pass(maps, engine, options or FormatOptions(), max_depth)
    result = run.run()
    logger.debug(
        'Evaluated %d fields: %d values, %d errors',
        len(result.outcomes), len(result.results), len(result.errors),
    )
    return result
