"""
bindings.py — Classify field text and build the name → expression maps.

Every field maps to exactly one evaluable name: the left-hand side of an
assignment (``x = 5`` → ``x``) or a synthesized ``_expr_<field_id>``.
"""

from collections import namedtuple

from mathdocs.latex import is_valid_name, sanitize_name

ASSIGNMENT = 'assignment'
EXPRESSION = 'expression'
UNASSIGN = 'unassign'

SYNTHETIC_PREFIX = '_expr_'


class Binding(namedtuple('Binding', ['name', 'expression', 'field_id', 'kind'])):
    """A variable name paired with the text that defines it, for one pass."""

    __slots__ = ()

    @property
    def is_synthetic(self):
        return self.name.startswith(SYNTHETIC_PREFIX)


DependencyMaps = namedtuple(
    'DependencyMaps', ['expr_by_name', 'field_by_name', 'bindings', 'conflicts']
)


def synthetic_name(field_id):
    """Deterministic name for a field without an assignment."""
    return f'{SYNTHETIC_PREFIX}{field_id}'


def classify(field_id, text):
    """
    Decide whether ``text`` assigns a variable or is a bare expression.

    Only text with exactly one ``=`` whose left side is a valid variable name
    is an assignment.  An empty right side unassigns the variable.
    """
    text = text or ''
    parts = [p.strip() for p in text.split('=')]
    if len(parts) == 2 and parts[0]:
        name = sanitize_name(parts[0])
        if is_valid_name(name):
            if parts[1]:
                return Binding(name, parts[1], field_id, ASSIGNMENT)
            return Binding(name, '', field_id, UNASSIGN)
    return Binding(synthetic_name(field_id), text, field_id, EXPRESSION)


def build_dependency_maps(expressions):
    """
    Classify every field and index the bindings by variable name.

    ``expressions`` maps field id → raw text.  When several fields define the
    same name, the smallest field id keeps it; the others are entered under
    their synthesized names and reported in ``conflicts`` (field id → name).
    """
    classified = [classify(fid, text) for fid, text in expressions.items()]

    owners = {}
    for b in classified:
        if b.is_synthetic:
            continue
        current = owners.get(b.name)
        if current is None or str(b.field_id) < str(current.field_id):
            owners[b.name] = b

    expr_by_name = {}
    field_by_name = {}
    bindings = {}
    conflicts = {}
    for b in classified:
        if not b.is_synthetic and owners[b.name] is not b:
            conflicts[b.field_id] = b.name
            b = Binding(synthetic_name(b.field_id), b.expression, b.field_id, b.kind)
        expr_by_name[b.name] = b.expression
        field_by_name[b.name] = b.field_id
        bindings[b.field_id] = b
    return DependencyMaps(expr_by_name, field_by_name, bindings, conflicts)
