"""Small typed query builder for document tables.

Conditions name payload fields, never SQL. A resolver supplied by the model
turns each field into a SQL expression (native column or
``json_extract(data, ?)``) and every value is passed as a bound parameter.
An optional ``narrow`` hook may prepend an index-friendly pre-filter to
equality, ``IN`` and ``IS NULL`` conditions; the resolved comparison is kept
and still decides the match.
"""

import enum
from collections import namedtuple

from .errors import QueryError


class Op(enum.Enum):
    EQ = "="
    NE = "!="
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    LIKE = "LIKE"
    IN = "IN"
    IS_NULL = "IS NULL"
    NOT_NULL = "IS NOT NULL"


Condition = namedtuple("Condition", "field op value", defaults=(Op.EQ, None))

ORDER_DIRECTIONS = ("ASC", "DESC")


class AnyOf:
    """OR group of conditions."""

    def __init__(self, *conditions):
        self.conditions = list(conditions)

    def __bool__(self):
        return bool(self.conditions)


def _to_param(value):
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (dict, list, tuple, set)):
        raise QueryError(f"unsupported comparison value: {value!r}")
    return value


_NARROWABLE = (Op.EQ, Op.IN, Op.IS_NULL)


def _compile_comparison(cond, op, expr, params):
    if op in (Op.IS_NULL, Op.NOT_NULL):
        return f"{expr} {op.value}", params, []

    if op is Op.IN:
        if not isinstance(cond.value, (list, tuple, set)):
            raise QueryError(f"IN expects a list of values for {cond.field!r}")
        values = [_to_param(v) for v in cond.value]
        placeholders = ", ".join("?" for _ in values)
        return f"{expr} IN ({placeholders})", params + values, values

    if op is Op.LIKE and not isinstance(cond.value, str):
        raise QueryError(f"LIKE expects a string pattern for {cond.field!r}")

    value = _to_param(cond.value)
    return f"{expr} {op.value} ?", params + [value], [value]


def _compile_condition(cond, resolve, narrow=None):
    op = cond.op
    if not isinstance(op, Op):
        raise QueryError(f"unsupported operator: {op!r}")
    if cond.value is None and op in (Op.EQ, Op.NE):
        op = Op.IS_NULL if op is Op.EQ else Op.NOT_NULL

    expr, params = resolve(cond.field)
    if op is Op.IN and isinstance(cond.value, (list, tuple, set)) and not cond.value:
        return "0 = 1", []
    sql, params, values = _compile_comparison(cond, op, expr, list(params))

    if narrow is not None and op in _NARROWABLE:
        hint = narrow(cond.field, op, values)
        if hint is not None:
            hint_sql, hint_params = hint
            return f"({hint_sql} AND {sql})", list(hint_params) + params
    return sql, params


class Where:
    """AND of conditions and OR groups."""

    def __init__(self, *clauses):
        self.clauses = list(clauses)

    @classmethod
    def from_mapping(cls, mapping):
        where = cls()
        for field, value in (mapping or {}).items():
            if isinstance(value, (list, tuple, set)):
                where.add(field, Op.IN, list(value))
            else:
                where.add(field, Op.EQ, value)
        return where

    @classmethod
    def coerce(cls, where):
        if where is None:
            return cls()
        if isinstance(where, Where):
            return where
        if isinstance(where, dict):
            return cls.from_mapping(where)
        if isinstance(where, (Condition, AnyOf)):
            return cls(where)
        raise QueryError(f"unsupported where clause: {where!r}")

    def add(self, field, op=Op.EQ, value=None):
        self.clauses.append(Condition(field, op, value))
        return self

    def any_of(self, *conditions):
        if conditions:
            self.clauses.append(AnyOf(*conditions))
        return self

    def __bool__(self):
        return any(self.clauses)

    def compile(self, resolve, narrow=None):
        """Return ``(sql, params)``; ``sql`` is empty or starts with ``WHERE``."""
        parts = []
        params = []
        for clause in self.clauses:
            if isinstance(clause, AnyOf):
                if not clause:
                    continue
                group = [_compile_condition(c, resolve, narrow) for c in clause.conditions]
                parts.append("(" + " OR ".join(sql for sql, _ in group) + ")")
                for _, group_params in group:
                    params.extend(group_params)
            elif isinstance(clause, Condition):
                sql, clause_params = _compile_condition(clause, resolve, narrow)
                parts.append(sql)
                params.extend(clause_params)
            else:
                raise QueryError(f"unsupported where clause: {clause!r}")
        if not parts:
            return "", []
        return "WHERE " + " AND ".join(parts), params


def normalize_direction(direction):
    normalized = str(direction or "DESC").strip().upper()
    if normalized not in ORDER_DIRECTIONS:
        raise QueryError(f"order direction must be ASC or DESC, got {direction!r}")
    return normalized
