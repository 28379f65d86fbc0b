import logging
import math
import re
import sqlite3
from collections import namedtuple

from .constants import LOGGER_NAME, NATIVE_COLUMNS
from .errors import ConflictError, QueryError
from .query import AnyOf, Condition, Op, Where, normalize_direction
from .utils import json_dumps, json_loads_object, new_id, now_iso

logger = logging.getLogger(LOGGER_NAME)

VirtualColumnSpec = namedtuple(
    "VirtualColumnSpec",
    "column json_path type indexed index_name",
    defaults=("TEXT", False, None),
)

_field_re = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*$")
_json_path_re = re.compile(r"^\$(?:\.[A-Za-z_][A-Za-z0-9_]*|\[\d+\])*$")

_COLUMNS = "id, data, created_at, updated_at"

# Bound value types a generated column of each declared type stores unchanged.
_NARROW_TYPES = {
    "TEXT": (str,),
    "INTEGER": (int,),
    "REAL": (int, float),
    "BLOB": (str, int, float),
}


class Model:
    """CRUD and search over one document table.

    Subclasses set ``table_name`` and describe their payload:

    - ``fields``: top-level payload keys that may be filtered or sorted on.
      Nested paths (``invitation.token``) are checked on their first segment.
      An empty tuple accepts any well-formed field name.
    - ``search_fields``: free-text fields matched by ``find_with_search``.
    - ``virtual_columns``: ``VirtualColumnSpec`` entries materialized as
      generated columns when the model registers.

    Documents are plain dicts: ``{"id", "created_at", "updated_at", **payload}``.
    """

    table_name = None
    fields = ()
    search_fields = ()
    virtual_columns = ()

    def __init__(self, store):
        if not self.table_name:
            raise TypeError(f"{type(self).__name__} must define table_name")
        self.store = store
        self._registered = False

    @property
    def name(self):
        return type(self).__name__

    def ensure_registered(self):
        if self._registered and self.store.has_table(self.table_name):
            return
        self.store.ensure_table(self.table_name)
        for spec in self.virtual_columns:
            self.store.create_virtual_column(self.table_name, spec.column, spec.json_path, spec.type)
            if spec.indexed:
                self.store.create_virtual_column_index(self.table_name, spec.column, spec.index_name)
        self._registered = True

    def get_virtual_columns(self):
        return self.store.get_virtual_columns(self.table_name)

    def serialize(self, doc):
        payload = {k: v for k, v in (doc or {}).items() if k not in NATIVE_COLUMNS}
        return json_dumps(payload)

    def deserialize(self, row):
        payload = json_loads_object(row["data"])
        doc = {
            "id": row["id"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }
        doc.update({k: v for k, v in payload.items() if k not in NATIVE_COLUMNS})
        return doc

    def _check_field(self, field):
        if not isinstance(field, str) or not _field_re.match(field):
            raise QueryError(f"invalid field name {field!r} for {self.table_name}")
        if field in NATIVE_COLUMNS:
            return field
        root = field.split(".", 1)[0]
        if self.fields and root not in self.fields:
            raise QueryError(f"unknown field {field!r} for {self.table_name}")
        return field

    def _resolve(self, field):
        self._check_field(field)
        if field in NATIVE_COLUMNS:
            return field, []
        return "json_extract(data, ?)", [f"$.{field}"]

    def _narrow(self, field, op, values):
        """Pre-filter on a generated column so its index can be used.

        The column stores values under its declared affinity, so it only
        narrows candidates; the ``json_extract`` comparison still decides.
        Skipped when a value's type could be coerced differently.
        """
        if field in NATIVE_COLUMNS:
            return None
        column = self.store.find_virtual_column(self.table_name, f"$.{field}")
        if column is None:
            return None
        name = f'"{column.column}"'
        if op is Op.IS_NULL:
            return f"{name} IS NULL", []
        accepted = _NARROW_TYPES.get(column.type)
        if accepted is None or not all(type(v) in accepted for v in values):
            return None
        if op is Op.IN:
            return f"{name} IN ({', '.join('?' for _ in values)})", list(values)
        return f"{name} = ?", list(values)

    def _where(self, where):
        self.ensure_registered()
        return Where.coerce(where).compile(self._resolve, self._narrow)

    def _order_by(self, order_by, order_direction):
        direction = normalize_direction(order_direction)
        expr, params = self._resolve(order_by or "created_at")
        return f"{expr} {direction}", params

    def _conn(self):
        self.ensure_registered()
        return self.store.connection

    def _execute(self, action, sql, params=()):
        try:
            return self._conn().execute(sql, list(params))
        except sqlite3.Error as exc:
            logger.error("Error %s in %s: %s", action, self.table_name, exc)
            raise

    def _fetch_docs(self, action, sql, params=()):
        rows = self._execute(action, sql, params).fetchall()
        return [self.deserialize(r) for r in rows]

    def _fetch_doc(self, action, sql, params=()):
        row = self._execute(action, sql, params).fetchone()
        return self.deserialize(row) if row else None

    @staticmethod
    def _envelope(data, total, page, limit):
        total_pages = math.ceil(total / limit) if limit else 0
        return {
            "data": data,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        }

    def create(self, payload):
        payload = dict(payload or {})
        doc_id = payload.pop("id", None) or new_id()
        payload.pop("created_at", None)
        payload.pop("updated_at", None)
        now = now_iso()
        try:
            self._execute(
                "creating document",
                f"INSERT INTO {self.table_name} (id, data, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (doc_id, self.serialize(payload), now, now),
            )
        except sqlite3.IntegrityError as exc:
            raise ConflictError(f"{self.table_name} document {doc_id!r} already exists") from exc
        logger.debug("created %s/%s", self.table_name, doc_id)
        return self.find_by_id(doc_id)

    def find_by_id(self, doc_id):
        return self._fetch_doc(
            "finding document by id",
            f"SELECT {_COLUMNS} FROM {self.table_name} WHERE id = ?",
            (doc_id,),
        )

    def find_one(self, where):
        clause, params = self._where(where)
        return self._fetch_doc(
            "finding document",
            f"SELECT {_COLUMNS} FROM {self.table_name} {clause} LIMIT 1",
            params,
        )

    def find_by_property(self, field, value):
        return self.find_one({field: value})

    def find_all_by_property(self, field, value):
        return self.find_many(where={field: value})

    def find_many(self, where=None, order_by="created_at", order_direction="DESC", limit=None, offset=None):
        clause, params = self._where(where)
        order_sql, order_params = self._order_by(order_by, order_direction)
        sql = f"SELECT {_COLUMNS} FROM {self.table_name} {clause} ORDER BY {order_sql}"
        params = params + order_params
        if limit:
            sql += " LIMIT ?"
            params.append(int(limit))
        if offset:
            if not limit:
                sql += " LIMIT -1"
            sql += " OFFSET ?"
            params.append(int(offset))
        return self._fetch_docs("finding documents", sql, params)

    def find_all(self, offset=0, limit=None):
        return self.find_many(limit=limit, offset=offset)

    def count(self, where=None):
        clause, params = self._where(where)
        row = self._execute(
            "counting documents",
            f"SELECT COUNT(*) AS total FROM {self.table_name} {clause}",
            params,
        ).fetchone()
        return int(row["total"] if row else 0)

    def find_with_pagination(self, page, limit, where=None, order_by="created_at", order_direction="DESC"):
        where = Where.coerce(where)
        total = self.count(where)
        data = self.find_many(
            where=where,
            order_by=order_by,
            order_direction=order_direction,
            limit=limit,
            offset=(page - 1) * limit,
        )
        return self._envelope(data, total, page, limit)

    def search(self, field, pattern):
        return self.find_many(
            where=Where(Condition(field, Op.LIKE, f"%{pattern}%")),
            order_by="created_at",
            order_direction="DESC",
        )

    def find_by_json_path(self, json_path, value):
        if not isinstance(json_path, str) or not _json_path_re.match(json_path):
            raise QueryError(f"invalid JSON path: {json_path!r}")
        if isinstance(value, bool):
            value = 1 if value else 0
        return self._fetch_docs(
            "finding documents by JSON path",
            f"SELECT {_COLUMNS} FROM {self.table_name} WHERE json_extract(data, ?) = ? ORDER BY created_at DESC",
            (json_path, value),
        )

    def find_with_search(
        self,
        page=1,
        limit=20,
        search=None,
        order_by="created_at",
        order_direction="DESC",
        filters=None,
    ):
        """Paginated listing with free-text search and equality filters.

        ``search`` matches the id exactly or any of ``search_fields`` as a
        substring. Each filter whose value is not ``None`` adds an equality
        condition (a list adds ``IN``). Filter keys are payload field names
        and go through the same validation as any other query. ``page`` and
        ``limit`` are trusted.
        """
        filters = dict(filters or {})
        where = Where()
        search = search.strip() if isinstance(search, str) else search
        if search:
            pattern = f"%{search}%"
            where.clauses.append(
                AnyOf(
                    Condition("id", Op.EQ, search),
                    *(Condition(field, Op.LIKE, pattern) for field in self.search_fields),
                )
            )
        for field, value in filters.items():
            if value is None:
                continue
            where.add(field, Op.IN if isinstance(value, (list, tuple, set)) else Op.EQ, value)

        logger.debug(
            "find_with_search table=%s page=%d limit=%d search=%r filters=%s order=%s %s",
            self.table_name,
            page,
            limit,
            search,
            sorted(k for k, v in filters.items() if v is not None),
            order_by,
            order_direction,
        )
        return self.find_with_pagination(
            page,
            limit,
            where=where,
            order_by=order_by,
            order_direction=order_direction,
        )

    def update(self, doc_id, changes):
        existing = self.find_by_id(doc_id)
        if existing is None:
            return None

        merged = dict(existing)
        merged.update({k: v for k, v in (changes or {}).items() if k not in NATIVE_COLUMNS})
        cur = self._execute(
            "updating document",
            f"UPDATE {self.table_name} SET data = ?, updated_at = ? WHERE id = ?",
            (self.serialize(merged), now_iso(), doc_id),
        )
        if cur.rowcount == 0:
            return None
        return self.find_by_id(doc_id)

    def update_json_properties(self, doc_id, properties):
        existing = self.find_by_id(doc_id)
        if existing is None:
            return None
        if not properties:
            return existing

        expr = "data"
        params = []
        for key, value in properties.items():
            if key in NATIVE_COLUMNS:
                raise QueryError(f"{key!r} cannot be set through update_json_properties")
            self._check_field(key)
            if value is None:
                expr = f"json_set({expr}, ?, NULL)"
                params.append(f"$.{key}")
            else:
                expr = f"json_set({expr}, ?, json(?))"
                params.extend([f"$.{key}", json_dumps(value)])

        cur = self._execute(
            "updating JSON properties",
            f"UPDATE {self.table_name} SET updated_at = ?, data = {expr} WHERE id = ?",
            [now_iso()] + params + [doc_id],
        )
        if cur.rowcount == 0:
            return None
        return self.find_by_id(doc_id)

    def delete(self, doc_id):
        cur = self._execute(
            "deleting document",
            f"DELETE FROM {self.table_name} WHERE id = ?",
            (doc_id,),
        )
        return cur.rowcount > 0

    def delete_many(self, where):
        clause, params = self._where(where)
        cur = self._execute(
            "deleting documents",
            f"DELETE FROM {self.table_name} {clause}",
            params,
        )
        return cur.rowcount
