import logging
import sqlite3

from ..base_model import Model, VirtualColumnSpec
from ..constants import LOGGER_NAME
from ..errors import StoreError
from ..query import AnyOf, Condition, Op, Where

logger = logging.getLogger(LOGGER_NAME)


class TestDataGroupModel(Model):
    """Named collections of test inputs; ``mode`` is ``raw`` or ``json``."""

    __test__ = False

    table_name = "test_data_groups"
    fields = ("name", "description", "mode")
    search_fields = ("name", "description")

    def find_by_name(self, name):
        return self.find_one({"name": name})

    def search_by_name(self, pattern):
        return self.search("name", pattern)


class TestDataItemModel(Model):
    __test__ = False

    table_name = "test_data_items"
    fields = ("group_id", "name", "content")
    search_fields = ("name", "content")
    virtual_columns = (VirtualColumnSpec("group_id", "$.group_id", "TEXT", indexed=True),)

    def find_by_group_id(self, group_id):
        return self.find_many(where={"group_id": group_id})

    def search_by_content(self, pattern):
        return self.search("content", pattern)

    def find_by_group_with_search(
        self, group_id, page=1, limit=20, search=None, order_by="created_at", order_direction="DESC"
    ):
        where = Where().add("group_id", Op.EQ, group_id)
        search = search.strip() if isinstance(search, str) else search
        if search:
            pattern = f"%{search}%"
            where.clauses.append(AnyOf(*(Condition(f, Op.LIKE, pattern) for f in self.search_fields)))
        return self.find_with_pagination(
            page, limit, where=where, order_by=order_by, order_direction=order_direction
        )

    def delete_by_group_id(self, group_id):
        return self.delete_many({"group_id": group_id})

    def count_by_group_id(self, group_id):
        return self.count({"group_id": group_id})

    def bulk_create(self, items):
        """Create ``items`` in one transaction, collecting per-item failures.

        Each item gets its own savepoint, so a failing item is reported in
        ``errors`` as ``{"index", "error"}`` without undoing the others.
        """
        items = list(items or ())
        created = []
        errors = []
        self.ensure_registered()
        with self.store.transaction():
            for index, item in enumerate(items):
                if not isinstance(item, dict):
                    errors.append({"index": index, "error": "item must be an object"})
                    continue
                try:
                    with self.store.transaction():
                        created.append(self.create(item))
                except (StoreError, sqlite3.Error, TypeError, ValueError) as exc:
                    errors.append({"index": index, "error": str(exc)})
        if errors:
            logger.warning("bulk create into %s: %d of %d items failed", self.table_name, len(errors), len(items))
        return {"created": created, "errors": errors}
