from ..base_model import Model
from ..utils import json_dumps


class FileModel(Model):
    """Uploaded files; ``data`` holds the base64 payload."""

    table_name = "files"
    fields = (
        "name",
        "originalName",
        "mimeType",
        "size",
        "data",
        "uploadedBy",
        "description",
        "tags",
    )
    search_fields = ("name", "originalName", "description")

    def find_by_name(self, name):
        return self.find_one({"name": name})

    def find_by_original_name(self, original_name):
        return self.find_all_by_property("originalName", original_name)

    def search_by_name(self, pattern):
        return self.search("name", pattern)

    def find_by_tag(self, tag):
        # tags is a JSON array; json_extract returns its compact text form
        return self._fetch_docs(
            "finding files by tag",
            f"SELECT id, data, created_at, updated_at FROM {self.table_name} "
            "WHERE json_extract(data, '$.tags') LIKE ? ORDER BY created_at DESC",
            (f"%{json_dumps(str(tag))}%",),
        )

    def get_recent(self, limit=10):
        return self.find_many(order_by="created_at", order_direction="DESC", limit=limit)
