from datetime import datetime, timedelta, timezone

from ..base_model import Model, VirtualColumnSpec
from ..query import Op, Where
from ..utils import now_iso

EXECUTION_STATUSES = ("pending", "running", "completed", "failed")


class ExecutionModel(Model):
    table_name = "executions"
    fields = (
        "prompt_id",
        "prompt_version",
        "prompt_text",
        "user_input",
        "provider",
        "model",
        "status",
        "result",
        "result_valid",
        "result_validation_message",
        "input_tokens_used",
        "output_tokens_used",
        "error_message",
        "started_at",
        "completed_at",
        "options",
        "starred",
        "user_status",
        "test_data_group_id",
        "test_data_item_id",
        "trace_id",
        "fileId",
        "origin",
        "webhookDestinationIds",
    )
    search_fields = ("prompt_text", "user_input", "result")
    virtual_columns = (
        VirtualColumnSpec("status", "$.status", "TEXT", indexed=True),
        VirtualColumnSpec("provider", "$.provider", "TEXT", indexed=True),
        VirtualColumnSpec("prompt_id", "$.prompt_id", "TEXT", indexed=True),
    )

    def find_by_prompt_id(self, prompt_id):
        return self.find_many(where={"prompt_id": prompt_id}, order_by="created_at", order_direction="DESC")

    def find_by_status(self, status):
        return self.find_many(where={"status": status}, order_by="created_at", order_direction="ASC")

    def get_pending_executions(self, limit=10):
        return self.find_many(where={"status": "pending"}, order_by="created_at", order_direction="ASC", limit=limit)

    def get_pending_executions_by_provider(self, provider, limit=10):
        return self.find_many(
            where={"status": "pending", "provider": provider},
            order_by="created_at",
            order_direction="ASC",
            limit=limit,
        )

    def get_running_executions_by_provider(self, provider):
        return self.find_many(
            where={"status": "running", "provider": provider},
            order_by="created_at",
            order_direction="ASC",
        )

    def update_status(self, execution_id, status, **extra):
        if status not in EXECUTION_STATUSES:
            raise ValueError(f"unknown execution status: {status!r}")
        changes = {"status": status}
        if status == "running" and not extra.get("started_at"):
            changes["started_at"] = now_iso()
        if status in ("completed", "failed") and not extra.get("completed_at"):
            changes["completed_at"] = now_iso()
        changes.update(extra)
        return self.update(execution_id, changes)

    def find_with_filters(
        self,
        page,
        limit,
        status=None,
        provider=None,
        prompt_id=None,
        starred=None,
        ids=None,
        order_by="created_at",
        order_direction="DESC",
    ):
        where = {}
        if status:
            where["status"] = status
        if provider:
            where["provider"] = provider
        if prompt_id:
            where["prompt_id"] = prompt_id
        if starred is not None:
            where["starred"] = bool(starred)
        if ids is not None:
            where["id"] = list(ids)
        return self.find_with_pagination(
            page,
            limit,
            where=where,
            order_by=order_by,
            order_direction=order_direction,
        )

    def get_stats(self):
        stats = {"total": self.count()}
        for status in EXECUTION_STATUSES:
            stats[status] = self.count({"status": status})

        expr, params = self._resolve("provider")
        rows = self._execute(
            "collecting provider stats",
            f"SELECT {expr} AS provider, COUNT(*) AS count FROM {self.table_name} GROUP BY 1",
            params,
        ).fetchall()
        stats["by_provider"] = {r["provider"]: r["count"] for r in rows if r["provider"] is not None}
        return stats

    def cleanup_old_executions(self, older_than_days=30):
        cutoff = (datetime.now(timezone.utc) - timedelta(days=older_than_days)).isoformat(timespec="milliseconds")
        where = Where().add("status", Op.IN, ["completed", "failed"]).add("completed_at", Op.LT, cutoff)
        return self.delete_many(where)
