from ..base_model import Model


class CommentModel(Model):
    """Free-text notes on executions or prompts.

    ``data`` describes the anchor: ``{"type": "generic"}`` or
    ``{"type": "execution", "selected_text", "start_offset", "end_offset"}``.
    """

    table_name = "comments"
    fields = ("text", "data", "execution_id", "prompt_id")
    search_fields = ("text",)

    def find_by_execution_id(self, execution_id):
        return self.find_many(where={"execution_id": execution_id}, order_by="created_at", order_direction="ASC")

    def find_by_prompt_id(self, prompt_id):
        return self.find_many(where={"prompt_id": prompt_id}, order_by="created_at", order_direction="ASC")
