from ..base_model import Model


class PromptModel(Model):
    table_name = "prompts"
    fields = ("name", "prompt", "json_schema_response", "version", "tags")
    search_fields = ("name", "prompt")

    def find_by_name(self, name):
        return self.find_one({"name": name})

    def search_by_name(self, pattern):
        return self.search("name", pattern)

    def search_by_prompt(self, pattern):
        return self.search("prompt", pattern)

    def get_recent(self, limit=10):
        return self.find_many(order_by="created_at", order_direction="DESC", limit=limit)
