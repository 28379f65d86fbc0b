from ..base_model import Model, VirtualColumnSpec
from ..errors import ConflictError


class DeploymentEmbeddingModel(Model):
    """Named (slug) embedding endpoints; ``name`` is unique."""

    table_name = "deployment_embeddings"
    fields = ("name", "model", "inputType", "status", "webhookDestinationIds")
    search_fields = ("name", "model", "status")
    virtual_columns = (VirtualColumnSpec("name", "$.name", "TEXT", indexed=True),)

    def find_by_name(self, name):
        return self.find_one({"name": name})

    def create_with_validation(self, payload):
        name = (payload or {}).get("name")
        if name and self.find_by_name(name) is not None:
            raise ConflictError(f"Deployment embedding with name '{name}' already exists")
        return self.create(payload)

    def update_with_validation(self, embedding_id, changes):
        name = (changes or {}).get("name")
        if name:
            existing = self.find_by_name(name)
            if existing is not None and existing["id"] != embedding_id:
                raise ConflictError(f"Deployment embedding with name '{name}' already exists")
        return self.update(embedding_id, changes)
