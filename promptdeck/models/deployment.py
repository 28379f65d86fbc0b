from ..base_model import Model, VirtualColumnSpec
from ..errors import ConflictError


class DeploymentModel(Model):
    """Named (slug) bindings of a prompt version to a provider/model."""

    table_name = "deployments"
    fields = ("name", "promptId", "promptVersion", "provider", "model", "options", "webhookDestinationIds")
    search_fields = ("name", "provider", "model")
    virtual_columns = (VirtualColumnSpec("name", "$.name", "TEXT", indexed=True),)

    def find_by_name(self, name):
        return self.find_one({"name": name})

    def find_by_prompt_id(self, prompt_id):
        return self.find_many(where={"promptId": prompt_id})

    def find_by_provider(self, provider):
        return self.find_many(where={"provider": provider})

    def create_with_validation(self, payload):
        name = (payload or {}).get("name")
        if name and self.find_by_name(name) is not None:
            raise ConflictError(f"Deployment with name '{name}' already exists")
        return self.create(payload)

    def update_with_validation(self, deployment_id, changes):
        name = (changes or {}).get("name")
        if name:
            existing = self.find_by_name(name)
            if existing is not None and existing["id"] != deployment_id:
                raise ConflictError(f"Deployment with name '{name}' already exists")
        return self.update(deployment_id, changes)
