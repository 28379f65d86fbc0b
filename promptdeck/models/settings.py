from ..base_model import Model

# Setting types that may hold several documents, distinguished by ``identifier``.
MULTIPLE_SETTING_TYPES = ("llm-api-key", "token-limit")
# Setting types with exactly one document.
SINGLE_SETTING_TYPES = ()


class SettingsModel(Model):
    table_name = "settings"
    fields = ("type", "identifier", "name", "provider", "api_key", "model", "limit", "value")
    search_fields = ("type", "identifier", "name")

    def create_setting(self, setting_type, data):
        payload = {k: v for k, v in (data or {}).items() if k != "type"}
        payload["type"] = setting_type
        return self.create(payload)

    def update_setting(self, setting_id, data):
        changes = {k: v for k, v in (data or {}).items() if k != "type"}
        return self.update(setting_id, changes)

    def get_setting_by_id(self, setting_id):
        return self.find_by_id(setting_id)

    def get_settings_by_type(self, setting_type):
        return self.find_many(where={"type": setting_type}, order_by="created_at", order_direction="DESC")

    def get_single_setting(self, setting_type):
        return self.find_one({"type": setting_type})

    def get_setting_by_type_and_identifier(self, setting_type, identifier):
        return self.find_one({"type": setting_type, "identifier": identifier})

    def get_setting_by_type_and_name(self, setting_type, name):
        return self.find_one({"type": setting_type, "name": name})

    def delete_setting(self, setting_id):
        return self.delete(setting_id)
