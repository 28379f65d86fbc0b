import secrets

from passlib.context import CryptContext

from ..base_model import Model, VirtualColumnSpec
from ..utils import now_iso

API_KEY_SCOPES = ("executions:run", "executions:read", "prompts:preview", "prompts:read")

KEY_PREFIX = "api_"
# Characters of the plain key kept in clear for display.
DISPLAY_PREFIX_LENGTH = 16

key_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def generate_api_key():
    return KEY_PREFIX + secrets.token_hex(32)


class ApiKeyModel(Model):
    """Hashed API keys owned by users.

    The plain key is returned once by ``create_api_key`` and never stored;
    lookups verify against the hashes of active keys.
    """

    table_name = "api_keys"
    fields = ("name", "key_hash", "key_prefix", "user_id", "permissions", "status", "usage_stats")
    search_fields = ("name", "key_prefix")
    virtual_columns = (
        VirtualColumnSpec("user_id", "$.user_id", "TEXT", indexed=True),
        VirtualColumnSpec("key_prefix", "$.key_prefix", "TEXT", indexed=True),
    )

    def create_api_key(self, user_id, name, scopes=("executions:run",)):
        """Return ``(document, plain_key)``."""
        unknown = [s for s in scopes if s not in API_KEY_SCOPES]
        if unknown:
            raise ValueError(f"unknown API key scopes: {', '.join(unknown)}")
        plain_key = generate_api_key()
        document = self.create(
            {
                "name": name,
                "key_hash": key_context.hash(plain_key),
                "key_prefix": plain_key[:DISPLAY_PREFIX_LENGTH],
                "user_id": user_id,
                "permissions": {"scopes": list(scopes)},
                "status": "active",
                "usage_stats": {"total_requests": 0},
            }
        )
        return document, plain_key

    def find_by_api_key(self, api_key):
        if not isinstance(api_key, str) or not api_key.startswith(KEY_PREFIX):
            return None
        candidates = self.find_many(where={"status": "active", "key_prefix": api_key[:DISPLAY_PREFIX_LENGTH]})
        for doc in candidates:
            if key_context.verify(api_key, doc["key_hash"]):
                return doc
        return None

    def find_by_user_id(self, user_id):
        return self.find_many(where={"user_id": user_id}, order_by="created_at", order_direction="DESC")

    def find_active_by_user_id(self, user_id):
        return self.find_many(
            where={"user_id": user_id, "status": "active"},
            order_by="created_at",
            order_direction="DESC",
        )

    def _owned(self, key_id, user_id):
        doc = self.find_by_id(key_id)
        if doc is None or doc.get("user_id") != user_id:
            return None
        return doc

    def revoke_api_key(self, key_id, user_id):
        if self._owned(key_id, user_id) is None:
            return None
        return self.update(key_id, {"status": "revoked"})

    def update_name(self, key_id, user_id, name):
        if self._owned(key_id, user_id) is None:
            return None
        return self.update(key_id, {"name": name})

    def record_usage(self, key_id, ip_address=None):
        doc = self.find_by_id(key_id)
        if doc is None:
            return None
        stats = dict(doc.get("usage_stats") or {})
        stats["total_requests"] = int(stats.get("total_requests") or 0) + 1
        stats["last_used_at"] = now_iso()
        if ip_address:
            stats["last_ip"] = ip_address
        return self.update(key_id, {"usage_stats": stats})

    @staticmethod
    def has_scope(api_key, scope):
        return scope in (((api_key or {}).get("permissions") or {}).get("scopes") or ())

    def get_user_api_key_stats(self, user_id):
        keys = self.find_by_user_id(user_id)
        return {
            "total_keys": len(keys),
            "active_keys": sum(1 for k in keys if k.get("status") == "active"),
            "revoked_keys": sum(1 for k in keys if k.get("status") == "revoked"),
            "total_requests": sum(int((k.get("usage_stats") or {}).get("total_requests") or 0) for k in keys),
        }
