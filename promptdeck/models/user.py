import hashlib
import secrets
from datetime import datetime, timezone

from ..base_model import Model, VirtualColumnSpec
from ..errors import ConflictError
from ..utils import iso_in, now_iso, parse_iso

USER_ROLES = ("admin", "user", "viewer")
USER_STATUSES = ("active", "inactive", "pending")

INVITATION_TTL_DAYS = 7
MAX_LOGIN_ATTEMPTS = 5
LOCKOUT_MINUTES = 30


def _is_past(value):
    moment = parse_iso(value)
    return moment is not None and moment <= datetime.now(timezone.utc)


class UserModel(Model):
    table_name = "users"
    fields = ("email", "name", "role", "status", "profile", "auth", "invitation")
    search_fields = ("email", "name")
    virtual_columns = (VirtualColumnSpec("email", "$.email", "TEXT", indexed=True),)

    def find_by_email(self, email):
        return self.find_one({"email": email})

    def find_by_role(self, role):
        return self.find_many(where={"role": role})

    def find_by_status(self, status):
        return self.find_many(where={"status": status})

    def create_invitation(self, user_data, invited_by):
        email = user_data.get("email")
        if email and self.find_by_email(email) is not None:
            raise ConflictError(f"User with email '{email}' already exists")
        payload = {
            "email": email,
            "name": user_data.get("name"),
            "role": user_data.get("role") or "user",
            "status": "pending",
            "invitation": {
                "token": secrets.token_hex(32),
                "expires_at": iso_in(days=INVITATION_TTL_DAYS),
                "invited_by": invited_by,
                "invited_at": now_iso(),
            },
        }
        if user_data.get("profile"):
            payload["profile"] = user_data["profile"]
        return self.create(payload)

    def find_by_invitation_token(self, token):
        user = self.find_one({"invitation.token": token})
        if user is None:
            return None
        if _is_past(((user.get("invitation") or {}).get("expires_at"))):
            return None
        return user

    def activate_user(self, invitation_token, auth=None):
        user = self.find_by_invitation_token(invitation_token)
        if user is None:
            return None
        changes = {"status": "active"}
        if auth:
            changes["auth"] = auth
        if self.update(user["id"], changes) is None:
            return None
        return self.update_json_properties(user["id"], {"invitation": None})

    def update_profile(self, user_id, profile):
        user = self.find_by_id(user_id)
        if user is None:
            return None
        merged = dict(user.get("profile") or {})
        merged.update(profile or {})
        return self.update(user_id, {"profile": merged})

    def update_status(self, user_id, status):
        return self.update(user_id, {"status": status})

    def update_role(self, user_id, role):
        return self.update(user_id, {"role": role})

    def record_login(self, user_id, successful=True):
        user = self.find_by_id(user_id)
        if user is None:
            return None

        auth = dict(user.get("auth") or {})
        if successful:
            auth["login_attempts"] = 0
            auth["last_login"] = now_iso()
            auth.pop("locked_until", None)
        else:
            auth["login_attempts"] = int(auth.get("login_attempts") or 0) + 1
            if auth["login_attempts"] >= MAX_LOGIN_ATTEMPTS:
                auth["locked_until"] = iso_in(minutes=LOCKOUT_MINUTES)
        return self.update(user_id, {"auth": auth})

    @staticmethod
    def is_account_locked(user):
        locked_until = ((user or {}).get("auth") or {}).get("locked_until")
        return bool(locked_until) and not _is_past(locked_until)

    def get_active_users_count(self):
        return self.count({"status": "active"})

    def get_pending_invitations_count(self):
        return self.count({"status": "pending"})

    def cleanup_expired_invitations(self):
        deleted = 0
        for user in self.find_by_status("pending"):
            if _is_past((user.get("invitation") or {}).get("expires_at")) and self.delete(user["id"]):
                deleted += 1
        return deleted

    @staticmethod
    def hash_password(password):
        return hashlib.sha256(password.encode("utf-8")).hexdigest()
