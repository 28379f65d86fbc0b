import itertools
import unittest
from datetime import datetime, timedelta, timezone
from unittest import mock

from promptdeck.errors import ConflictError
from promptdeck.manager import DocumentStore
from promptdeck.models import MODEL_CLASSES, build_models
from promptdeck.models.api_key import ApiKeyModel
from promptdeck.models.user import UserModel

LONG_AGO = "2000-01-01T00:00:00.000+00:00"


def _ticking_clock(start=datetime(2024, 1, 1, tzinfo=timezone.utc)):
    ticks = itertools.count()
    return lambda: (start + timedelta(seconds=next(ticks))).isoformat(timespec="milliseconds")


class EntityModelTestCase(unittest.TestCase):
    def setUp(self):
        self.store = DocumentStore(":memory:").open()
        self.addCleanup(self.store.close)
        patcher = mock.patch("promptdeck.base_model.now_iso", side_effect=_ticking_clock())
        self.addCleanup(patcher.stop)
        patcher.start()
        self.registry = build_models(self.store)


class ModelRegistryTests(EntityModelTestCase):
    def test_build_models_registers_every_table(self):
        self.assertEqual(len(self.registry), len(MODEL_CLASSES))
        self.assertTrue(self.registry.are_all_tables_initialized())
        for table in ("prompts", "executions", "files", "deployments", "settings", "users", "api_keys", "comments"):
            self.assertIn(table, self.registry)
            self.assertTrue(self.store.has_table(table))

        status = self.registry.get_initialization_status()
        self.assertEqual(status["UserModel"], {"table_name": "users", "initialized": True})

    def test_duplicate_registration_keeps_first(self):
        original = self.registry["users"]
        self.assertIs(self.registry.register_model(UserModel(self.store)), original)
        self.assertEqual(len(self.registry), len(MODEL_CLASSES))

    def test_reset_clears_models(self):
        self.registry.reset()
        self.assertEqual(len(self.registry), 0)
        self.assertIsNone(self.registry.get("users"))


class FileModelTests(EntityModelTestCase):
    def setUp(self):
        super().setUp()
        self.files = self.registry["files"]

    def test_lookup_helpers(self):
        self.files.create({"name": "report.pdf", "originalName": "Report.pdf", "tags": ["work", "q1"]})
        self.files.create({"name": "photo.png", "originalName": "IMG_1.png", "tags": ["home"]})
        self.files.create({"name": "report-v2.pdf", "originalName": "Report.pdf", "tags": ["work2"]})

        self.assertEqual(self.files.find_by_name("photo.png")["originalName"], "IMG_1.png")
        self.assertEqual(len(self.files.find_by_original_name("Report.pdf")), 2)
        self.assertEqual(
            [f["name"] for f in self.files.search_by_name("report")],
            ["report-v2.pdf", "report.pdf"],
        )
        self.assertEqual([f["name"] for f in self.files.find_by_tag("work")], ["report.pdf"])
        self.assertEqual([f["name"] for f in self.files.get_recent(limit=1)], ["report-v2.pdf"])


class PromptModelTests(EntityModelTestCase):
    def test_search_helpers(self):
        prompts = self.registry["prompts"]
        prompts.create({"name": "summarize", "prompt": "Summarize the text", "version": 1})
        prompts.create({"name": "translate", "prompt": "Translate to French", "version": 1})

        self.assertEqual(prompts.find_by_name("translate")["prompt"], "Translate to French")
        self.assertEqual([p["name"] for p in prompts.search_by_prompt("french")], ["translate"])
        self.assertEqual([p["name"] for p in prompts.search_by_name("sum")], ["summarize"])
        self.assertEqual(len(prompts.get_recent()), 2)


class DeploymentModelTests(EntityModelTestCase):
    def setUp(self):
        super().setUp()
        self.deployments = self.registry["deployments"]

    def test_name_is_unique(self):
        first = self.deployments.create_with_validation({"name": "prod", "promptId": "p1", "provider": "openai"})

        with self.assertRaises(ConflictError):
            self.deployments.create_with_validation({"name": "prod", "promptId": "p2"})
        self.assertEqual(self.deployments.find_by_name("prod")["id"], first["id"])
        self.assertEqual(self.store.get_virtual_columns("deployments"), ["name"])

    def test_update_allows_own_name_and_rejects_others(self):
        prod = self.deployments.create_with_validation({"name": "prod", "provider": "openai"})
        staging = self.deployments.create_with_validation({"name": "staging", "provider": "anthropic"})

        renamed = self.deployments.update_with_validation(prod["id"], {"name": "prod", "model": "gpt"})
        self.assertEqual(renamed["model"], "gpt")
        with self.assertRaises(ConflictError):
            self.deployments.update_with_validation(staging["id"], {"name": "prod"})

        self.assertEqual([d["name"] for d in self.deployments.find_by_provider("anthropic")], ["staging"])


class ExecutionModelTests(EntityModelTestCase):
    def setUp(self):
        super().setUp()
        self.executions = self.registry["executions"]

    def test_status_queues(self):
        first = self.executions.create({"prompt_id": "p1", "provider": "openai", "status": "pending"})
        second = self.executions.create({"prompt_id": "p1", "provider": "anthropic", "status": "pending"})
        self.executions.create({"prompt_id": "p2", "provider": "openai", "status": "running"})

        self.assertEqual([e["id"] for e in self.executions.get_pending_executions()], [first["id"], second["id"]])
        self.assertEqual(
            [e["id"] for e in self.executions.get_pending_executions_by_provider("anthropic")],
            [second["id"]],
        )
        self.assertEqual(len(self.executions.get_running_executions_by_provider("openai")), 1)
        self.assertEqual(
            [e["id"] for e in self.executions.find_by_prompt_id("p1")],
            [second["id"], first["id"]],
        )

    def test_update_status_stamps_times(self):
        doc = self.executions.create({"prompt_id": "p1", "provider": "openai", "status": "pending"})

        running = self.executions.update_status(doc["id"], "running")
        self.assertIn("started_at", running)
        self.assertNotIn("completed_at", running)

        done = self.executions.update_status(doc["id"], "completed", result="ok")
        self.assertEqual(done["status"], "completed")
        self.assertEqual(done["result"], "ok")
        self.assertIn("completed_at", done)

        with self.assertRaises(ValueError):
            self.executions.update_status(doc["id"], "exploded")

    def test_find_with_filters(self):
        a = self.executions.create({"prompt_id": "p1", "provider": "openai", "status": "completed", "starred": True})
        self.executions.create({"prompt_id": "p1", "provider": "openai", "status": "completed", "starred": False})
        self.executions.create({"prompt_id": "p2", "provider": "anthropic", "status": "failed"})

        starred = self.executions.find_with_filters(1, 10, starred=True)
        by_ids = self.executions.find_with_filters(1, 10, ids=[a["id"], "missing"])
        openai = self.executions.find_with_filters(1, 1, provider="openai", status="completed")

        self.assertEqual([e["id"] for e in starred["data"]], [a["id"]])
        self.assertEqual(by_ids["total"], 1)
        self.assertEqual(openai["total"], 2)
        self.assertTrue(openai["has_next"])

    def test_stats(self):
        self.executions.create({"provider": "openai", "status": "completed"})
        self.executions.create({"provider": "openai", "status": "failed"})
        self.executions.create({"provider": "anthropic", "status": "pending"})

        stats = self.executions.get_stats()

        self.assertEqual(stats["total"], 3)
        self.assertEqual(stats["completed"], 1)
        self.assertEqual(stats["failed"], 1)
        self.assertEqual(stats["pending"], 1)
        self.assertEqual(stats["running"], 0)
        self.assertEqual(stats["by_provider"], {"openai": 2, "anthropic": 1})

    def test_cleanup_old_executions(self):
        old = self.executions.create({"provider": "openai", "status": "pending"})
        self.executions.update_status(old["id"], "completed", completed_at=LONG_AGO)
        fresh = self.executions.create({"provider": "openai", "status": "pending"})
        self.executions.update_status(fresh["id"], "failed", completed_at=datetime.now(timezone.utc).isoformat())
        waiting = self.executions.create({"provider": "openai", "status": "pending", "completed_at": LONG_AGO})

        self.assertEqual(self.executions.cleanup_old_executions(older_than_days=30), 1)
        self.assertIsNone(self.executions.find_by_id(old["id"]))
        self.assertIsNotNone(self.executions.find_by_id(fresh["id"]))
        self.assertIsNotNone(self.executions.find_by_id(waiting["id"]))


class SettingsModelTests(EntityModelTestCase):
    def test_setting_lookups(self):
        settings = self.registry["settings"]
        key = settings.create_setting("llm-api-key", {"identifier": "openai", "api_key": "sk-1", "type": "ignored"})
        settings.create_setting("llm-api-key", {"identifier": "anthropic", "api_key": "sk-2"})
        settings.create_setting("token-limit", {"name": "daily", "limit": 1000})

        self.assertEqual(key["type"], "llm-api-key")
        self.assertEqual(len(settings.get_settings_by_type("llm-api-key")), 2)
        self.assertEqual(
            settings.get_setting_by_type_and_identifier("llm-api-key", "anthropic")["api_key"],
            "sk-2",
        )
        self.assertEqual(settings.get_setting_by_type_and_name("token-limit", "daily")["limit"], 1000)
        self.assertEqual(settings.get_single_setting("token-limit")["name"], "daily")

        updated = settings.update_setting(key["id"], {"api_key": "sk-3", "type": "token-limit"})
        self.assertEqual(updated["api_key"], "sk-3")
        self.assertEqual(updated["type"], "llm-api-key")
        self.assertEqual(settings.get_setting_by_id(key["id"])["api_key"], "sk-3")

        self.assertTrue(settings.delete_setting(key["id"]))
        self.assertFalse(settings.delete_setting(key["id"]))

    def test_listing_filters_on_limit_field(self):
        settings = self.registry["settings"]
        settings.create_setting("token-limit", {"name": "daily", "limit": 1000})
        settings.create_setting("token-limit", {"name": "hourly", "limit": 50})

        result = settings.find_with_search(page=1, limit=10, filters={"limit": 1000, "type": "token-limit"})

        self.assertEqual([d["name"] for d in result["data"]], ["daily"])
        self.assertEqual(result["limit"], 10)


class UserModelTests(EntityModelTestCase):
    def setUp(self):
        super().setUp()
        self.users = self.registry["users"]

    def test_invitation_flow(self):
        invited = self.users.create_invitation({"email": "ada@example.com", "name": "Ada"}, invited_by="admin-1")

        self.assertEqual(invited["status"], "pending")
        self.assertEqual(invited["role"], "user")
        self.assertEqual(len(invited["invitation"]["token"]), 64)
        self.assertEqual(self.users.get_pending_invitations_count(), 1)
        with self.assertRaises(ConflictError):
            self.users.create_invitation({"email": "ada@example.com"}, invited_by="admin-1")

        token = invited["invitation"]["token"]
        self.assertEqual(self.users.find_by_invitation_token(token)["id"], invited["id"])

        active = self.users.activate_user(token, auth={"password_hash": UserModel.hash_password("pw")})
        self.assertEqual(active["status"], "active")
        self.assertIsNone(active["invitation"])
        self.assertEqual(active["auth"]["password_hash"], UserModel.hash_password("pw"))
        self.assertIsNone(self.users.find_by_invitation_token(token))
        self.assertEqual(self.users.get_active_users_count(), 1)
        self.assertEqual(self.users.find_by_email("ada@example.com")["id"], invited["id"])

    def test_expired_invitation_is_ignored_and_cleaned_up(self):
        invited = self.users.create_invitation({"email": "old@example.com"}, invited_by="admin-1")
        self.users.update_json_properties(invited["id"], {"invitation.expires_at": LONG_AGO})

        self.assertIsNone(self.users.find_by_invitation_token(invited["invitation"]["token"]))
        self.assertIsNone(self.users.activate_user(invited["invitation"]["token"]))
        self.assertEqual(self.users.cleanup_expired_invitations(), 1)
        self.assertIsNone(self.users.find_by_id(invited["id"]))

    def test_failed_logins_lock_account(self):
        user = self.users.create({"email": "bob@example.com", "status": "active", "role": "viewer"})

        for _ in range(4):
            user = self.users.record_login(user["id"], successful=False)
        self.assertFalse(UserModel.is_account_locked(user))

        user = self.users.record_login(user["id"], successful=False)
        self.assertEqual(user["auth"]["login_attempts"], 5)
        self.assertTrue(UserModel.is_account_locked(user))

        user = self.users.record_login(user["id"], successful=True)
        self.assertEqual(user["auth"]["login_attempts"], 0)
        self.assertIn("last_login", user["auth"])
        self.assertFalse(UserModel.is_account_locked(user))

    def test_profile_role_and_status_updates(self):
        user = self.users.create({"email": "cy@example.com", "role": "user", "status": "active", "profile": {"a": 1}})

        user = self.users.update_profile(user["id"], {"b": 2})
        self.assertEqual(user["profile"], {"a": 1, "b": 2})
        self.assertEqual(self.users.update_role(user["id"], "admin")["role"], "admin")
        self.assertEqual(self.users.update_status(user["id"], "inactive")["status"], "inactive")
        self.assertEqual([u["id"] for u in self.users.find_by_role("admin")], [user["id"]])
        self.assertIsNone(self.users.update_profile("missing", {"a": 1}))
        self.assertFalse(UserModel.is_account_locked(None))


class TestDataModelTests(EntityModelTestCase):
    def setUp(self):
        super().setUp()
        self.groups = self.registry["test_data_groups"]
        self.items = self.registry["test_data_items"]
        self.group = self.groups.create({"name": "Greetings", "description": "hello inputs", "mode": "raw"})

    def test_group_lookups(self):
        self.groups.create({"name": "Invoices", "mode": "json"})

        self.assertEqual(self.groups.find_by_name("Invoices")["mode"], "json")
        self.assertEqual([g["name"] for g in self.groups.search_by_name("eet")], ["Greetings"])
        self.assertEqual(self.groups.find_with_search(search="hello")["total"], 1)

    def test_bulk_create_reports_failures_by_index(self):
        result = self.items.bulk_create(
            [
                {"group_id": self.group["id"], "name": "one", "content": "hi"},
                "not an item",
                {"id": "fixed", "group_id": self.group["id"], "content": "first"},
                {"id": "fixed", "group_id": self.group["id"], "content": "again"},
                {"group_id": self.group["id"], "content": object()},
                {"group_id": self.group["id"], "name": "two", "content": "hey there"},
            ]
        )

        self.assertEqual([d["content"] for d in result["created"]], ["hi", "first", "hey there"])
        self.assertEqual([e["index"] for e in result["errors"]], [1, 3, 4])
        self.assertIn("already exists", result["errors"][1]["error"])
        self.assertFalse(self.store.in_transaction)
        self.assertEqual(self.items.count_by_group_id(self.group["id"]), 3)
        self.assertEqual(self.items.find_by_id("fixed")["content"], "first")

    def test_items_by_group(self):
        other = self.groups.create({"name": "Other", "mode": "raw"})
        self.items.bulk_create(
            [
                {"group_id": self.group["id"], "name": "hello", "content": "hi there"},
                {"group_id": self.group["id"], "name": "bye", "content": "see you"},
                {"group_id": other["id"], "name": "hello", "content": "hi"},
            ]
        )

        self.assertEqual(len(self.items.find_by_group_id(self.group["id"])), 2)
        self.assertEqual(len(self.items.search_by_content("hi")), 2)

        page = self.items.find_by_group_with_search(self.group["id"], page=1, limit=10, search=" hello ")
        self.assertEqual([d["content"] for d in page["data"]], ["hi there"])
        everything = self.items.find_by_group_with_search(self.group["id"], page=1, limit=1)
        self.assertEqual(everything["total"], 2)
        self.assertTrue(everything["has_next"])

        self.assertEqual(self.items.delete_by_group_id(self.group["id"]), 2)
        self.assertEqual(self.items.count_by_group_id(self.group["id"]), 0)
        self.assertEqual(self.items.count_by_group_id(other["id"]), 1)


class CommentModelTests(EntityModelTestCase):
    def test_comments_keep_their_anchor_data(self):
        comments = self.registry["comments"]
        anchor = {"type": "execution", "selected_text": "Paris", "start_offset": 10, "end_offset": 15}
        first = comments.create({"text": "correct", "data": anchor, "execution_id": "exec-1"})
        comments.create({"text": "also fine", "data": {"type": "generic"}, "execution_id": "exec-1"})
        comments.create({"text": "reword", "data": {"type": "generic"}, "prompt_id": "prompt-1"})

        self.assertEqual(comments.find_by_id(first["id"])["data"], anchor)
        self.assertEqual([c["text"] for c in comments.find_by_execution_id("exec-1")], ["correct", "also fine"])
        self.assertEqual([c["text"] for c in comments.find_by_prompt_id("prompt-1")], ["reword"])

        updated = comments.update(first["id"], {"text": "correct, capital city"})
        self.assertEqual(updated["data"], anchor)


class DeploymentEmbeddingModelTests(EntityModelTestCase):
    def test_names_are_unique(self):
        embeddings = self.registry["deployment_embeddings"]
        first = embeddings.create_with_validation({"name": "docs", "model": "voyage-3", "inputType": "document"})
        other = embeddings.create_with_validation({"name": "queries", "model": "voyage-3", "inputType": "query"})

        with self.assertRaises(ConflictError):
            embeddings.create_with_validation({"name": "docs", "model": "voyage-3-lite"})
        with self.assertRaises(ConflictError):
            embeddings.update_with_validation(other["id"], {"name": "docs"})

        self.assertEqual(embeddings.update_with_validation(first["id"], {"name": "docs"})["id"], first["id"])
        self.assertEqual(embeddings.find_with_search(search="voyage")["total"], 2)


class ExecutionBundleModelTests(EntityModelTestCase):
    def test_bundle_round_trip(self):
        bundles = self.registry["execution_bundles"]
        bundle = bundles.create({"test_group_id": "g1", "prompt_id": "p1", "execution_ids": ["e1", "e2"]})

        self.assertEqual(bundles.find_one({"prompt_id": "p1"})["execution_ids"], ["e1", "e2"])
        self.assertEqual(bundles.find_by_id(bundle["id"])["test_group_id"], "g1")


class ApiKeyModelTests(EntityModelTestCase):
    def setUp(self):
        super().setUp()
        self.keys = self.registry["api_keys"]

    def test_plain_key_is_only_returned_once(self):
        doc, plain_key = self.keys.create_api_key("user-1", "ci")

        self.assertTrue(plain_key.startswith("api_"))
        self.assertEqual(len(plain_key), 68)
        self.assertEqual(doc["key_prefix"], plain_key[:16])
        self.assertNotIn(plain_key, doc["key_hash"])
        self.assertEqual(doc["permissions"], {"scopes": ["executions:run"]})
        self.assertEqual(doc["status"], "active")

        self.assertEqual(self.keys.find_by_api_key(plain_key)["id"], doc["id"])
        self.assertIsNone(self.keys.find_by_api_key(plain_key[:-1] + ("0" if plain_key[-1] != "0" else "1")))
        self.assertIsNone(self.keys.find_by_api_key("not-a-key"))

    def test_rejects_unknown_scopes(self):
        with self.assertRaises(ValueError):
            self.keys.create_api_key("user-1", "ci", scopes=["everything"])

    def test_only_the_owner_may_revoke_or_rename(self):
        doc, plain_key = self.keys.create_api_key("user-1", "ci", scopes=["prompts:read", "prompts:preview"])

        self.assertIsNone(self.keys.revoke_api_key(doc["id"], "user-2"))
        self.assertIsNone(self.keys.update_name(doc["id"], "user-2", "stolen"))
        self.assertIsNone(self.keys.revoke_api_key("missing", "user-1"))
        self.assertEqual(self.keys.update_name(doc["id"], "user-1", "deploy")["name"], "deploy")

        revoked = self.keys.revoke_api_key(doc["id"], "user-1")
        self.assertEqual(revoked["status"], "revoked")
        self.assertIsNone(self.keys.find_by_api_key(plain_key))
        self.assertEqual(self.keys.find_active_by_user_id("user-1"), [])

    def test_usage_scopes_and_stats(self):
        first, _ = self.keys.create_api_key("user-1", "a", scopes=["executions:run", "executions:read"])
        second, _ = self.keys.create_api_key("user-1", "b")
        self.keys.create_api_key("user-2", "c")

        self.keys.record_usage(first["id"])
        used = self.keys.record_usage(first["id"], "10.0.0.1")
        self.keys.revoke_api_key(second["id"], "user-1")

        self.assertEqual(used["usage_stats"]["total_requests"], 2)
        self.assertEqual(used["usage_stats"]["last_ip"], "10.0.0.1")
        self.assertIn("last_used_at", used["usage_stats"])
        self.assertIsNone(self.keys.record_usage("missing"))
        self.assertTrue(ApiKeyModel.has_scope(used, "executions:read"))
        self.assertFalse(ApiKeyModel.has_scope(used, "prompts:read"))
        self.assertEqual([k["name"] for k in self.keys.find_by_user_id("user-1")], ["b", "a"])
        self.assertEqual(
            self.keys.get_user_api_key_stats("user-1"),
            {"total_keys": 2, "active_keys": 1, "revoked_keys": 1, "total_requests": 2},
        )



if __name__ == "__main__":
    unittest.main()
