"""
Tests for the permission gate.
"""

import json

from relaybot.security.permissions import PermissionGate, WILDCARD

from tests.helpers import FRIEND, OWNER, STRANGER


class TestHasPermission:
    """Tests for permission checks."""

    def test_owner_bypasses_gate(self, gate):
        """Test that the owner is allowed everything without grants."""
        assert gate.has_permission(OWNER, "anything")

    def test_unknown_identity_denied(self, gate):
        assert not gate.has_permission(STRANGER, "ping")

    def test_granted_command_allowed(self, gate):
        gate.grant(FRIEND, "ping")

        assert gate.has_permission(FRIEND, "ping")
        assert gate.has_permission(FRIEND, "PING")
        assert not gate.has_permission(FRIEND, "help")

    def test_wildcard_allows_everything(self, gate):
        gate.grant(FRIEND, WILDCARD)

        assert gate.has_permission(FRIEND, "ping")
        assert gate.has_permission(FRIEND, "whatever")

    def test_no_owner_configured(self, tmp_path):
        """Test that an empty owner id never matches."""
        gate = PermissionGate(tmp_path / "p.json")
        gate.load()

        assert not gate.is_owner("")
        assert not gate.has_permission("", "ping")


class TestMutations:
    """Tests for grant, revoke and clear."""

    def test_grant_twice_reports_no_change(self, gate):
        assert gate.grant(FRIEND, "ping") is True
        assert gate.grant(FRIEND, "Ping") is False
        assert gate.get_permissions(FRIEND) == ["ping"]

    def test_revoke_missing_reports_no_change(self, gate):
        assert gate.revoke(FRIEND, "ping") is False

    def test_revoking_last_command_removes_identity(self, gate):
        gate.grant(FRIEND, "ping")

        assert gate.revoke(FRIEND, "ping") is True

        assert FRIEND not in gate.all_permissions()
        assert not gate.has_permission(FRIEND, "ping")

    def test_clear(self, gate):
        gate.grant(FRIEND, "ping")
        gate.grant(FRIEND, "help")

        assert gate.clear(FRIEND) is True
        assert gate.clear(FRIEND) is False
        assert gate.get_permissions(FRIEND) == []

    def test_returned_lists_are_copies(self, gate):
        gate.grant(FRIEND, "ping")

        gate.get_permissions(FRIEND).append("help")
        gate.all_permissions()[FRIEND].append("stats")

        assert gate.get_permissions(FRIEND) == ["ping"]


class TestPersistence:
    """Tests for the JSON store."""

    def test_missing_store_is_created(self, tmp_path):
        path = tmp_path / "nested" / "permissions.json"
        gate = PermissionGate(path)

        gate.load()

        assert json.loads(path.read_text()) == {}

    def test_round_trip(self, tmp_path):
        """Test that a reloaded gate answers exactly as before."""
        path = tmp_path / "permissions.json"
        gate = PermissionGate(path, owner_id=OWNER)
        gate.load()
        gate.grant(FRIEND, "ping")
        gate.grant(FRIEND, "help")
        gate.grant(STRANGER, WILDCARD)
        gate.revoke(FRIEND, "help")

        reloaded = PermissionGate(path, owner_id=OWNER)
        reloaded.load()

        assert reloaded.all_permissions() == gate.all_permissions()
        for identity in (FRIEND, STRANGER):
            for command in ("ping", "help", "stats"):
                assert reloaded.has_permission(identity, command) == gate.has_permission(identity, command)

    def test_store_format(self, tmp_path):
        path = tmp_path / "permissions.json"
        gate = PermissionGate(path)
        gate.load()
        gate.grant(FRIEND, "ping")
        gate.grant(FRIEND, WILDCARD)

        assert json.loads(path.read_text()) == {FRIEND: ["ping", "*"]}

    def test_corrupt_store_starts_empty(self, tmp_path):
        """Test that an unreadable store is logged, not raised."""
        path = tmp_path / "permissions.json"
        path.write_text("{not json")
        gate = PermissionGate(path)

        gate.load()

        assert gate.all_permissions() == {}

    def test_non_list_entries_are_ignored(self, tmp_path):
        path = tmp_path / "permissions.json"
        path.write_text(json.dumps({FRIEND: ["ping"], STRANGER: "ping"}))
        gate = PermissionGate(path)

        gate.load()

        assert gate.all_permissions() == {FRIEND: ["ping"]}
