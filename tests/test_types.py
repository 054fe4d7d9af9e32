"""Tests for shared value types."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from accessgate.types import (
    BundleTarget,
    Decision,
    MenuTarget,
    ResolvedRole,
    RoleTarget,
    SurfaceBinding,
    as_naive_utc,
    binding_target,
    split_permission_code,
)


def test_split_permission_code():
    assert split_permission_code("reports:export") == ("reports", "export")
    assert split_permission_code("members:profile:edit") == ("members", "profile:edit")
    assert split_permission_code("dashboard") == ("general", "dashboard")


def test_decision_constructors():
    assert Decision.allow().allowed is True
    denied = Decision.deny("nope")
    assert denied.allowed is False
    assert denied.reason == "nope"
    assert denied.fallback_path is None


class TestBindingTargets:
    def test_round_trip_from_stored_pair(self):
        assert binding_target("role", "r1") == RoleTarget("r1")
        assert binding_target("bundle", "b1") == BundleTarget("b1")
        assert binding_target("menu", "m1") == MenuTarget("m1")

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            binding_target("group", "g1")

    def test_target_id_and_kind(self):
        target = BundleTarget("b1")
        assert target.kind == "bundle"
        assert target.target_id == "b1"

    def test_menu_placement_grants_nothing(self):
        assert SurfaceBinding("s1", RoleTarget("r1")).grants_access is True
        assert SurfaceBinding("s1", BundleTarget("b1")).grants_access is True
        assert SurfaceBinding("s1", MenuTarget("m1")).grants_access is False


def test_resolved_role_keys():
    role = ResolvedRole(id="r1", key="staff", metadata_key="role_staff")
    assert role.keys == {"staff", "role_staff"}


def test_as_naive_utc():
    aware = datetime(2026, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    assert as_naive_utc(aware) == datetime(2026, 1, 1, 10, 0)
    naive = datetime(2026, 1, 1, 12, 0)
    assert as_naive_utc(naive) is naive
    assert as_naive_utc(datetime(2026, 1, 1, tzinfo=UTC)).tzinfo is None
