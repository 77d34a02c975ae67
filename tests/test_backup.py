"""
Tests for restore points and compensating restore.
"""

import json
import threading
from datetime import datetime, timedelta, timezone

import pytest
from tenantops.backup.locks import DeploymentLocks
from tenantops.backup.manager import BackupManager, RestoreAction
from tenantops.backup.storage import RestorePoint, RestorePointStorage
from tenantops.clients.memory import InMemoryDirectoryClient
from tenantops.core.errors import (
    BackupError,
    DeploymentLockedError,
    TerminalRemoteError,
    TransientRemoteError,
)
from tenantops.orchestration.plan_builder import DeploymentPlan
from tenantops.store.models import ItemKind

G = ItemKind.GROUP
L = ItemKind.NAMED_LOCATION
P = ItemKind.ACCESS_POLICY

ORDER = ((G, "break-glass"), (L, "office"), (P, "require-mfa"))


def _plan(deployment_id="20260101T000000000000Z-dev-abcd"):
    return DeploymentPlan(
        deployment_id=deployment_id, environment="dev", order=ORDER, waves=tuple((k,) for k in ORDER)
    )


@pytest.fixture
def storage(tmp_path):
    return RestorePointStorage(tmp_path / "state", retention_days=30)


@pytest.fixture
def seeded_client():
    client = InMemoryDirectoryClient()
    client.seed(G, "break-glass", {"displayName": "break-glass", "description": "old"})
    return client


@pytest.fixture
def manager(seeded_client, storage):
    return BackupManager(seeded_client, storage)


class TestSnapshot:
    def test_captures_existing_and_absent_items(self, manager, storage):
        restore_point = manager.snapshot(_plan())

        assert restore_point.snapshots[(G, "break-glass")]["description"] == "old"
        assert restore_point.was_absent((L, "office"))
        assert restore_point.was_absent((P, "require-mfa"))
        assert restore_point.order == ORDER
        assert storage.path_for(restore_point.deployment_id).exists()

    def test_restore_point_is_immutable(self, manager):
        restore_point = manager.snapshot(_plan())

        with pytest.raises(TypeError):
            restore_point.snapshots[(L, "office")] = {}
        with pytest.raises(AttributeError):
            restore_point.deployment_id = "other"

    def test_snapshot_file_is_never_overwritten(self, manager):
        manager.snapshot(_plan())

        with pytest.raises(BackupError, match="already exists"):
            manager.snapshot(_plan())

    def test_read_failure_propagates(self, seeded_client, manager):
        seeded_client.fail("get", L, "office", TerminalRemoteError("forbidden"))

        with pytest.raises(TerminalRemoteError):
            manager.snapshot(_plan())


class TestStorage:
    def test_round_trip_serializes_absent_as_null(self, storage):
        created = datetime.now(timezone.utc).replace(microsecond=0)
        restore_point = RestorePoint(
            "d1", created, ORDER, {ORDER[0]: {"displayName": "break-glass"}, ORDER[1]: None}
        )

        path = storage.save(restore_point)
        raw = json.loads(path.read_text())
        loaded = storage.load("d1")

        assert raw["snapshots"]["NamedLocation:office"] is None
        assert raw["order"] == ["Group:break-glass", "NamedLocation:office", "AccessPolicy:require-mfa"]
        assert loaded.order == ORDER
        assert dict(loaded.snapshots) == dict(restore_point.snapshots)
        assert loaded.created_at == created

    def test_missing_restore_point(self, storage):
        with pytest.raises(BackupError, match="No restore point"):
            storage.load("nope")

    def test_prune_removes_points_past_retention(self, storage):
        now = datetime.now(timezone.utc)
        storage.save(RestorePoint("old", now - timedelta(days=45), ORDER, {}))
        storage.save(RestorePoint("recent", now - timedelta(days=2), ORDER, {}))

        assert storage.list_ids() == ["recent"]
        assert storage.prune(now=now + timedelta(days=40)) == ["recent"]
        assert storage.list_ids() == []


class TestRestore:
    def _apply_everything(self, client):
        client.create_or_update(G, "break-glass", {"displayName": "break-glass", "description": "new"})
        client.create_or_update(L, "office", {"displayName": "office", "ipRanges": ["10.0.0.0/8"]})
        client.create_or_update(P, "require-mfa", {"displayName": "require-mfa", "state": "disabled"})

    def test_round_trip_returns_to_prior_state(self, seeded_client, manager):
        before = seeded_client.state()
        restore_point = manager.snapshot(_plan())
        self._apply_everything(seeded_client)

        report = manager.restore(restore_point)

        assert report.complete
        assert seeded_client.state() == before
        assert report.keys_with(RestoreAction.DELETED) == [(P, "require-mfa"), (L, "office")]
        assert report.keys_with(RestoreAction.RESTORED) == [(G, "break-glass")]

    def test_walks_keys_in_reverse_plan_order(self, seeded_client, manager):
        restore_point = manager.snapshot(_plan())
        self._apply_everything(seeded_client)
        seeded_client.calls.clear()

        manager.restore(restore_point)

        mutated = [key for operation, key in seeded_client.calls if operation != "get"]
        assert mutated == list(reversed(ORDER))

    def test_absent_item_already_gone_counts_as_done(self, manager):
        restore_point = manager.snapshot(_plan())

        report = manager.restore(restore_point)

        assert report.complete
        assert set(report.keys_with(RestoreAction.UNCHANGED)) == {(L, "office"), (P, "require-mfa")}

    def test_failure_is_recorded_and_restore_continues(self, seeded_client, manager):
        restore_point = manager.snapshot(_plan())
        self._apply_everything(seeded_client)
        seeded_client.fail("delete", L, "office", TerminalRemoteError("forbidden"))

        report = manager.restore(restore_point)

        assert not report.complete
        [failed] = report.failed
        assert failed.key == (L, "office")
        assert "forbidden" in failed.error
        # items on either side of the failure were still restored
        assert (P, "require-mfa") not in seeded_client.state()
        assert seeded_client.state()[(G, "break-glass")]["description"] == "old"

    def test_transient_errors_are_retried(self, seeded_client, storage):
        from tenantops.clients.retry import RetryPolicy

        manager = BackupManager(seeded_client, storage, retry=RetryPolicy(3, 0, 0))
        restore_point = manager.snapshot(_plan())
        self._apply_everything(seeded_client)
        seeded_client.fail("delete", L, "office", TransientRemoteError("503"), TransientRemoteError("503"))

        assert manager.restore(restore_point).complete

    def test_item_changed_by_someone_else_is_stale(self, seeded_client, manager):
        restore_point = manager.snapshot(_plan())
        applied = {
            (G, "break-glass"): {"displayName": "break-glass", "description": "new"},
            (L, "office"): {"displayName": "office", "ipRanges": ["10.0.0.0/8"]},
        }
        for (kind, name), body in applied.items():
            seeded_client.create_or_update(kind, name, body)
        # an administrator edits the group between apply and restore
        seeded_client.create_or_update(
            G, "break-glass", {"displayName": "break-glass", "description": "hand edit"}
        )

        report = manager.restore(restore_point, expected=applied)

        assert not report.complete
        assert report.keys_with(RestoreAction.STALE) == [(G, "break-glass")]
        assert report.keys_with(RestoreAction.DELETED) == [(L, "office")]
        assert report.keys_with(RestoreAction.UNCHANGED) == [(P, "require-mfa")]
        assert seeded_client.state()[(G, "break-glass")]["description"] == "hand edit"

    def test_fields_added_by_the_deployment_are_reverted(self, storage):
        client = InMemoryDirectoryClient()
        client.seed(G, "break-glass", {"displayName": "break-glass"})
        before = client.state()
        manager = BackupManager(client, storage)
        restore_point = manager.snapshot(_plan())
        sent = {"displayName": "break-glass", "description": "Emergency access"}
        client.create_or_update(G, "break-glass", sent)

        report = manager.restore(restore_point, expected={(G, "break-glass"): sent})

        assert report.complete
        assert report.keys_with(RestoreAction.RESTORED) == [(G, "break-glass")]
        assert client.state() == before

    def test_preview_reports_actions_without_writing(self, seeded_client, manager):
        restore_point = manager.snapshot(_plan())
        self._apply_everything(seeded_client)
        after = seeded_client.state()
        seeded_client.calls.clear()

        report = manager.preview(restore_point)

        assert seeded_client.state() == after
        assert {operation for operation, _ in seeded_client.calls} == {"get"}
        assert report.keys_with(RestoreAction.DELETED) == [(P, "require-mfa"), (L, "office")]
        assert report.keys_with(RestoreAction.RESTORED) == [(G, "break-glass")]

    def test_preview_of_untouched_tenant_is_unchanged(self, manager):
        restore_point = manager.snapshot(_plan())

        report = manager.preview(restore_point)

        assert [result.action for result in report.results] == [RestoreAction.UNCHANGED] * 3


class TestLocks:
    def test_lock_is_exclusive_across_threads(self):
        locks = DeploymentLocks()
        held = threading.Event()
        release = threading.Event()

        def holder():
            with locks.hold("d1"):
                held.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        held.wait(5)
        try:
            with pytest.raises(DeploymentLockedError):
                with locks.hold("d1", timeout=0.05):
                    pass
            with locks.hold("d2", timeout=0.05):
                pass
        finally:
            release.set()
            thread.join()

    def test_lock_is_reentrant(self):
        locks = DeploymentLocks()

        with locks.hold("d1"):
            with locks.hold("d1", timeout=0):
                pass

    def test_released_locks_are_forgotten(self):
        locks = DeploymentLocks()

        with locks.hold("d1"):
            with locks.hold("d2"):
                assert len(locks) == 2
        assert len(locks) == 0

    def test_failed_acquire_does_not_drop_held_lock(self):
        locks = DeploymentLocks()
        held = threading.Event()
        release = threading.Event()

        def holder():
            with locks.hold("d1"):
                held.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        held.wait(5)
        try:
            for _ in range(2):
                with pytest.raises(DeploymentLockedError):
                    with locks.hold("d1", timeout=0.01):
                        pass
            assert len(locks) == 1
        finally:
            release.set()
            thread.join()
        assert len(locks) == 0
