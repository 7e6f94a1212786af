# tests/test_part_status.py
"""
Test part-level writes under concurrency: current version pointer,
row locks and lock timeouts, new versions and deletion.

Requires a reachable PostgreSQL database (see conftest.py).
"""

import threading
from uuid import uuid4

import pytest

from partforge.parts.errors import LockTimeoutError, NotFoundError, ValidationError
from partforge.parts.locking import lock_part
from partforge.parts.models import ChangeType
from partforge.parts.requests import CreatePartVersionRequest
from partforge.parts.revisions import RevisionLedger
from partforge.parts.store import PartStore
from partforge.parts.writer import PartWriter
from partforge.settings import Settings


def _run_concurrently(*targets):
    """Start every target behind a barrier; return the exceptions raised."""
    barrier = threading.Barrier(len(targets))
    errors = []

    def wrap(target):
        def run():
            barrier.wait()
            try:
                target()
            except Exception as exc:
                errors.append(exc)
        return run

    threads = [threading.Thread(target=wrap(t)) for t in targets]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return errors


class TestUpdatePartWithStatus:
    """Pointer and status move together."""

    def test_points_at_new_version(self, make_part, writer, actor_id, session):
        created = make_part()
        part_id = created.part.part_id
        new_version = writer.create_part_version(part_id, CreatePartVersionRequest(version="0.2.0"), actor_id)

        part = writer.update_part_with_status(part_id, new_version.part_version_id, "active", actor_id)

        assert part.current_version_id == new_version.part_version_id
        assert part.status_in_bom == "active"
        revisions = RevisionLedger(session).list_for_version(new_version.part_version_id)
        assert revisions[0].change_type == ChangeType.STATUS_CHANGE

    def test_version_of_another_part_rejected(self, make_part, writer, actor_id, session):
        first = make_part()
        second = make_part()

        with pytest.raises(NotFoundError):
            writer.update_part_with_status(first.part.part_id, second.version.part_version_id, "active", actor_id)

        stored = PartStore(session).get_part(first.part.part_id)
        assert stored.current_version_id == first.version.part_version_id
        assert stored.status_in_bom == "concept"

    def test_unknown_status(self, make_part, writer, actor_id):
        created = make_part()
        with pytest.raises(ValidationError):
            writer.update_part_with_status(created.part.part_id, created.version.part_version_id, "shipping", actor_id)

    def test_concurrent_calls_serialize(self, make_part, writer, actor_id, session_factory, test_settings, session):
        """The final pointer/status pair comes from exactly one call."""
        created = make_part()
        part_id = created.part.part_id
        v2 = writer.create_part_version(part_id, CreatePartVersionRequest(version="0.2.0"), actor_id)
        calls = {(created.version.part_version_id, "active"), (v2.part_version_id, "obsolete")}

        def call(version_id, status):
            def target():
                own = session_factory()
                try:
                    PartWriter(own, test_settings).update_part_with_status(part_id, version_id, status, actor_id)
                finally:
                    own.close()
            return target

        errors = _run_concurrently(*(call(v, s) for v, s in calls))

        assert errors == []
        stored = PartStore(session).get_part(part_id)
        assert (stored.current_version_id, stored.status_in_bom) in calls


class TestRowLocks:
    """Writers wait on the Part row lock, bounded by lock_timeout."""

    def test_lock_timeout(self, make_part, session_factory, actor_id):
        created = make_part()
        blocker = session_factory()
        waiter = session_factory()
        try:
            lock_part(blocker, created.part.part_id)
            impatient = PartWriter(waiter, Settings(lock_timeout_ms=200))

            with pytest.raises(LockTimeoutError) as exc_info:
                impatient.update_part_version(created.version.part_version_id, {"pin_count": 3}, actor_id)
            assert exc_info.value.retryable
        finally:
            blocker.rollback()
            blocker.close()
            waiter.close()

    def test_concurrent_edits_are_not_lost(self, make_part, session_factory, test_settings, actor_id, session):
        """Two patches of different fields both land, with one revision each."""
        created = make_part()
        version_id = created.version.part_version_id

        def patch(values):
            def target():
                own = session_factory()
                try:
                    PartWriter(own, test_settings).update_part_version(version_id, values, actor_id)
                finally:
                    own.close()
            return target

        errors = _run_concurrently(patch({"pin_count": 8}), patch({"short_description": "Thin film"}))

        assert errors == []
        stored = PartStore(session).get_part_version(version_id)
        assert stored.get("pin_count") == 8
        assert stored.get("short_description") == "Thin film"
        updates = [r for r in RevisionLedger(session).list_for_version(version_id) if r.change_type == ChangeType.UPDATE]
        assert len(updates) == 2


class TestCreatePartVersion:
    """New versions of an existing part."""

    def test_default_version_bumps_patch(self, make_part, writer, actor_id):
        created = make_part(version="1.4.2")
        version = writer.create_part_version(created.part.part_id, CreatePartVersionRequest(), actor_id)
        assert version.version == "1.4.3"
        assert version.status == "draft"

    def test_copies_current_fields_and_overlays(self, make_part, writer, actor_id, session):
        created = make_part(name="Resistor 10k", weight=1, weight_unit="g", short_description="Thick film")
        request = CreatePartVersionRequest(version="0.2.0", short_description="Thin film")

        version = writer.create_part_version(created.part.part_id, request, actor_id)

        assert version.name == "Resistor 10k"
        assert version.get("weight_unit") == "g"
        assert version.get("short_description") == "Thin film"
        # current pointer does not move
        assert PartStore(session).get_part(created.part.part_id).current_version_id == created.version.part_version_id

    def test_copies_categories(self, make_part, writer, actor_id, session, sample_category_id):
        created = make_part(category_ids=[sample_category_id])
        version = writer.create_part_version(created.part.part_id, CreatePartVersionRequest(), actor_id)
        assert PartStore(session).get_category_ids(version.part_version_id) == [sample_category_id]

    def test_without_copy_requires_name(self, make_part, writer, actor_id):
        created = make_part()
        with pytest.raises(ValidationError) as exc_info:
            writer.create_part_version(created.part.part_id, CreatePartVersionRequest(), actor_id, copy_current=False)
        assert "name" in exc_info.value.violations

    def test_non_monotonic_version_rejected(self, make_part, writer, actor_id):
        created = make_part(version="1.0.0")
        with pytest.raises(ValidationError) as exc_info:
            writer.create_part_version(created.part.part_id, CreatePartVersionRequest(version="0.9.0"), actor_id)
        assert exc_info.value.violations["version"] == "Version 0.9.0 must be greater than 1.0.0"

    def test_unknown_part(self, writer, actor_id, setup_database):
        with pytest.raises(NotFoundError):
            writer.create_part_version(uuid4(), CreatePartVersionRequest(), actor_id)


class TestUpdateAndDeletePart:

    def test_update_part_metadata(self, make_part, writer, actor_id, session):
        created = make_part()
        part = writer.update_part(created.part.part_id, actor_id, is_public=True, lifecycle_status="approved")

        assert part.is_public is True
        assert part.lifecycle_status == "approved"
        latest = RevisionLedger(session).list_for_version(created.version.part_version_id)[0]
        assert sorted(latest.changed_fields) == ["is_public", "lifecycle_status"]

    def test_delete_removes_part_and_edges(self, make_part, writer, actor_id, session):
        parent = make_part(name="Power board")
        child = make_part(name="Capacitor 100n")
        writer.add_structure_edge(parent.part.part_id, child.part.part_id, actor_id)

        removed = writer.delete_part(child.part.part_id)

        assert removed == 1
        assert PartStore(session).get_part(child.part.part_id) is None
        assert PartStore(session).get_part_version(child.version.part_version_id) is None
        assert writer.graph.get_children(parent.part.part_id) == []

    def test_delete_unknown_part(self, writer, setup_database):
        with pytest.raises(NotFoundError):
            writer.delete_part(uuid4())
