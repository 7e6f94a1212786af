# tests/test_structure_graph.py
"""
Test the structure graph: self references, cycle detection (direct,
indirect and concurrent), duplicate edges and temporal validity.

Requires a reachable PostgreSQL database (see conftest.py).
"""

import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from partforge.parts.errors import (
    CircularReferenceError,
    DuplicateStructureError,
    NotFoundError,
    SelfReferenceError,
    ValidationError,
)
from partforge.parts.writer import PartWriter
from partforge.structure.graph import StructureGraph


@pytest.fixture
def parts(make_part):
    """Three fresh part ids: a, b, c."""
    return [make_part(name=f"Assembly {label}").part.part_id for label in "abc"]


@pytest.fixture
def graph(session):
    return StructureGraph(session)


def _hours_ago(hours):
    return datetime.now(timezone.utc) - timedelta(hours=hours)


class TestEdgeRules:
    """Per-edge rejections."""

    def test_self_reference(self, writer, parts, actor_id):
        a = parts[0]
        with pytest.raises(SelfReferenceError):
            writer.add_structure_edge(a, a, actor_id)

    def test_direct_cycle(self, writer, parts, actor_id):
        a, b, _ = parts
        writer.add_structure_edge(a, b, actor_id)

        with pytest.raises(CircularReferenceError) as exc_info:
            writer.add_structure_edge(b, a, actor_id)
        assert exc_info.value.details["parent_part_id"] == str(b)

    def test_indirect_cycle(self, writer, parts, actor_id, graph):
        a, b, c = parts
        writer.add_structure_edge(a, b, actor_id)
        writer.add_structure_edge(b, c, actor_id)

        assert graph.would_create_cycle(c, a)
        with pytest.raises(CircularReferenceError):
            writer.add_structure_edge(c, a, actor_id)

    def test_diamond_is_not_a_cycle(self, writer, parts, actor_id):
        """Two paths to the same child are allowed."""
        a, b, c = parts
        writer.add_structure_edge(a, b, actor_id)
        writer.add_structure_edge(b, c, actor_id)
        edge = writer.add_structure_edge(a, c, actor_id)
        assert edge.child_part_id == c

    def test_duplicate_current_edge(self, writer, parts, actor_id):
        a, b, _ = parts
        writer.add_structure_edge(a, b, actor_id)
        with pytest.raises(DuplicateStructureError):
            writer.add_structure_edge(a, b, actor_id)

    def test_same_pair_other_relation_type(self, writer, parts, actor_id):
        a, b, _ = parts
        writer.add_structure_edge(a, b, actor_id)
        edge = writer.add_structure_edge(a, b, actor_id, relation_type="alternative")
        assert edge.relation_type == "alternative"

    @pytest.mark.parametrize("quantity", [0, -1, "lots"])
    def test_bad_quantity(self, writer, parts, actor_id, quantity):
        a, b, _ = parts
        with pytest.raises(ValidationError) as exc_info:
            writer.add_structure_edge(a, b, actor_id, quantity=quantity)
        assert "quantity" in exc_info.value.violations

    def test_window_must_be_ordered(self, writer, parts, actor_id):
        a, b, _ = parts
        with pytest.raises(ValidationError):
            writer.add_structure_edge(a, b, actor_id, valid_from=_hours_ago(1), valid_until=_hours_ago(2))

    def test_unknown_child(self, writer, parts, actor_id):
        with pytest.raises(NotFoundError):
            writer.add_structure_edge(parts[0], uuid4(), actor_id)


class TestTemporalValidity:
    """Only currently valid edges take part in the DAG."""

    def test_closed_edge_does_not_block_reverse(self, writer, parts, actor_id):
        a, b, _ = parts
        writer.add_structure_edge(a, b, actor_id, valid_from=_hours_ago(3), valid_until=_hours_ago(1))
        edge = writer.add_structure_edge(b, a, actor_id)
        assert edge.parent_part_id == b

    def test_future_closing_edge_is_current(self, writer, parts, actor_id):
        a, b, _ = parts
        writer.add_structure_edge(a, b, actor_id, valid_until=datetime.now(timezone.utc) + timedelta(days=30))
        with pytest.raises(CircularReferenceError):
            writer.add_structure_edge(b, a, actor_id)

    def test_current_only_filter(self, writer, parts, actor_id, graph):
        a, b, c = parts
        writer.add_structure_edge(a, b, actor_id, valid_from=_hours_ago(3), valid_until=_hours_ago(1))
        writer.add_structure_edge(a, c, actor_id)

        assert len(graph.get_edges_for_part(a)) == 2
        current = graph.get_edges_for_part(a, current_only=True)
        assert [e.child_part_id for e in current] == [c]

        # Neither edge had closed two hours ago
        assert len(graph.get_edges_for_part(a, current_only=True, at=_hours_ago(2))) == 2

    def test_children_and_parents(self, writer, parts, actor_id, graph):
        a, b, c = parts
        writer.add_structure_edge(a, b, actor_id, quantity=Decimal("2.5"))
        writer.add_structure_edge(c, b, actor_id)

        assert [e.quantity for e in graph.get_children(a)] == [Decimal("2.5")]
        assert {e.parent_part_id for e in graph.get_parents(b)} == {a, c}
        assert graph.get_children(b) == []


    def test_in_effect_excludes_edges_not_yet_open(self, writer, parts, actor_id, graph):
        a, b, c = parts
        writer.add_structure_edge(a, b, actor_id)
        writer.add_structure_edge(a, c, actor_id, valid_from=datetime.now(timezone.utc) + timedelta(days=1))

        assert len(graph.get_edges_for_part(a, current_only=True)) == 2
        in_effect = graph.get_edges_for_part(a, in_effect=True)
        assert [e.child_part_id for e in in_effect] == [b]


class TestUpdateInPlace:
    """Edges changed in place are re-checked against the rest of the graph."""

    def test_repoint_closing_cycle_rejected(self, writer, parts, actor_id, graph):
        a, b, c = parts
        writer.add_structure_edge(a, b, actor_id)
        writer.add_structure_edge(b, c, actor_id)
        shortcut = writer.add_structure_edge(a, c, actor_id)

        with pytest.raises(CircularReferenceError):
            writer.update_structure_edge(
                shortcut.part_structure_id, actor_id, parent_part_id=c, child_part_id=a,
            )
        assert graph.get_edge(shortcut.part_structure_id).parent_part_id == a

    def test_reversing_only_edge_is_allowed(self, writer, parts, actor_id):
        """The edge being moved does not count against itself."""
        a, b, _ = parts
        edge = writer.add_structure_edge(a, b, actor_id)

        moved = writer.update_structure_edge(
            edge.part_structure_id, actor_id, parent_part_id=b, child_part_id=a,
        )
        assert (moved.parent_part_id, moved.child_part_id) == (b, a)

    def test_quantity_only(self, writer, parts, actor_id):
        a, b, _ = parts
        edge = writer.add_structure_edge(a, b, actor_id, quantity=1, notes="R1")

        updated = writer.update_structure_edge(edge.part_structure_id, actor_id, quantity=Decimal("3"))

        assert updated.quantity == Decimal("3")
        assert updated.notes == "R1"
        assert updated.part_structure_id == edge.part_structure_id

    def test_reopen_closed_edge_closing_cycle_rejected(self, writer, parts, actor_id):
        a, b, _ = parts
        closed = writer.add_structure_edge(a, b, actor_id, valid_from=_hours_ago(3), valid_until=_hours_ago(1))
        writer.add_structure_edge(b, a, actor_id)

        with pytest.raises(CircularReferenceError):
            writer.update_structure_edge(closed.part_structure_id, actor_id, valid_until=None)

    def test_repoint_onto_existing_edge_rejected(self, writer, parts, actor_id):
        a, b, c = parts
        writer.add_structure_edge(a, b, actor_id)
        other = writer.add_structure_edge(a, c, actor_id)

        with pytest.raises(DuplicateStructureError):
            writer.update_structure_edge(other.part_structure_id, actor_id, child_part_id=b)

    def test_self_reference_and_unknown_edge(self, writer, parts, actor_id):
        a, b, _ = parts
        edge = writer.add_structure_edge(a, b, actor_id)

        with pytest.raises(SelfReferenceError):
            writer.update_structure_edge(edge.part_structure_id, actor_id, child_part_id=a)
        with pytest.raises(NotFoundError):
            writer.update_structure_edge(uuid4(), actor_id, quantity=2)


class TestSupersede:
    """Changing an edge keeps its history."""

    def test_supersede_closes_old_and_opens_new(self, writer, parts, actor_id, graph):
        a, b, _ = parts
        old = writer.add_structure_edge(a, b, actor_id, quantity=1, valid_from=_hours_ago(1))

        new = writer.supersede_structure_edge(old.part_structure_id, actor_id, quantity=4)

        closed = graph.get_edge(old.part_structure_id)
        assert closed.valid_until == new.valid_from
        assert new.quantity == Decimal("4")
        assert new.valid_until is None
        assert [e.part_structure_id for e in graph.get_children(a)] == [new.part_structure_id]
        assert len(graph.get_edges_for_part(a)) == 2

    def test_supersede_closed_edge_rejected(self, writer, parts, actor_id):
        a, b, _ = parts
        old = writer.add_structure_edge(a, b, actor_id, valid_from=_hours_ago(3), valid_until=_hours_ago(1))
        with pytest.raises(ValidationError):
            writer.supersede_structure_edge(old.part_structure_id, actor_id, quantity=2)

    def test_supersede_before_valid_from_rejected(self, writer, parts, actor_id):
        a, b, _ = parts
        old = writer.add_structure_edge(a, b, actor_id, valid_from=_hours_ago(1))
        with pytest.raises(ValidationError) as exc_info:
            writer.supersede_structure_edge(old.part_structure_id, actor_id, effective_at=_hours_ago(2))
        assert "effective_at" in exc_info.value.violations

    def test_remove_edge(self, writer, parts, actor_id, graph):
        a, b, _ = parts
        edge = writer.add_structure_edge(a, b, actor_id)
        writer.remove_structure_edge(edge.part_structure_id)

        assert graph.get_edge(edge.part_structure_id) is None
        with pytest.raises(NotFoundError):
            writer.remove_structure_edge(edge.part_structure_id)


class TestConcurrentInserts:
    """A->B and B->A racing cannot both pass the cycle check."""

    def test_reverse_edges_race(self, parts, session_factory, test_settings, actor_id, graph):
        a, b, _ = parts
        barrier = threading.Barrier(2)
        outcomes = []

        def add(parent, child):
            own = session_factory()
            try:
                barrier.wait()
                PartWriter(own, test_settings).add_structure_edge(parent, child, actor_id)
                outcomes.append("ok")
            except CircularReferenceError:
                outcomes.append("cycle")
            finally:
                own.close()

        threads = [threading.Thread(target=add, args=pair) for pair in ((a, b), (b, a))]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert sorted(outcomes) == ["cycle", "ok"]
        assert len(graph.get_edges_for_part(a, current_only=True)) == 1
