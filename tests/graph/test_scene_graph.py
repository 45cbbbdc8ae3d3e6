import logging

import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from dsg_mem.graph import (
    AgentNodeAttributes,
    BoundingBox,
    BoundingBoxType,
    Edge,
    GraphInvariantError,
    LayerId,
    NodeAttributes,
    NodeSymbol,
    ObjectNodeAttributes,
    PlaceNodeAttributes,
    SceneGraph,
    merge_attributes,
)

P1 = NodeSymbol("p", 1).key
P2 = NodeSymbol("p", 2).key
P3 = NodeSymbol("p", 3).key
R1 = NodeSymbol("r", 1).key
R2 = NodeSymbol("r", 2).key
O1 = NodeSymbol("o", 1).key
B1 = NodeSymbol("b", 1).key


def _place_and_room() -> SceneGraph:
    graph = SceneGraph()
    graph.add_node(LayerId.PLACES, P1, PlaceNodeAttributes(position=[0.0, 0.0, 0.0]))
    graph.add_node(LayerId.ROOMS, R1, NodeAttributes())
    return graph


def test_child_first_edge_is_fixed_with_warning(caplog) -> None:
    """An edge submitted place -> room is committed room -> place."""
    graph = _place_and_room()
    with caplog.at_level(logging.WARNING):
        edge = graph.add_edge(Edge(LayerId.PLACES, P1, LayerId.ROOMS, R1))
    assert (edge.source, edge.target) == (R1, P1)
    assert (edge.source_layer, edge.target_layer) == (LayerId.ROOMS, LayerId.PLACES)
    assert graph.parent_of(P1) == R1
    assert graph.children_of(R1) == [P1]
    assert "child-first" in caplog.text
    assert graph.log_status()["direction_fixes"] == 1


def test_parent_first_edge_is_not_flagged(caplog) -> None:
    graph = _place_and_room()
    with caplog.at_level(logging.WARNING):
        edge = graph.add_edge(Edge(LayerId.ROOMS, R1, LayerId.PLACES, P1))
    assert (edge.source, edge.target) == (R1, P1)
    assert caplog.text == ""


def test_strict_direction_rejects_child_first() -> None:
    graph = SceneGraph(strict_edge_direction=True)
    graph.add_node(LayerId.PLACES, P1, PlaceNodeAttributes())
    graph.add_node(LayerId.ROOMS, R1, NodeAttributes())
    with pytest.raises(GraphInvariantError):
        graph.add_edge(Edge(LayerId.PLACES, P1, LayerId.ROOMS, R1))
    assert graph.parent_of(P1) is None


def test_edge_preconditions_are_fatal() -> None:
    graph = _place_and_room()
    graph.add_node(LayerId.BUILDINGS, B1, NodeAttributes())
    with pytest.raises(GraphInvariantError):
        graph.add_edge(Edge(LayerId.ROOMS, R2, LayerId.PLACES, P1))
    with pytest.raises(GraphInvariantError):
        graph.add_edge(Edge(LayerId.PLACES, P1, LayerId.PLACES, P1))
    with pytest.raises(GraphInvariantError):
        graph.add_edge(Edge(LayerId.BUILDINGS, B1, LayerId.PLACES, P1))
    with pytest.raises(GraphInvariantError):
        graph.add_edge(Edge(LayerId.OBJECTS, P1, LayerId.ROOMS, R1))


def test_missing_layer_lookups() -> None:
    graph = SceneGraph([LayerId.PLACES])
    with pytest.raises(GraphInvariantError):
        graph.get_layer(LayerId.ROOMS)
    assert graph.try_get_layer(LayerId.ROOMS) is None
    assert not graph.has_layer(LayerId.ROOMS)


def test_get_node_absent_is_logged_not_fatal(caplog) -> None:
    graph = _place_and_room()
    with caplog.at_level(logging.ERROR):
        assert graph.get_node(LayerId.PLACES, P2) is None
        assert graph.get_node(LayerId.PLACES, R1) is None
    assert "missing node" in caplog.text
    assert graph.get_node(LayerId.PLACES, P1).id == P1


def test_duplicate_node_ids_rejected() -> None:
    graph = _place_and_room()
    assert not graph.add_node(LayerId.ROOMS, P1, NodeAttributes())
    assert graph.num_nodes() == 2
    with pytest.raises(GraphInvariantError):
        graph.add_node(LayerId.AGENTS, NodeSymbol("a", 0).key, AgentNodeAttributes())


def test_agents_hang_below_places() -> None:
    graph = _place_and_room()
    agent = NodeSymbol("a", 0).key
    assert graph.add_agent_node("a", agent, AgentNodeAttributes(timestamp_ns=5))
    edge = graph.connect(agent, P1)
    assert edge.source == P1
    assert graph.get_node(LayerId.AGENTS, agent).prefix == "a"
    assert graph.get_dynamic_layer("a") is not None
    assert [n.id for n in graph.nodes(LayerId.AGENTS)] == [agent]


def test_new_parent_replaces_old_one() -> None:
    graph = _place_and_room()
    graph.add_node(LayerId.ROOMS, R2, NodeAttributes())
    graph.connect(R1, P1)
    graph.connect(R2, P1)
    assert graph.parent_of(P1) == R2
    assert graph.children_of(R1) == []
    graph.check_consistency()


def test_inter_layer_edge_ids_are_monotonic() -> None:
    graph = _place_and_room()
    graph.add_node(LayerId.PLACES, P2, PlaceNodeAttributes())
    first = graph.connect(R1, P1)
    graph.remove_edge(P1, R1)
    second = graph.connect(R1, P2)
    assert second.edge_id > first.edge_id
    assert first.edge_id not in graph.inter_layer_edges


def test_remove_node_clears_every_reference() -> None:
    graph = _place_and_room()
    graph.add_node(LayerId.PLACES, P2, PlaceNodeAttributes())
    graph.add_node(LayerId.OBJECTS, O1, ObjectNodeAttributes())
    graph.connect(R1, P1)
    graph.connect(P1, P2)
    graph.connect(P1, O1)
    assert graph.remove_node(P1)
    assert graph.children_of(R1) == []
    assert graph.parent_of(O1) is None
    assert graph.siblings_of(P2) == []
    assert graph.inter_layer_edges == {}
    graph.check_consistency()
    assert not graph.remove_node(P1)


def test_layer_parent_overrides() -> None:
    graph = SceneGraph(layer_parents={LayerId.OBJECTS: LayerId.ROOMS})
    graph.add_node(LayerId.OBJECTS, O1, ObjectNodeAttributes())
    graph.add_node(LayerId.ROOMS, R1, NodeAttributes())
    assert graph.connect(O1, R1).source == R1
    with pytest.raises(GraphInvariantError):
        SceneGraph(layer_parents={LayerId.ROOMS: LayerId.PLACES})


def test_merge_nodes_moves_relations_to_survivor() -> None:
    graph = _place_and_room()
    graph.add_node(LayerId.ROOMS, R2, NodeAttributes())
    graph.add_node(LayerId.PLACES, P2, PlaceNodeAttributes(points=[[1.0, 0.0, 0.0]]))
    graph.add_node(LayerId.PLACES, P3, PlaceNodeAttributes())
    graph.add_node(LayerId.OBJECTS, O1, ObjectNodeAttributes())
    graph.connect(R1, P1)
    graph.connect(R2, P2)
    graph.connect(P2, O1)
    graph.connect(P2, P3)

    graph.merge_nodes(P2, P1)

    assert not graph.has_node(P2)
    assert graph.parent_of(P1) == R1
    assert graph.children_of(P1) == [O1]
    assert graph.siblings_of(P1) == [P3]
    assert graph.children_of(R2) == []
    assert graph.find_node(P1).attributes.points.shape == (1, 3)
    assert graph.log_status()["merges"] == 1
    graph.check_consistency()


def test_merge_adopts_parent_when_survivor_has_none() -> None:
    graph = _place_and_room()
    graph.add_node(LayerId.PLACES, P2, PlaceNodeAttributes())
    graph.connect(R1, P2)
    graph.merge_nodes(P2, P1)
    assert graph.parent_of(P1) == R1


def test_merge_requires_same_layer() -> None:
    graph = _place_and_room()
    with pytest.raises(GraphInvariantError):
        graph.merge_nodes(P1, R1)
    with pytest.raises(GraphInvariantError):
        graph.merge_nodes(P2, P1)


def test_merge_attributes_unions_geometry() -> None:
    lhs = ObjectNodeAttributes(
        bounding_box=BoundingBox([0, 0, 0], [1, 1, 1]),
        mesh_connections=[3, 1],
        last_update_time_ns=4,
    )
    rhs = ObjectNodeAttributes(
        bounding_box=BoundingBox([2, -1, 0], [3, 0, 1]),
        points=[[0.0, 0.0, 0.0], [1.0, 1.0, 1.0]],
        mesh_connections=[1, 7],
        last_update_time_ns=9,
    )
    merge_attributes(lhs, rhs)
    assert np.allclose(lhs.bounding_box.min, [0, -1, 0])
    assert np.allclose(lhs.bounding_box.max, [3, 1, 1])
    assert lhs.points.shape == (2, 3)
    assert lhs.mesh_connections == [1, 3, 7]
    assert lhs.last_update_time_ns == 9


def test_clone_is_independent() -> None:
    graph = _place_and_room()
    graph.connect(R1, P1)
    copy = graph.clone()
    copy.remove_node(P1)
    copy.add_node(LayerId.PLACES, P2, PlaceNodeAttributes())
    assert graph.has_node(P1) and not graph.has_node(P2)
    assert graph.parent_of(P1) == R1
    copy.check_consistency()


_LAYER_OF = {
    **{NodeSymbol("p", i).key: LayerId.PLACES for i in range(4)},
    **{NodeSymbol("r", i).key: LayerId.ROOMS for i in range(3)},
    **{NodeSymbol("b", i).key: LayerId.BUILDINGS for i in range(2)},
}
_IDS = sorted(_LAYER_OF)


@settings(max_examples=50, deadline=None)
@given(
    st.lists(
        st.tuples(
            st.sampled_from(["add", "remove", "connect", "disconnect"]),
            st.sampled_from(_IDS),
            st.sampled_from(_IDS),
        ),
        max_size=40,
    )
)
def test_no_orphaned_references_after_mutations(ops) -> None:
    """Parent/child fields always match the global inter-layer edge set."""
    graph = SceneGraph([LayerId.PLACES, LayerId.ROOMS, LayerId.BUILDINGS])
    for op, a, b in ops:
        if op == "add":
            graph.add_node(_LAYER_OF[a], a, NodeAttributes())
        elif op == "remove":
            graph.remove_node(a)
        elif op == "connect":
            try:
                graph.connect(a, b)
            except GraphInvariantError:
                pass
        else:
            graph.remove_edge(a, b)
        graph.check_consistency()

    for edge_id, edge in graph.inter_layer_edges.items():
        assert edge.source_layer > edge.target_layer
        assert graph.find_node(edge.target).parent_edge == edge_id
        assert graph.find_node(edge.source).children[edge_id] == edge.target
    for layer in graph.all_layers():
        for node in layer:
            for edge_id in node.children:
                assert edge_id in graph.inter_layer_edges
            if node.parent_edge is not None:
                assert node.parent_edge in graph.inter_layer_edges


def test_oriented_box_contains_and_corners() -> None:
    quarter_turn = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    box = BoundingBox(
        [0, 0, 0], [2, 1, 1], BoundingBoxType.OBB, position=[1, 0, 0], orientation=quarter_turn
    )
    assert box.contains([0.5, 1.5, 0.5])
    assert not box.contains([2.5, 0.5, 0.5])
    corners = box.corners()
    assert corners.shape == (8, 3)
    aabb = box.union(BoundingBox([0, 0, 0], [0.1, 0.1, 0.1]))
    assert np.allclose(aabb.min, [0, 0, 0])
    assert np.allclose(aabb.max, [1, 2, 1])
    with pytest.raises(ValueError):
        BoundingBox([1, 0, 0], [0, 0, 0])


def test_edge_validity() -> None:
    graph = _place_and_room()
    edge = graph.connect(R1, P1)
    assert graph.is_edge_valid(edge)
    assert not graph.is_edge_valid(None)
    assert not graph.is_edge_valid(Edge(LayerId.ROOMS, R1, LayerId.PLACES, P1))
    graph.remove_node(P1)
    assert not graph.is_edge_valid(edge)
