import numpy as np
from hypothesis import given, settings
from hypothesis import strategies as st

from dsg_mem.graph import AgentNodeAttributes, LayerId, NodeAttributes, NodeSymbol, SceneGraph
from dsg_mem.spatial import (
    DynamicNearestNodeFinder,
    NearestNodeFinder,
    NearestVoxelFinder,
    nodes_within,
)


def _places(points: dict) -> SceneGraph:
    graph = SceneGraph([LayerId.PLACES])
    for node_id, pos in points.items():
        graph.add_node(LayerId.PLACES, node_id, NodeAttributes(position=pos))
    return graph


def _collect(finder, position, k, skip_first):
    hits = []
    finder.find(position, k, skip_first, lambda n, rank, d: hits.append((n, rank, d)))
    return hits


def test_skip_first_drops_query_point() -> None:
    """Query from an indexed point returns the other two in distance order."""
    graph = _places({1: (0, 0, 0), 2: (1, 0, 0), 3: (5, 0, 0)})
    finder = NearestNodeFinder(graph.get_layer(LayerId.PLACES), [1, 2, 3])
    hits = _collect(finder, (0, 0, 0), 2, True)
    assert [(n, r) for n, r, _ in hits] == [(2, 0), (3, 1)]
    assert np.allclose([d for *_, d in hits], [1.0, 5.0])


def test_skip_first_with_colocated_nodes() -> None:
    """A query from one of two colocated nodes reports the other one."""
    graph = _places({1: (0, 0, 0), 2: (0, 0, 0), 3: (1, 0, 0)})
    finder = NearestNodeFinder(graph.get_layer(LayerId.PLACES), [1, 2, 3])
    hits = []
    finder.find((0, 0, 0), 1, True, lambda n, rank, d: hits.append((n, d)), query_id=2)
    assert hits == [(1, 0.0)]
    hits.clear()
    finder.find((0, 0, 0), 2, True, lambda n, rank, d: hits.append(n), query_id=1)
    assert hits == [2, 3]


def test_skip_first_keeps_hits_when_query_is_not_indexed() -> None:
    graph = _places({1: (0, 0, 0), 2: (1, 0, 0)})
    finder = NearestNodeFinder(graph.get_layer(LayerId.PLACES), [1, 2])
    assert [n for n, *_ in _collect(finder, (0.2, 0, 0), 2, True)] == [1, 2]
    assert [n for n, *_ in _collect(finder, (0, 0, 0), 5, True)] == [2]


def test_fewer_points_than_requested() -> None:
    graph = _places({1: (0, 0, 0), 2: (1, 0, 0)})
    finder = NearestNodeFinder(graph.get_layer(LayerId.PLACES), [1, 2, 99])
    assert len(finder) == 2
    assert [n for n, *_ in _collect(finder, (3, 0, 0), 10, False)] == [2, 1]
    assert _collect(finder, (3, 0, 0), 0, False) == []


def test_ties_break_by_ascending_id() -> None:
    graph = _places({5: (1, 0, 0), 3: (-1, 0, 0), 4: (0, 1, 0)})
    finder = NearestNodeFinder(graph.get_layer(LayerId.PLACES), [3, 4, 5])
    assert [n for n, *_ in _collect(finder, (0, 0, 0), 2, False)] == [3, 4]


_coords = st.tuples(*[st.integers(min_value=-3, max_value=3)] * 3)
_far_coords = st.tuples(
    *[st.floats(min_value=0.0, max_value=0.01).map(lambda c: 5000.0 + c)] * 3
)


@settings(max_examples=50, deadline=None)
@given(
    st.dictionaries(
        st.integers(min_value=0, max_value=10_000),
        st.one_of(_coords, _far_coords),
        min_size=1,
        max_size=25,
    ),
    st.one_of(_coords, _far_coords),
    st.integers(min_value=1, max_value=30),
)
def test_matches_brute_force(points, query, k) -> None:
    """Exactly the k closest ids, ordered by distance then id."""
    graph = _places(points)
    finder = NearestNodeFinder(graph.get_layer(LayerId.PLACES), points)
    q = np.asarray(query, dtype=float)
    expected = sorted(points, key=lambda n: (float(np.sum((np.asarray(points[n]) - q) ** 2)), n))
    hits = _collect(finder, query, k, False)
    assert [n for n, *_ in hits] == expected[:k]
    assert [r for _, r, _ in hits] == list(range(len(hits)))


def test_voxel_finder_reports_squared_distance() -> None:
    finder = NearestVoxelFinder([(2, 0, 0), (0, 0, 0), (0, 1, 0), (0, 0, 0)])
    assert len(finder) == 3
    hits = []
    finder.find((0, 0, 0), 2, lambda idx, rank, d: hits.append((idx, rank, d)))
    assert hits == [((0, 0, 0), 0, 0), ((0, 1, 0), 1, 1)]


def test_voxel_finder_empty() -> None:
    hits = []
    NearestVoxelFinder([]).find((0, 0, 0), 3, lambda *args: hits.append(args))
    assert hits == []


def test_dynamic_finder_tracks_changes() -> None:
    graph = _places({1: (0, 0, 0), 2: (1, 0, 0), 3: (5, 0, 0)})
    finder = DynamicNearestNodeFinder(graph, LayerId.PLACES)
    finder.add_nodes({1, 2})
    hits = []
    finder.find((4, 0, 0), 5, False, lambda n, d: hits.append(n))
    assert hits == [2, 1]

    finder.add_nodes([3, 42])
    finder.remove_node(2)
    hits.clear()
    finder.find((0, 0, 0), 5, True, lambda n, d: hits.append((n, d)))
    assert hits == [(3, 5.0)]
    assert len(finder) == 2


def test_dynamic_finder_ties_use_node_id() -> None:
    graph = _places({9: (1, 0, 0), 7: (-1, 0, 0)})
    finder = DynamicNearestNodeFinder(graph, LayerId.PLACES)
    finder.add_nodes([9])
    finder.add_nodes([7])
    hits = []
    finder.find((0, 0, 0), 1, False, lambda n, d: hits.append(n))
    assert hits == [7]


def test_dynamic_finder_missing_layer() -> None:
    finder = DynamicNearestNodeFinder(SceneGraph([LayerId.PLACES]), LayerId.ROOMS)
    finder.add_nodes([1])
    assert len(finder) == 0


def test_nodes_within_radius() -> None:
    graph = _places({i: (float(i), 0, 0) for i in range(20)})
    finder = NearestNodeFinder(graph.get_layer(LayerId.PLACES), range(20))
    found = nodes_within(finder, (0, 0, 0), 10.5, batch=2)
    assert [n for n, _ in found] == list(range(11))


@settings(max_examples=50, deadline=None)
@given(
    st.lists(_far_coords, min_size=3, max_size=50),
    _far_coords,
    st.integers(min_value=1, max_value=5),
)
def test_exact_far_from_origin(points, query, k) -> None:
    """Sub-centimetre gaps five kilometres out are still ordered exactly."""
    graph = _places(dict(enumerate(points)))
    finder = NearestNodeFinder(graph.get_layer(LayerId.PLACES), range(len(points)))
    q = np.asarray(query, dtype=float)
    exact = [float(np.sum((np.asarray(pt) - q) ** 2)) for pt in points]
    expected = sorted(range(len(points)), key=lambda n: (exact[n], n))
    assert [n for n, *_ in _collect(finder, query, k, False)] == expected[:k]


def test_dynamic_finder_skips_query_id() -> None:
    graph = _places({1: (0, 0, 0), 2: (0, 0, 0), 3: (1, 0, 0)})
    finder = DynamicNearestNodeFinder(graph, LayerId.PLACES)
    finder.add_nodes([1, 2, 3])
    hits = []
    finder.find((0, 0, 0), 1, True, lambda n, d: hits.append(n), query_id=2)
    assert hits == [1]


def test_dynamic_finder_indexes_agents() -> None:
    graph = _places({1: (0, 0, 0)})
    a0, a1 = NodeSymbol("a", 0).key, NodeSymbol("b", 0).key
    graph.add_agent_node("a", a0, AgentNodeAttributes(position=[1.0, 0.0, 0.0]))
    graph.add_agent_node("b", a1, AgentNodeAttributes(position=[3.0, 0.0, 0.0]))
    finder = DynamicNearestNodeFinder(graph, LayerId.AGENTS)
    finder.add_nodes([a0, a1, 1])
    assert len(finder) == 2
    hits = []
    finder.find((2.5, 0, 0), 2, False, lambda n, d: hits.append(n))
    assert hits == [a1, a0]
