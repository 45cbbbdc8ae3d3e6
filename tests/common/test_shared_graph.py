import threading

import pytest

from dsg_mem.common import SharedGraphState, load_config
from dsg_mem.graph import LayerId, NodeSymbol, PlaceNodeAttributes

P1 = NodeSymbol("p", 1).key


def _state() -> SharedGraphState:
    return SharedGraphState(
        {LayerId.PLACES: "p", "rooms": "r"}, mesh_prefix="v", agent_prefix="a"
    )


def test_prefix_collisions_rejected() -> None:
    with pytest.raises(ValueError):
        SharedGraphState({LayerId.PLACES: "v"}, mesh_prefix="v")
    with pytest.raises(ValueError):
        SharedGraphState({LayerId.PLACES: "p", LayerId.ROOMS: "p"}, mesh_prefix="v")
    with pytest.raises(ValueError):
        SharedGraphState({LayerId.PLACES: "p"}, mesh_prefix="v", agent_prefix="p")


def test_layer_for_key() -> None:
    state = _state()
    assert state.layer_for_key(P1) == LayerId.PLACES
    assert state.layer_for_key(NodeSymbol("a", 3).key) == LayerId.AGENTS
    assert state.layer_for_key(NodeSymbol("v", 3).key) is None
    assert state.layer_for_key(NodeSymbol("z", 3).key) is None
    assert state.graph.has_layer(LayerId.ROOMS)
    assert not state.graph.has_layer(LayerId.OBJECTS)


def test_update_flag_is_consumed_once() -> None:
    state = _state()
    assert not state.updated
    assert state.consume_update() is None
    with state.write():
        state.mark_updated(5)
    with state.write():
        state.mark_updated(9)
    assert state.updated
    assert state.last_update_time == 9
    assert state.consume_update() == 9
    assert state.consume_update() is None
    assert state.last_update_time == 9


def test_snapshot_is_independent() -> None:
    state = _state()
    with state.write() as graph:
        graph.add_node(LayerId.PLACES, P1, PlaceNodeAttributes())
    snap = state.snapshot()
    with state.write() as graph:
        graph.remove_node(P1)
    assert snap.has_node(P1)
    with state.read() as graph:
        assert not graph.has_node(P1)


def test_reader_waits_for_running_pass() -> None:
    """A reader cannot observe the graph halfway through a pass."""
    state = _state()
    in_pass = threading.Event()
    release = threading.Event()
    seen = []

    def writer() -> None:
        with state.write() as graph:
            graph.add_node(LayerId.PLACES, P1, PlaceNodeAttributes())
            in_pass.set()
            release.wait(2.0)
            state.mark_updated(1)

    def reader() -> None:
        with state.read() as graph:
            seen.append((graph.has_node(P1), state.updated))

    w = threading.Thread(target=writer)
    w.start()
    assert in_pass.wait(2.0)
    r = threading.Thread(target=reader)
    r.start()
    r.join(0.05)
    assert seen == []
    release.set()
    w.join(2.0)
    r.join(2.0)
    assert seen == [(True, True)]


def test_from_config() -> None:
    cfg = load_config(overrides=["layer_parents.objects=rooms", "strict_edge_direction=true"])
    state = SharedGraphState.from_config(cfg)
    assert state.prefix_layer_map == {
        "o": LayerId.OBJECTS,
        "p": LayerId.PLACES,
        "r": LayerId.ROOMS,
        "b": LayerId.BUILDINGS,
        "a": LayerId.AGENTS,
    }
    assert state.graph.strict_edge_direction
    assert state.layer_for_key(NodeSymbol("v", 0).key) is None
