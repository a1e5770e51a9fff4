import json

import numpy as np
import pytest

from galaxysim import (
    PINNED_COLOR,
    SYSTEM_COLOR,
    LoadResult,
    StructureInvalid,
    StructureViolation,
    SystemRecord,
    load_galaxy,
    read_description,
    records_from_frames,
    try_load_galaxy,
    write_outputs,
)
from matplotlib.colors import to_rgba


def test_load_chain_initial_state(chain_records):
    g = load_galaxy(chain_records)

    assert len(g) == 3
    assert [s.index for s in g.systems] == [0, 1, 2]
    assert g.names == ["Alpha", "Beta", "Gamma"]
    np.testing.assert_array_equal(g.positions, g.original_positions)
    np.testing.assert_array_equal(g.positions[2], [6.0, 0.0, 1.0])
    assert not g.velocities.any()
    assert not g.forces.any()
    assert [s.index for s in g.system_at(1).neighbours] == [0, 2]
    np.testing.assert_array_equal(g.edges, [[0, 1], [1, 2]])


def test_neighbour_index_out_of_range_is_identified():
    records = [
        {"name": "A", "position": [0, 0, 0], "neighbours": [1]},
        {"name": "B", "position": [1, 0, 0], "neighbours": [0, 5]},
        {"name": "C", "position": [2, 0, 0], "neighbours": []},
    ]
    with pytest.raises(StructureInvalid) as info:
        load_galaxy(records)

    err = info.value
    assert err.kind is StructureViolation.NEIGHBOUR_OUT_OF_RANGE
    assert err.index == 1
    assert err.neighbour == 5
    assert "5" in str(err)


def test_negative_neighbour_index_is_out_of_range():
    records = [{"name": "A", "position": [0, 0, 0], "neighbours": [-1]}]
    with pytest.raises(StructureInvalid) as info:
        load_galaxy(records)
    assert info.value.kind is StructureViolation.NEIGHBOUR_OUT_OF_RANGE
    assert info.value.neighbour == -1


def test_asymmetric_pair_is_rejected():
    records = [
        {"name": "A", "position": [0, 0, 0], "neighbours": [1]},
        {"name": "B", "position": [1, 0, 0], "neighbours": []},
    ]
    with pytest.raises(StructureInvalid) as info:
        load_galaxy(records)
    assert info.value.kind is StructureViolation.ASYMMETRIC_NEIGHBOURS
    assert info.value.index == 0
    assert info.value.neighbour == 1


def test_self_reference_is_rejected():
    records = [
        {"name": "A", "position": [0, 0, 0], "neighbours": [0]},
    ]
    with pytest.raises(StructureInvalid) as info:
        load_galaxy(records)
    assert info.value.kind is StructureViolation.SELF_NEIGHBOUR
    assert info.value.index == 0


def test_range_is_checked_before_symmetry():
    records = [
        {"name": "A", "position": [0, 0, 0], "neighbours": [1]},   # asymmetric
        {"name": "B", "position": [1, 0, 0], "neighbours": []},
        {"name": "C", "position": [2, 0, 0], "neighbours": [9]},   # out of range
    ]
    with pytest.raises(StructureInvalid) as info:
        load_galaxy(records)
    assert info.value.kind is StructureViolation.NEIGHBOUR_OUT_OF_RANGE
    assert info.value.index == 2


@pytest.mark.parametrize(
    "records",
    [
        [{"name": "A", "position": [0, 0, 0, 0]}],
        [{"name": "A", "position": [0, float("nan"), 0]}],
        [{"name": "A", "position": "here"}],
        [{"name": "A"}],
        [{"name": "A", "position": [0, 0], "neighbours": ["1"]}],
        [{"name": "A", "position": [0, 0], "neighbours": [1.5]}],
        [{"name": "A", "position": [0, 0], "neighbours": 3}],
        [{"name": "A", "position": [0, 0], "color": "not-a-colour"}],
        ["A"],
    ],
)
def test_malformed_records_are_rejected(records):
    with pytest.raises(StructureInvalid) as info:
        load_galaxy(records)
    assert info.value.kind is StructureViolation.MALFORMED_RECORD
    assert info.value.index == 0


@pytest.mark.parametrize(
    "neighbours",
    [
        ([1], [2], [0]),          # directed cycle
        ([1], [0], [3]),          # dangling
        ([1, 2], [0], [0, 2]),    # self loop
        ([], [], [0]),            # one-sided
        ([3], [], [], []),        # one-sided, last index
    ],
)
def test_every_malformed_topology_fails_without_a_galaxy(neighbours):
    records = [
        {"name": f"S{i}", "position": [i, 0, 0], "neighbours": list(nb)}
        for i, nb in enumerate(neighbours)
    ]
    result = try_load_galaxy(records)
    assert not result.ok
    assert result.galaxy is None
    assert isinstance(result.error, StructureInvalid)
    with pytest.raises(StructureInvalid):
        result.unwrap()


def test_try_load_success(chain_records):
    result = try_load_galaxy(chain_records)
    assert isinstance(result, LoadResult)
    assert result.ok
    assert result.unwrap() is result.galaxy


def test_flat_coordinates_are_lifted_into_3d(square_records):
    g = load_galaxy(square_records)
    assert g.original_positions.shape == (4, 3)
    assert not g.original_positions[:, 2].any()
    np.testing.assert_array_equal(g.system_at(2).position, [10.0, 10.0, 0.0])


def test_duplicate_neighbours_are_collapsed():
    records = [
        {"name": "A", "position": [0, 0, 0], "neighbours": [1, 1, 1]},
        {"name": "B", "position": [1, 0, 0], "neighbours": [0]},
    ]
    g = load_galaxy(records)
    assert len(g.system_at(0).neighbours) == 1
    assert len(g.edges) == 1


def test_colours_are_parsed_or_derived(square_records):
    g = load_galaxy(square_records)
    assert g.system_at(0).constrained
    assert g.system_at(0).get_color_components() == pytest.approx(to_rgba(PINNED_COLOR))
    assert g.system_at(1).get_color_components() == pytest.approx(to_rgba(SYSTEM_COLOR))
    assert g.system_at(2).get_color_components() == pytest.approx((1.0, 0.8, 0.0, 1.0))


def test_system_record_dataclass_input():
    g = load_galaxy([
        SystemRecord("A", (0, 0, 0), neighbours=(1,), constrained=True),
        SystemRecord("B", (0, 3, 4), neighbours=(0,), color=(0.2, 0.4, 0.6)),
    ])
    assert g.system_at(0).constrained
    assert g.desired_distance(0, 1) == pytest.approx(5.0)
    assert g.system_at(1).color == pytest.approx((0.2, 0.4, 0.6, 1.0))


def test_empty_description_loads():
    g = load_galaxy([])
    assert len(g) == 0
    g.step(0.1)
    g.jiggle(1.0)
    g.reset()
    assert g.edges.shape == (0, 2)


def test_records_from_frames_round_trip(chain_records):
    g = load_galaxy(chain_records)
    nodes, edges = g.to_frames()
    again = load_galaxy(records_from_frames(nodes, edges))

    assert again.names == g.names
    for a in range(3):
        for b in range(3):
            assert again.has_neighbour(a, b) == g.has_neighbour(a, b)
    np.testing.assert_allclose(again.original_positions, g.positions)


def test_read_description_json_forms(tmp_path, chain_records):
    as_list = tmp_path / "list.json"
    as_list.write_text(json.dumps(chain_records))
    as_object = tmp_path / "object.json"
    as_object.write_text(json.dumps({"systems": chain_records}))

    assert read_description(str(as_list)) == chain_records
    assert read_description(str(as_object)) == chain_records


def test_read_description_from_output_directory(tmp_path, square_records):
    g = load_galaxy(square_records)
    g.jiggle(0.5)
    write_outputs(g, str(tmp_path), write_gexf=False)

    again = load_galaxy(read_description(str(tmp_path)))
    assert len(again) == 4
    assert again.system_at(0).constrained
    assert again.has_neighbour(0, 3) and again.has_neighbour(3, 0)
    np.testing.assert_allclose(again.original_positions, g.positions)


def test_output_directory_keeps_names_pandas_would_read_as_missing(tmp_path):
    records = [
        {"name": "NA", "position": [0, 0, 0], "neighbours": [1]},
        {"name": "", "position": [3, 0, 0], "neighbours": [0, 2]},
        {"name": "null", "position": [3, 4, 0], "neighbours": [1]},
    ]
    write_outputs(load_galaxy(records), str(tmp_path), write_gexf=False)

    again = load_galaxy(read_description(str(tmp_path)))
    assert again.names == ["NA", "", "null"]
    assert again.has_neighbour(1, 2)


@pytest.mark.parametrize("payload", [
    {"stars": [{"name": "A", "position": [0, 0, 0]}]},
    {"systems": {"name": "A", "position": [0, 0, 0]}},
    "galaxy",
])
def test_read_description_rejects_json_without_systems_list(tmp_path, payload):
    path = tmp_path / "galaxy.json"
    path.write_text(json.dumps(payload))
    with pytest.raises(ValueError, match="list of systems"):
        read_description(str(path))
