import math

import pytest

from actionrunner.errors import InvalidMatrix
from actionrunner.matrix import expand
from actionrunner.model import MatrixSpec


def test_expand_nested_loop_order():
    spec = MatrixSpec.from_mapping({"os": ["linux", "mac"], "py": ["3.11", "3.12", "3.13"]})

    bindings = expand(spec)

    assert bindings == [
        {"os": "linux", "py": "3.11"},
        {"os": "linux", "py": "3.12"},
        {"os": "linux", "py": "3.13"},
        {"os": "mac", "py": "3.11"},
        {"os": "mac", "py": "3.12"},
        {"os": "mac", "py": "3.13"},
    ]


@pytest.mark.parametrize("sizes", [(1,), (2, 3), (2, 2, 2), (4, 1, 3)])
def test_expand_size_is_product_of_axes(sizes):
    axes = {f"a{i}": list(range(n)) for i, n in enumerate(sizes)}

    bindings = expand(MatrixSpec.from_mapping(axes))

    assert len(bindings) == math.prod(sizes)
    assert len({tuple(b.items()) for b in bindings}) == len(bindings)
    assert all(set(b) == set(axes) for b in bindings)


def test_no_matrix_yields_single_empty_binding():
    assert expand(None) == [{}]
    assert expand(MatrixSpec()) == [{}]


def test_empty_axis_rejected():
    spec = MatrixSpec.from_mapping({"os": ["linux"], "py": []})
    with pytest.raises(InvalidMatrix, match="py"):
        expand(spec)


def test_non_scalar_values_rejected():
    with pytest.raises(InvalidMatrix):
        MatrixSpec.from_mapping({"os": [{"name": "linux"}]})
    with pytest.raises(InvalidMatrix):
        MatrixSpec.from_mapping({"os": [None]})
    with pytest.raises(InvalidMatrix):
        MatrixSpec.from_mapping({"os": "linux"})


def test_values_that_compare_equal_rejected():
    with pytest.raises(InvalidMatrix, match="repeats"):
        MatrixSpec.from_mapping({"flag": [1, True]})


def test_mixed_scalar_types_kept_as_is():
    bindings = expand(MatrixSpec.from_mapping({"v": ["3.10", 3.11, 12, False]}))
    assert [b["v"] for b in bindings] == ["3.10", 3.11, 12, False]


def test_exclude_removes_matching_combinations():
    spec = MatrixSpec.from_mapping(
        {"os": ["linux", "mac"], "py": ["3.11", "3.12"]},
        exclude=[{"os": "mac", "py": "3.11"}],
    )

    assert expand(spec) == [
        {"os": "linux", "py": "3.11"},
        {"os": "linux", "py": "3.12"},
        {"os": "mac", "py": "3.12"},
    ]


def test_partial_exclude_removes_every_match():
    spec = MatrixSpec.from_mapping({"os": ["linux", "mac"], "py": ["3.11", "3.12"]}, exclude=[{"os": "mac"}])
    assert [b["os"] for b in expand(spec)] == ["linux", "linux"]


def test_include_extends_matching_bindings():
    spec = MatrixSpec.from_mapping(
        {"os": ["linux", "mac"], "py": ["3.11", "3.12"]},
        include=[{"os": "mac", "arch": "arm64"}],
    )

    bindings = expand(spec)

    assert len(bindings) == 4
    assert [b.get("arch") for b in bindings] == [None, None, "arm64", "arm64"]


def test_include_without_match_is_appended():
    spec = MatrixSpec.from_mapping(
        {"os": ["linux"], "py": ["3.12"]},
        include=[{"os": "windows", "py": "3.12"}],
    )

    assert expand(spec) == [{"os": "linux", "py": "3.12"}, {"os": "windows", "py": "3.12"}]


def test_include_only_matrix():
    spec = MatrixSpec.from_mapping({}, include=[{"target": "wasm"}, {"target": "arm"}])
    assert expand(spec) == [{"target": "wasm"}, {"target": "arm"}]


def test_include_entries_must_be_mappings():
    with pytest.raises(InvalidMatrix):
        MatrixSpec.from_mapping({"os": ["linux"]}, include=["windows"])


def test_exclude_removing_every_combination_rejected():
    spec = MatrixSpec.from_mapping({"os": ["linux"]}, exclude=[{"os": "linux"}])
    with pytest.raises(InvalidMatrix, match="no combinations"):
        expand(spec)
