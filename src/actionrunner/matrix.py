# matrix.py
from __future__ import annotations

import itertools
from typing import Any, Iterable, List, Mapping, Optional

from .errors import InvalidMatrix
from .model import MatrixBinding, MatrixSpec


def _matches(binding: Mapping[str, Any], partial: Iterable[tuple]) -> bool:
    return all(k in binding and binding[k] == v for k, v in partial)


def expand(matrix: Optional[MatrixSpec]) -> List[MatrixBinding]:
    """
    Expand a matrix strategy into concrete bindings.

    Example:
        MatrixSpec.from_mapping({"os": ["linux", "mac"], "py": ["3.11", "3.12"]})
        -> [{os: linux, py: 3.11}, {os: linux, py: 3.12},
            {os: mac,   py: 3.11}, {os: mac,   py: 3.12}]

    The first axis varies slowest (nested-loop order). Excludes are applied
    before includes. No matrix at all yields one empty binding.
    """
    if matrix is None or not matrix:
        return [{}]

    for axis, values in matrix.axes:
        if not values:
            raise InvalidMatrix(f"Matrix axis '{axis}' has no values")

    names = matrix.axis_names
    bindings: List[MatrixBinding] = []
    if names:
        for combo in itertools.product(*(values for _, values in matrix.axes)):
            b = dict(zip(names, combo))
            if any(_matches(b, ex) for ex in matrix.exclude):
                continue
            bindings.append(b)

    original = [dict(b) for b in bindings]
    for entry in matrix.include:
        on_axes = [(k, v) for k, v in entry if k in names]
        extra = [(k, v) for k, v in entry if k not in names]
        hit = False
        for b, orig in zip(bindings, original):
            # only original axis values decide a match; they are never overwritten
            if _matches(orig, on_axes):
                b.update(extra)
                hit = True
        if not hit:
            new = dict(entry)
            if new not in bindings:
                bindings.append(new)

    if not bindings:
        raise InvalidMatrix("Matrix expands to no combinations")
    return bindings
