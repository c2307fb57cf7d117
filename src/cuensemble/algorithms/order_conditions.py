"""Runge--Kutta order conditions from rooted trees.

A weight vector ``b`` gives order ``p`` with stage matrix ``a`` when
``b . Phi(t) == 1 / gamma(t)`` for every rooted tree ``t`` with at most ``p``
vertices. ``Phi`` is the elementary weight of the tree and ``gamma`` its
density. The conditions are linear in ``b``, so weights can be recovered
from ``a`` by least squares.
"""

from functools import lru_cache
from typing import Dict, List, Sequence, Tuple

import numpy as np

#: A rooted tree is the sorted tuple of its subtrees; a leaf is ``()``.
Tree = Tuple


@lru_cache(maxsize=None)
def rooted_trees(order: int) -> Tuple[Tree, ...]:
    """Return every rooted tree with exactly ``order`` vertices."""
    if order < 1:
        return ()
    if order == 1:
        return ((),)
    smaller = [
        (size, tree) for size in range(1, order) for tree in rooted_trees(size)
    ]
    found: List[Tree] = []

    def extend(start: int, remaining: int, children: List[Tree]) -> None:
        if remaining == 0:
            found.append(tuple(children))
            return
        for index in range(start, len(smaller)):
            size, tree = smaller[index]
            if size <= remaining:
                extend(index, remaining - size, children + [tree])

    extend(0, order - 1, [])
    return tuple(found)


def tree_order(tree: Tree) -> int:
    return 1 + sum(tree_order(child) for child in tree)


def tree_density(tree: Tree) -> int:
    density = tree_order(tree)
    for child in tree:
        density *= tree_density(child)
    return density


def _elementary_weight(
    tree: Tree, a: np.ndarray, cache: Dict[Tree, np.ndarray]
) -> np.ndarray:
    if tree not in cache:
        weight = np.ones(a.shape[0])
        for child in tree:
            weight = weight * (a @ _elementary_weight(child, a, cache))
        cache[tree] = weight
    return cache[tree]


def condition_matrix(a, order: int) -> Tuple[np.ndarray, np.ndarray]:
    """Return ``(Phi, rhs)`` for every tree up to ``order`` vertices.

    Row ``k`` of ``Phi`` is the elementary weight of tree ``k`` and
    ``rhs[k]`` its ``1 / gamma``.
    """
    a = np.asarray(a, dtype=np.float64)
    cache: Dict[Tree, np.ndarray] = {}
    rows = []
    rhs = []
    for size in range(1, order + 1):
        for tree in rooted_trees(size):
            rows.append(_elementary_weight(tree, a, cache))
            rhs.append(1.0 / tree_density(tree))
    return np.array(rows), np.array(rhs)


def solve_weights(a, order: int, stages: Sequence[int]) -> Tuple[float, ...]:
    """Return the least-squares weights of the given order that are non-zero
    only on ``stages``. Check the fit with :func:`order_residual`."""
    phi, rhs = condition_matrix(a, order)
    columns = list(stages)
    solved, *_ = np.linalg.lstsq(phi[:, columns], rhs, rcond=None)
    weights = np.zeros(phi.shape[1])
    weights[columns] = solved
    return tuple(weights)


def order_residual(a, weights, order: int) -> float:
    """Return the largest violation of the order ``order`` conditions."""
    phi, rhs = condition_matrix(a, order)
    return float(np.max(np.abs(phi @ np.asarray(weights, dtype=np.float64)
                                - rhs)))


def achieved_order(a, weights, max_order: int = 10,
                   tol: float = 1e-10) -> int:
    """Return the highest order up to ``max_order`` that ``weights`` reach."""
    reached = 0
    for order in range(1, max_order + 1):
        if order_residual(a, weights, order) > tol:
            break
        reached = order
    return reached
