from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np

from .errors import DegenerateDistribution, ShapeMismatch
from .tensor import TensorView, as_view
from .types import ClassScore


@dataclass(frozen=True)
class Ranking:
    """
    Full distribution plus the Top-K prefix of the stable ordering.
    """

    probabilities: np.ndarray
    top: List[ClassScore]


def score_vector(raw) -> np.ndarray:
    """
    Collapse a classifier output ([C], [1, C], [1, 1, C], ...) to a 1-D float vector.
    """

    view = raw if isinstance(raw, TensorView) else as_view(raw)
    v = view.squeeze().numpy()
    if v.ndim == 0:
        v = v.reshape(1)
    if v.ndim != 1 or v.size == 0:
        raise ShapeMismatch(f"Classifier output must squeeze to one non-empty axis, got shape {view.shape}")
    return v.astype(np.float64)


def softmax(scores: np.ndarray) -> np.ndarray:
    """
    Numerically stable softmax. Non-finite scores get probability 0 and the
    remaining entries are renormalised among themselves.
    """

    s = np.asarray(scores, dtype=np.float64)
    finite = np.isfinite(s)
    if not finite.any():
        raise DegenerateDistribution(f"All {s.size} classifier scores are non-finite")

    exps = np.zeros_like(s)
    shifted = s[finite] - s[finite].max()
    exps[finite] = np.exp(shifted)
    total = exps.sum()
    if total <= 0 or not np.isfinite(total):
        raise DegenerateDistribution("Softmax normaliser is zero")
    return exps / total


def stable_order(probs: np.ndarray) -> np.ndarray:
    # Stable sort on the negated values keeps ascending index for ties.
    return np.argsort(-probs, kind="stable")


def rank(raw, top_k: int = 1) -> Ranking:
    if top_k < 1:
        raise ValueError("top_k must be >= 1")
    probs = softmax(score_vector(raw))
    order = stable_order(probs)[: min(top_k, probs.size)]
    top = [ClassScore(index=int(i), probability=float(probs[i])) for i in order]
    return Ranking(probabilities=probs, top=top)


def top_k(raw, k: int = 1) -> List[ClassScore]:
    return rank(raw, top_k=k).top
