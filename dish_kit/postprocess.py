from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from .errors import NegativeExtent, ShapeMismatch
from .tensor import TensorView, as_view
from .types import BoundingBox

logger = logging.getLogger(__name__)

NEGATIVE_EXTENT_POLICIES = ("abs", "drop", "error")
LAYOUTS = ("auto", "candidates_first", "channels_first")

# cx, cy, w, h, objectness
BOX_FIELDS = 5


@dataclass(frozen=True)
class DecodeConfig:
    """
    Configuration for ingredient detector decoding.
    """

    input_size: int = 640
    obj_threshold: float = 0.10
    score_threshold: float = 0.20
    # What to do with negative w/h regressions: "abs", "drop" or "error".
    negative_extent: str = "abs"
    # "auto" transposes when shape[1] < shape[2] ([1, D, N] -> [1, N, D]).
    layout: str = "auto"
    clip_to_frame: bool = False

    def __post_init__(self) -> None:
        if self.input_size <= 0:
            raise ValueError("input_size must be > 0")
        if not 0.0 <= self.obj_threshold <= 1.0:
            raise ValueError("obj_threshold must be in [0, 1]")
        if not 0.0 <= self.score_threshold <= 1.0:
            raise ValueError("score_threshold must be in [0, 1]")
        if self.negative_extent not in NEGATIVE_EXTENT_POLICIES:
            raise ValueError(f"negative_extent must be one of {NEGATIVE_EXTENT_POLICIES}")
        if self.layout not in LAYOUTS:
            raise ValueError(f"layout must be one of {LAYOUTS}")


def sigmoid(x: np.ndarray) -> np.ndarray:
    with np.errstate(over="ignore"):
        return 1.0 / (1.0 + np.exp(-x))


def normalize_layout(raw, layout: str = "auto") -> TensorView:
    """
    Bring detector output to [1, N, 5 + C].

    A 2-D output is treated as a single image without the batch axis.
    """

    view = as_view(raw)
    if view.ndim == 2:
        view = view.reshape((1,) + view.shape)
    if view.ndim != 3:
        raise ShapeMismatch(f"Unsupported detector output shape: {view.shape}")
    if view.shape[0] != 1:
        raise ShapeMismatch(f"Batch > 1 is not supported (got shape {view.shape}). Pass one frame at a time.")

    if layout == "channels_first" or (layout == "auto" and view.shape[1] < view.shape[2]):
        view = view.swap_last_axes()

    if view.shape[2] < BOX_FIELDS + 1:
        raise ShapeMismatch(f"Expected at least {BOX_FIELDS + 1} values per candidate, got shape {view.shape}")
    return view


class DetectionDecoder:
    """
    Turns raw detector output into boxes in original frame coordinates.

    Candidate layout (per row): [cx, cy, w, h, obj_logit, class_logits...]
    with box parameters in the detector's R x R input space. The final score of
    a candidate is sigmoid(obj) * sigmoid(best class logit).
    """

    def __init__(self, cfg: DecodeConfig = DecodeConfig()):
        self.cfg = cfg

    def decode(self, raw, frame_size: Tuple[int, int]) -> List[BoundingBox]:
        """
        Args:
            raw: detector output, [1, N, D] or [1, D, N] (array or TensorView)
            frame_size: (width, height) of the captured frame

        Returns boxes in candidate order (not sorted, not suppressed).
        """

        width, height = frame_size
        if width <= 0 or height <= 0:
            raise ShapeMismatch(f"Invalid frame size {frame_size}")

        p = normalize_layout(raw, self.cfg.layout).numpy()[0].astype(np.float64)
        num_candidates = p.shape[0]

        # Objectness gate first so the class scan only runs on survivors.
        obj_conf = sigmoid(p[:, 4])
        cand = np.nonzero(obj_conf >= self.cfg.obj_threshold)[0]
        if cand.size == 0:
            logger.debug("decode: 0/%d candidates passed objectness", num_candidates)
            return []

        class_scores = obj_conf[cand, None] * sigmoid(p[cand, BOX_FIELDS:])
        class_scores = np.nan_to_num(class_scores, nan=0.0)
        best_class = np.argmax(class_scores, axis=1)
        best_score = class_scores[np.arange(cand.size), best_class]

        keep = (best_score >= self.cfg.score_threshold) & (best_score > 0.0)
        keep &= np.isfinite(p[cand, :4]).all(axis=1)
        cand, best_class, best_score = cand[keep], best_class[keep], best_score[keep]
        if cand.size == 0:
            logger.debug("decode: 0/%d candidates passed score threshold", num_candidates)
            return []

        w, h = p[cand, 2], p[cand, 3]
        w, h, cand, best_class, best_score = self._apply_extent_policy(w, h, cand, best_class, best_score)
        if cand.size == 0:
            return []
        cx, cy = p[cand, 0], p[cand, 1]

        sx = width / float(self.cfg.input_size)
        sy = height / float(self.cfg.input_size)
        boxes = np.stack(
            [
                cx * sx - (w * sx) / 2,
                cy * sy - (h * sy) / 2,
                cx * sx + (w * sx) / 2,
                cy * sy + (h * sy) / 2,
            ],
            axis=1,
        )
        if self.cfg.clip_to_frame:
            boxes[:, [0, 2]] = np.clip(boxes[:, [0, 2]], 0, width)
            boxes[:, [1, 3]] = np.clip(boxes[:, [1, 3]], 0, height)

        logger.debug("decode: %d/%d candidates emitted", cand.size, num_candidates)
        return [
            BoundingBox(
                x1=float(x1),
                y1=float(y1),
                x2=float(x2),
                y2=float(y2),
                score=float(score),
                class_id=int(cls_id),
            )
            for (x1, y1, x2, y2), score, cls_id in zip(boxes, best_score, best_class)
        ]

    def _apply_extent_policy(self, w, h, cand, best_class, best_score):
        negative = (w < 0) | (h < 0)
        if not negative.any():
            return w, h, cand, best_class, best_score

        policy = self.cfg.negative_extent
        if policy == "error":
            first = int(cand[np.argmax(negative)])
            raise NegativeExtent(
                f"{int(negative.sum())} candidate(s) have negative extents (first at index {first}); "
                "check the detector output layout and scale"
            )
        if policy == "drop":
            logger.debug("decode: dropping %d candidate(s) with negative extents", int(negative.sum()))
            ok = ~negative
            return w[ok], h[ok], cand[ok], best_class[ok], best_score[ok]
        return np.abs(w), np.abs(h), cand, best_class, best_score
