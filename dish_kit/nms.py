from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from .types import BoundingBox


@dataclass(frozen=True)
class NMSConfig:
    iou_threshold: float = 0.45
    max_detections: int = 7
    # False runs NMS per class, then merges results by score.
    class_agnostic: bool = True

    def __post_init__(self) -> None:
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be in [0, 1]")
        if self.max_detections < 0:
            raise ValueError("max_detections must be >= 0")


def iou(a: BoundingBox, b: BoundingBox) -> float:
    w = max(0.0, min(a.x2, b.x2) - max(a.x1, b.x1))
    h = max(0.0, min(a.y2, b.y2) - max(a.y1, b.y1))
    inter = w * h
    if inter <= 0.0:
        return 0.0
    return inter / (a.area + b.area - inter)


def nms(boxes: np.ndarray, scores: np.ndarray, iou_threshold: float, max_detections: int) -> np.ndarray:
    """
    Greedy NumPy NMS. Expects boxes shape (N,4) in xyxy and scores shape (N,).
    Returns indices of kept boxes, highest score first. Equal scores keep input order.
    """

    if boxes.size == 0 or max_detections == 0:
        return np.empty((0,), dtype=np.int64)

    x1 = boxes[:, 0]
    y1 = boxes[:, 1]
    x2 = boxes[:, 2]
    y2 = boxes[:, 3]
    areas = (x2 - x1) * (y2 - y1)

    order = np.argsort(-scores, kind="stable")
    keep = []

    while order.size > 0 and len(keep) < max_detections:
        i = order[0]
        keep.append(i)

        xx1 = np.maximum(x1[i], x1[order[1:]])
        yy1 = np.maximum(y1[i], y1[order[1:]])
        xx2 = np.minimum(x2[i], x2[order[1:]])
        yy2 = np.minimum(y2[i], y2[order[1:]])

        w = np.maximum(0.0, xx2 - xx1)
        h = np.maximum(0.0, yy2 - yy1)
        inter = w * h
        union = areas[i] + areas[order[1:]] - inter
        overlap = np.where(inter > 0.0, inter / np.maximum(union, 1e-12), 0.0)

        order = order[1:][overlap <= iou_threshold]

    return np.array(keep, dtype=np.int64)


class SuppressionEngine:
    """
    Removes duplicate detections and caps the number of boxes shown.
    """

    def __init__(self, cfg: NMSConfig = NMSConfig()):
        self.cfg = cfg

    def suppress(self, candidates: Sequence[BoundingBox]) -> List[BoundingBox]:
        if not candidates:
            return []

        boxes = np.array([b.as_xyxy() for b in candidates], dtype=np.float64)
        scores = np.array([b.score for b in candidates], dtype=np.float64)

        if self.cfg.class_agnostic:
            kept = nms(boxes, scores, self.cfg.iou_threshold, self.cfg.max_detections)
            return [candidates[i] for i in kept]

        class_ids = np.array([b.class_id for b in candidates])
        merged: List[int] = []
        for cls in np.unique(class_ids):
            idx = np.nonzero(class_ids == cls)[0]
            keep_local = nms(boxes[idx], scores[idx], self.cfg.iou_threshold, self.cfg.max_detections)
            merged.extend(idx[keep_local].tolist())

        # Sorting the original indices first keeps input order for equal scores.
        merged.sort()
        merged.sort(key=lambda i: -scores[i])
        return [candidates[i] for i in merged[: self.cfg.max_detections]]
