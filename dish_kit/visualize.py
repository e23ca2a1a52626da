from __future__ import annotations

from typing import Iterable, Optional, Tuple

import numpy as np

from .metadata import ClassNames
from .types import BoundingBox

BOX_COLOR = (34, 197, 94)
CAPTION_BG = (15, 23, 42)
CAPTION_FG = (229, 231, 235)


def format_confidence(score: float) -> str:
    """0.6591 -> '65.9%'."""
    return f"{score * 100:.1f}%"


def box_caption(box: BoundingBox, class_names: Optional[ClassNames] = None) -> str:
    names = class_names if class_names is not None else ClassNames()
    return f"{names.name(box.class_id)} {format_confidence(box.score)}"


def draw_boxes(
    image: np.ndarray,
    boxes: Iterable[BoundingBox],
    *,
    class_names: Optional[ClassNames] = None,
    color: Tuple[int, int, int] = BOX_COLOR,
    box_thickness: int = 2,
    font_scale: float = 0.45,
    font_thickness: int = 1,
) -> np.ndarray:
    """
    Draw boxes with "label pct%" captions on a (H, W, 3) uint8 image and return a copy.

    Colors are given in the image's own channel order.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for draw_boxes(). Install with `pip install opencv-python`.") from e

    if image is None or not hasattr(image, "shape"):
        raise TypeError("image must be a NumPy array.")
    if image.ndim != 3 or image.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image, 'shape', None)}")

    out = image.copy()
    h, w = out.shape[:2]

    for box in boxes:
        x1, y1, x2, y2 = box.as_xyxy()
        x1i = int(np.clip(round(x1), 0, w - 1))
        y1i = int(np.clip(round(y1), 0, h - 1))
        x2i = int(np.clip(round(x2), 0, w - 1))
        y2i = int(np.clip(round(y2), 0, h - 1))
        cv2.rectangle(out, (x1i, y1i), (x2i, y2i), color, thickness=box_thickness)

        label = box_caption(box, class_names)
        (tw, th), baseline = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, font_scale, font_thickness)
        # Caption sits above the box, or inside it at the top edge of the frame.
        y_text_top = y1i - th - baseline
        if y_text_top < 0:
            y_text_top = y1i

        x_text_right = min(x1i + tw + 4, w - 1)
        y_text_bottom = min(y_text_top + th + baseline, h - 1)

        cv2.rectangle(out, (x1i, y_text_top), (x_text_right, y_text_bottom), CAPTION_BG, thickness=-1)
        cv2.putText(
            out,
            label,
            (x1i + 2, min(y_text_top + th, h - 1)),
            cv2.FONT_HERSHEY_SIMPLEX,
            font_scale,
            CAPTION_FG,
            thickness=font_thickness,
            lineType=cv2.LINE_AA,
        )

    return out
