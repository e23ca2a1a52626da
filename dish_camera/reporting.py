"""
Render sinks: where a finished FramePrediction goes.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, TextIO

import cv2
import numpy as np

from dish_kit.metadata import ClassNames
from dish_kit.visualize import draw_boxes, format_confidence

from .ingest import Frame
from .orchestrator import FramePrediction, IngredientStatus


def prediction_to_dict(prediction: FramePrediction) -> Dict[str, Any]:
    plate = prediction.plate
    ing = prediction.ingredients
    return {
        "frame_size": list(prediction.frame_size),
        "plate": {
            "top_k": plate.top_k,
            "no_confident_prediction": plate.no_confident_prediction,
            "predictions": [
                {
                    "rank": i + 1,
                    "index": s.index,
                    "label": label,
                    "probability": s.probability,
                    "confidence": format_confidence(s.probability),
                }
                for i, (s, label) in enumerate(zip(plate.scores, plate.labels))
            ],
        },
        "ingredients": {
            "status": ing.status.value,
            "message": ing.message,
            "boxes": [
                {
                    "label": label,
                    "class_id": b.class_id,
                    "score": b.score,
                    "confidence": format_confidence(b.score),
                    "xyxy": [b.x1, b.y1, b.x2, b.y2],
                }
                for b, label in zip(ing.boxes, ing.labels)
            ],
        },
    }


def format_lines(prediction: FramePrediction) -> List[str]:
    plate = prediction.plate
    lines = [plate.heading]
    if plate.no_confident_prediction:
        lines.append("  No confident prediction.")
    for i, label in enumerate(plate.labels):
        lines.append(f"  {i + 1}. {label}")

    ing = prediction.ingredients
    lines.append("Ingredients")
    if ing.status is not IngredientStatus.DETECTED:
        lines.append(f"  {ing.message}")
    for b, label in zip(ing.boxes, ing.labels):
        lines.append(f"  {label} - {format_confidence(b.score)}")
    return lines


class ConsoleSink:
    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream

    def render(self, frame: Frame, prediction: FramePrediction) -> None:
        out = self.stream if self.stream is not None else sys.stdout
        out.write("\n".join(format_lines(prediction)) + "\n")
        out.flush()


class OverlaySink:
    """
    Draws the ingredient boxes onto a copy of the frame (BGR, ready for
    cv2.imshow / cv2.imwrite) and keeps it as `last_image`.
    """

    def __init__(self, ingredient_names: ClassNames, *, save_path: Optional[Path] = None):
        self.ingredient_names = ingredient_names
        self.save_path = save_path
        self.last_image: Optional[np.ndarray] = None

    def render(self, frame: Frame, prediction: FramePrediction) -> None:
        image_bgr = cv2.cvtColor(frame.pixels, cv2.COLOR_RGB2BGR)
        self.last_image = draw_boxes(image_bgr, prediction.ingredients.boxes, class_names=self.ingredient_names)
        if self.save_path is not None:
            self.save_path.parent.mkdir(parents=True, exist_ok=True)
            cv2.imwrite(str(self.save_path), self.last_image)


class JsonSink:
    """Appends one JSON object per prediction (JSON Lines)."""

    def __init__(self, path: Path):
        self.path = path

    def render(self, frame: Frame, prediction: FramePrediction) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(prediction_to_dict(prediction), sort_keys=True) + "\n")


class MultiSink:
    def __init__(self, sinks: Sequence[Any]):
        self.sinks = list(sinks)

    def render(self, frame: Frame, prediction: FramePrediction) -> None:
        for sink in self.sinks:
            sink.render(frame, prediction)
