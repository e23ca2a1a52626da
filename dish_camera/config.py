from __future__ import annotations

import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from dish_kit.nms import NMSConfig
from dish_kit.postprocess import LAYOUTS as DETECTOR_LAYOUTS
from dish_kit.postprocess import NEGATIVE_EXTENT_POLICIES, DecodeConfig
from dish_kit.preprocess import LAYOUTS as INPUT_LAYOUTS
from dish_kit.preprocess import PreprocessConfig


@dataclass(frozen=True)
class DemoConfig:
    plate_model: Optional[str] = "models/plate_classifier.onnx"
    ingredient_model: Optional[str] = "models/ingredient_detector.onnx"
    plate_classes: Optional[str] = "models/plate_classes.txt"
    ingredient_classes: Optional[str] = "models/ingredient_classes.txt"
    backend: Optional[str] = None
    onnx_providers: Optional[Tuple[str, ...]] = None
    torch_device: str = "cpu"
    torch_half: bool = False

    plate_input_size: int = 224
    ingredient_input_size: int = 640
    input_layout: str = "nhwc"
    normalize_div255: bool = True

    obj_threshold: float = 0.10
    score_threshold: float = 0.20
    iou_threshold: float = 0.45
    max_boxes: int = 7
    negative_extent: str = "abs"
    detector_layout: str = "auto"
    clip_to_frame: bool = False
    class_agnostic_nms: bool = True

    top5: bool = False

    camera_index: int = 0
    camera_width: int = 640
    camera_height: int = 480

    def __post_init__(self) -> None:
        if self.plate_input_size < 1:
            raise ValueError("plate_input_size must be >= 1")
        if self.ingredient_input_size < 1:
            raise ValueError("ingredient_input_size must be >= 1")
        if self.input_layout not in INPUT_LAYOUTS:
            raise ValueError(f"input_layout must be one of {INPUT_LAYOUTS}")
        for key in ("obj_threshold", "score_threshold", "iou_threshold"):
            value = getattr(self, key)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{key} must be in [0, 1]")
        if self.max_boxes < 1:
            raise ValueError("max_boxes must be >= 1")
        if self.negative_extent not in NEGATIVE_EXTENT_POLICIES:
            raise ValueError(f"negative_extent must be one of {NEGATIVE_EXTENT_POLICIES}")
        if self.detector_layout not in DETECTOR_LAYOUTS:
            raise ValueError(f"detector_layout must be one of {DETECTOR_LAYOUTS}")
        if not isinstance(self.torch_device, str) or not self.torch_device.strip():
            raise ValueError("torch_device must be a non-empty string")
        if self.camera_width <= 0 or self.camera_height <= 0:
            raise ValueError("camera_width/camera_height must be > 0")

    @property
    def top_k(self) -> int:
        return 5 if self.top5 else 1

    def plate_preprocess(self) -> PreprocessConfig:
        return PreprocessConfig(size=self.plate_input_size, normalize_div255=self.normalize_div255, layout=self.input_layout)

    def ingredient_preprocess(self) -> PreprocessConfig:
        return PreprocessConfig(
            size=self.ingredient_input_size, normalize_div255=self.normalize_div255, layout=self.input_layout
        )

    def decode_config(self) -> DecodeConfig:
        return DecodeConfig(
            input_size=self.ingredient_input_size,
            obj_threshold=self.obj_threshold,
            score_threshold=self.score_threshold,
            negative_extent=self.negative_extent,
            layout=self.detector_layout,
            clip_to_frame=self.clip_to_frame,
        )

    def nms_config(self) -> NMSConfig:
        return NMSConfig(
            iou_threshold=self.iou_threshold,
            max_detections=self.max_boxes,
            class_agnostic=self.class_agnostic_nms,
        )


_STR_KEYS = {
    "plate_model",
    "ingredient_model",
    "plate_classes",
    "ingredient_classes",
    "backend",
    "input_layout",
    "negative_extent",
    "detector_layout",
}
_INT_KEYS = {"plate_input_size", "ingredient_input_size", "max_boxes", "camera_index", "camera_width", "camera_height"}
_FLOAT_KEYS = {"obj_threshold", "score_threshold", "iou_threshold"}
_BOOL_KEYS = {"normalize_div255", "top5", "torch_half", "clip_to_frame", "class_agnostic_nms"}


def parse_demo_config(payload: Dict[str, Any]) -> DemoConfig:
    allowed = {f.name for f in fields(DemoConfig)}
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown demo config keys: {unknown}")

    values: Dict[str, Any] = {}
    for key, value in payload.items():
        if key in _STR_KEYS:
            # null disables an optional model / name file
            if value is not None and (not isinstance(value, str) or not value.strip()):
                raise ValueError(f"{key} must be a non-empty string or null")
            values[key] = value
        elif key in _BOOL_KEYS:
            if not isinstance(value, bool):
                raise ValueError(f"{key} must be a boolean")
            values[key] = value
        elif key in _INT_KEYS:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{key} must be an integer")
            if isinstance(value, float) and not value.is_integer():
                raise ValueError(f"{key} must be an integer")
            values[key] = int(value)
        elif key in _FLOAT_KEYS:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{key} must be a number")
            values[key] = float(value)
        elif key == "torch_device":
            if not isinstance(value, str) or not value.strip():
                raise ValueError("torch_device must be a non-empty string")
            values[key] = value
        elif key == "onnx_providers":
            if value is None:
                values[key] = None
            elif isinstance(value, list) and value and all(isinstance(v, str) and v.strip() for v in value):
                values[key] = tuple(v.strip() for v in value)
            else:
                raise ValueError("onnx_providers must be a non-empty list of strings or null")

    return DemoConfig(**values)


def load_demo_config(path: Path) -> DemoConfig:
    if not path.exists():
        raise FileNotFoundError(f"Demo config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid demo config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Demo config must be a JSON object")
    return parse_demo_config(payload)
