"""
Post-processing toolkit for the dish camera demo.

Turns raw classifier scores into a stable Top-K ranking and raw detector
candidates into suppressed, rescaled boxes. The numeric core needs only
NumPy; OpenCV is used for resizing/drawing and the inference runtimes are
optional backends.
"""

from .errors import (
    CameraUnavailable,
    DegenerateDistribution,
    DishKitError,
    ExecutionError,
    FrameNotReady,
    ModelNotReady,
    NegativeExtent,
    RequestInFlight,
    ShapeMismatch,
)
from .metadata import ClassNames, load_class_names, load_class_names_or_empty
from .nms import NMSConfig, SuppressionEngine, iou, nms
from .postprocess import DecodeConfig, DetectionDecoder, normalize_layout
from .preprocess import PreprocessConfig, make_input
from .ranker import Ranking, rank, softmax, top_k
from .runtime import ModelHandle, find_project_root, load_model, resolve_path
from .scope import TensorScope
from .tensor import TensorView
from .types import BoundingBox, ClassScore, DetectionResult
from .visualize import draw_boxes, format_confidence

__all__ = [
    "CameraUnavailable",
    "DegenerateDistribution",
    "DishKitError",
    "ExecutionError",
    "FrameNotReady",
    "ModelNotReady",
    "NegativeExtent",
    "RequestInFlight",
    "ShapeMismatch",
    "ClassNames",
    "load_class_names",
    "load_class_names_or_empty",
    "NMSConfig",
    "SuppressionEngine",
    "iou",
    "nms",
    "DecodeConfig",
    "DetectionDecoder",
    "normalize_layout",
    "PreprocessConfig",
    "make_input",
    "Ranking",
    "rank",
    "softmax",
    "top_k",
    "ModelHandle",
    "find_project_root",
    "load_model",
    "resolve_path",
    "TensorScope",
    "TensorView",
    "BoundingBox",
    "ClassScore",
    "DetectionResult",
    "draw_boxes",
    "format_confidence",
]
