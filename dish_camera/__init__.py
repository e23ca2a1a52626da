"""
Camera demo layer built on top of `dish_kit`.

`dish_kit` keeps the numeric post-processing; this package adds
- frame capture (OpenCV camera / still image)
- the per-frame orchestrator (plate classifier, then ingredient detector)
- render sinks (console, overlay image, JSON lines)
- the CLI runner and its JSON config
"""

from __future__ import annotations

from .config import DemoConfig, load_demo_config, parse_demo_config
from .ingest import CameraCapture, Frame, ImageCapture
from .orchestrator import (
    FramePrediction,
    InferenceContext,
    InferenceOrchestrator,
    IngredientReport,
    IngredientStatus,
    PlatePrediction,
    Stage,
)
from .reporting import ConsoleSink, JsonSink, MultiSink, OverlaySink, format_lines, prediction_to_dict

__all__ = [
    "DemoConfig",
    "load_demo_config",
    "parse_demo_config",
    "CameraCapture",
    "Frame",
    "ImageCapture",
    "FramePrediction",
    "InferenceContext",
    "InferenceOrchestrator",
    "IngredientReport",
    "IngredientStatus",
    "PlatePrediction",
    "Stage",
    "ConsoleSink",
    "JsonSink",
    "MultiSink",
    "OverlaySink",
    "format_lines",
    "prediction_to_dict",
]
