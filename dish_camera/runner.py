from __future__ import annotations

import argparse
import asyncio
import logging
from contextlib import closing
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Sequence

import cv2

from dish_kit.errors import CameraUnavailable, DishKitError, FrameNotReady
from dish_kit.metadata import ClassNames, load_class_names_or_empty
from dish_kit.preprocess import PreprocessConfig
from dish_kit.runtime import ModelHandle, load_model

from .config import DemoConfig, load_demo_config
from .ingest import CameraCapture, FrameCapture, ImageCapture
from .orchestrator import InferenceContext, InferenceOrchestrator
from .reporting import ConsoleSink, JsonSink, MultiSink, OverlaySink

logger = logging.getLogger(__name__)

PREVIEW_WINDOW = "dish camera"
RESULT_WINDOW = "prediction"


def _load_optional_model(
    path: Optional[str], *, name: str, cfg: DemoConfig, preprocess: PreprocessConfig
) -> Optional[ModelHandle]:
    if not path:
        logger.warning("No %s model configured", name)
        return None
    try:
        return load_model(
            path,
            name=name,
            backend=cfg.backend,
            preprocess=preprocess,
            onnx_providers=cfg.onnx_providers,
            torch_device=cfg.torch_device,
            torch_half=cfg.torch_half,
        )
    except Exception as e:
        # Loading failures leave the slot empty; predict() reports it to the user.
        logger.error("Could not load %s model from %s: %s", name, path, e)
        return None


def _report_providers(handle: Optional[ModelHandle]) -> None:
    if handle is None or handle.backend_name != "onnxruntime":
        return
    providers_in_use = getattr(handle.backend, "providers_in_use", None)
    if providers_in_use is not None:
        print(f"ONNX Runtime session providers ({handle.name}): {list(providers_in_use)}")


def _load_names(path: Optional[str]) -> ClassNames:
    return load_class_names_or_empty(path) if path else ClassNames()


def build_context(cfg: DemoConfig) -> InferenceContext:
    classifier = _load_optional_model(cfg.plate_model, name="plates", cfg=cfg, preprocess=cfg.plate_preprocess())
    detector = _load_optional_model(
        cfg.ingredient_model, name="ingredients", cfg=cfg, preprocess=cfg.ingredient_preprocess()
    )
    for handle in (classifier, detector):
        _report_providers(handle)
    if detector is None:
        logger.warning("Running in plate-only mode (no ingredient detector)")
    return InferenceContext(
        classifier=classifier,
        detector=detector,
        plate_names=_load_names(cfg.plate_classes),
        ingredient_names=_load_names(cfg.ingredient_classes),
        decode=cfg.decode_config(),
        nms=cfg.nms_config(),
        top5=cfg.top5,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Plate classification + ingredient detection on camera frames.")
    src = parser.add_mutually_exclusive_group()
    src.add_argument("--webcam", type=int, default=None, help="Camera index (default from config, usually 0).")
    src.add_argument("--image", default=None, help="Run once on a still image instead of a camera.")

    parser.add_argument("--config", default=None, help="Demo config JSON. CLI flags override its values.")
    parser.add_argument("--plate-model", default=None, help="Plate classifier (.onnx/.pt).")
    parser.add_argument("--ingredient-model", default=None, help="Ingredient detector (.onnx/.pt).")
    parser.add_argument("--no-detector", action="store_true", help="Skip the ingredient detector.")
    parser.add_argument("--plate-classes", default=None, help="Plate names, one per line.")
    parser.add_argument("--ingredient-classes", default=None, help="Ingredient names, one per line.")
    parser.add_argument("--backend", default=None, help="Force backend: onnxruntime / torchscript.")
    parser.add_argument(
        "--onnx-providers",
        default=None,
        help='Comma-separated ORT providers, e.g. "CUDAExecutionProvider,CPUExecutionProvider".',
    )
    parser.add_argument("--torch-device", default=None, help='TorchScript device, e.g. "cpu" or "cuda:0".')
    parser.add_argument("--half", action="store_true", help="Feed float16 inputs to TorchScript models.")
    parser.add_argument("--obj-threshold", type=float, default=None, help="Objectness threshold.")
    parser.add_argument("--score-threshold", type=float, default=None, help="obj * class score threshold.")
    parser.add_argument("--iou", type=float, default=None, help="IoU threshold for NMS.")
    parser.add_argument("--max-boxes", type=int, default=None, help="Maximum ingredient boxes shown.")
    parser.add_argument(
        "--negative-extent",
        choices=("abs", "drop", "error"),
        default=None,
        help="Handling of negative box width/height from the detector.",
    )
    parser.add_argument("--clip-to-frame", action="store_true", help="Clamp ingredient boxes to the frame.")
    parser.add_argument("--per-class-nms", action="store_true", help="Run NMS per ingredient class.")
    parser.add_argument("--top5", action="store_true", help="Show Top-5 plates instead of Top-1.")

    parser.add_argument("--show", action="store_true", help="Live window: p/space predict, s switch camera, t toggle top-5, q/ESC quit.")
    parser.add_argument("--json-out", default=None, help="Append predictions as JSON lines to this file.")
    parser.add_argument("--save-overlay", default=None, help="Write the annotated frame of the last prediction here.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...).")
    return parser


def resolve_config(args: argparse.Namespace) -> DemoConfig:
    cfg = load_demo_config(Path(args.config)) if args.config else DemoConfig()
    overrides = {}
    for key in (
        "plate_model",
        "ingredient_model",
        "plate_classes",
        "ingredient_classes",
        "backend",
        "negative_extent",
        "torch_device",
    ):
        value = getattr(args, key)
        if value is not None:
            overrides[key] = value
    if args.onnx_providers:
        providers = tuple(p.strip() for p in args.onnx_providers.split(",") if p.strip())
        overrides["onnx_providers"] = providers or None
    for arg_key, cfg_key in (
        ("obj_threshold", "obj_threshold"),
        ("score_threshold", "score_threshold"),
        ("iou", "iou_threshold"),
        ("max_boxes", "max_boxes"),
        ("webcam", "camera_index"),
    ):
        value = getattr(args, arg_key)
        if value is not None:
            overrides[cfg_key] = value
    if args.no_detector:
        overrides["ingredient_model"] = None
    if args.top5:
        overrides["top5"] = True
    if args.half:
        overrides["torch_half"] = True
    if args.clip_to_frame:
        overrides["clip_to_frame"] = True
    if args.per_class_nms:
        overrides["class_agnostic_nms"] = False
    return replace(cfg, **overrides)


def _build_sink(args: argparse.Namespace, ctx: InferenceContext) -> tuple:
    overlay = OverlaySink(ctx.ingredient_names, save_path=Path(args.save_overlay) if args.save_overlay else None)
    sinks: List[object] = [ConsoleSink(), overlay]
    if args.json_out:
        sinks.append(JsonSink(Path(args.json_out)))
    return MultiSink(sinks), overlay


async def run_once(orchestrator: InferenceOrchestrator, capture: FrameCapture, sink) -> int:
    try:
        await orchestrator.predict_from_capture(capture, sink)
    except DishKitError as e:
        print(f"Prediction failed: {e}")
        return 1
    return 0


async def run_live(orchestrator: InferenceOrchestrator, camera: CameraCapture, sink, overlay: OverlaySink) -> int:
    preview_stalled = False
    while True:
        try:
            frame = camera.read()
        except FrameNotReady as e:
            if not preview_stalled:
                logger.warning("Preview has no frame: %s", e)
                preview_stalled = True
        else:
            preview_stalled = False
            cv2.imshow(PREVIEW_WINDOW, cv2.cvtColor(frame.pixels, cv2.COLOR_RGB2BGR))

        key = cv2.waitKey(15) & 0xFF
        if key in (ord("q"), 27):
            return 0
        if key == ord("s"):
            try:
                print(f"Switched to camera {camera.switch()}")
            except CameraUnavailable as e:
                print(f"Camera switch failed: {e}. Staying on camera {camera.index}.")
        elif key == ord("t"):
            k = orchestrator.toggle_top5()
            print("Top-5 plates" if k > 1 else "Top-1 plate")
        elif key in (ord("p"), ord(" ")):
            # Keys are not polled while this await runs, so triggers cannot overlap.
            try:
                await orchestrator.predict_from_capture(camera, sink)
            except DishKitError as e:
                print(f"Prediction failed: {e}")
                continue
            if overlay.last_image is not None:
                cv2.imshow(RESULT_WINDOW, overlay.last_image)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    cfg = resolve_config(args)
    ctx = build_context(cfg)
    orchestrator = InferenceOrchestrator(ctx)
    sink, overlay = _build_sink(args, ctx)

    if args.image:
        return asyncio.run(run_once(orchestrator, ImageCapture(args.image), sink))

    camera = CameraCapture(cfg.camera_index, width=cfg.camera_width, height=cfg.camera_height)
    try:
        camera.open()
    except CameraUnavailable as e:
        print(f"Camera unavailable: {e}")
        return 1
    with closing(camera):
        if not args.show:
            return asyncio.run(run_once(orchestrator, camera, sink))
        try:
            return asyncio.run(run_live(orchestrator, camera, sink, overlay))
        finally:
            cv2.destroyAllWindows()


if __name__ == "__main__":
    raise SystemExit(main())
