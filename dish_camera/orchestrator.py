"""
Per-frame prediction flow: plate classification, then ingredient detection.

One orchestrator owns one `InferenceContext` (models, class names, display
toggles). A request runs

    idle -> preprocessing -> executing_classifier -> decoding
         -> executing_detector -> decoding -> rendering -> idle

with the detector steps skipped when no detector is loaded. The only awaits
are the two model calls. A request that arrives while another is running is
rejected with `RequestInFlight`; the running request is not affected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, List, Optional, Protocol, Tuple

from dish_kit.errors import DegenerateDistribution, DishKitError, ModelNotReady, RequestInFlight
from dish_kit.metadata import ClassNames
from dish_kit.nms import NMSConfig, SuppressionEngine
from dish_kit.postprocess import DecodeConfig, DetectionDecoder
from dish_kit.preprocess import make_input, to_float_image
from dish_kit.ranker import rank
from dish_kit.runtime import ModelHandle
from dish_kit.scope import TensorScope
from dish_kit.types import BoundingBox, ClassScore

from .ingest import Frame, FrameCapture

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    IDLE = "idle"
    PREPROCESSING = "preprocessing"
    EXECUTING_CLASSIFIER = "executing_classifier"
    EXECUTING_DETECTOR = "executing_detector"
    DECODING = "decoding"
    RENDERING = "rendering"


class IngredientStatus(str, Enum):
    DETECTED = "detected"
    NONE_FOUND = "none_found"
    NO_DETECTOR = "no_detector"


@dataclass(frozen=True)
class PlatePrediction:
    top_k: int
    scores: List[ClassScore] = field(default_factory=list)
    labels: List[str] = field(default_factory=list)
    # Set when every classifier score was non-finite.
    no_confident_prediction: bool = False

    @property
    def heading(self) -> str:
        return "Top-5 predictions" if self.top_k > 1 else "Top prediction"


@dataclass(frozen=True)
class IngredientReport:
    status: IngredientStatus
    boxes: List[BoundingBox] = field(default_factory=list)
    labels: List[str] = field(default_factory=list)

    @property
    def message(self) -> Optional[str]:
        if self.status is IngredientStatus.NO_DETECTOR:
            return "Ingredient model not loaded."
        if self.status is IngredientStatus.NONE_FOUND:
            return "No ingredients detected with enough confidence."
        return None


@dataclass(frozen=True)
class FramePrediction:
    frame_size: Tuple[int, int]
    plate: PlatePrediction
    ingredients: IngredientReport


class RenderSink(Protocol):
    def render(self, frame: Frame, prediction: FramePrediction) -> None:
        ...


@dataclass
class InferenceContext:
    """
    Everything a prediction needs, built once at startup.
    """

    classifier: Optional[ModelHandle] = None
    detector: Optional[ModelHandle] = None
    plate_names: ClassNames = field(default_factory=ClassNames)
    ingredient_names: ClassNames = field(default_factory=ClassNames)
    decode: DecodeConfig = DecodeConfig()
    nms: NMSConfig = NMSConfig()
    top5: bool = False

    @property
    def top_k(self) -> int:
        return 5 if self.top5 else 1


class InferenceOrchestrator:
    def __init__(self, ctx: InferenceContext, *, scope_factory: Callable[[str], TensorScope] = TensorScope):
        self.ctx = ctx
        self.stage = Stage.IDLE
        self.last_stages: List[Stage] = []
        self._in_flight = False
        self._scope_factory = scope_factory
        self._requests = 0

    @property
    def busy(self) -> bool:
        return self._in_flight

    def toggle_top5(self) -> int:
        self.ctx.top5 = not self.ctx.top5
        return self.ctx.top_k

    def _admit(self) -> ModelHandle:
        if self._in_flight:
            raise RequestInFlight("A prediction is already running; wait for it to finish.")
        if self.ctx.classifier is None:
            raise ModelNotReady("The plate model has not been loaded yet.")
        return self.ctx.classifier

    def _enter(self, stage: Stage) -> None:
        self.stage = stage
        if stage is not Stage.IDLE:
            self.last_stages.append(stage)

    async def predict_from_capture(self, capture: FrameCapture, sink: Optional[RenderSink] = None) -> FramePrediction:
        self._admit()
        frame = capture.read()
        return await self.predict(frame, sink)

    async def predict(self, frame: Frame, sink: Optional[RenderSink] = None) -> FramePrediction:
        classifier = self._admit()
        # No await between the check above and this flag.
        self._in_flight = True
        self._requests += 1
        self.last_stages = []
        try:
            with self._scope_factory(f"request-{self._requests}") as scope:
                return await self._run(classifier, frame, sink, scope)
        except DishKitError as e:
            logger.error("Prediction aborted during %s: %s", self.stage.value, e)
            raise
        finally:
            self._in_flight = False
            self._enter(Stage.IDLE)

    async def _run(
        self, classifier: ModelHandle, frame: Frame, sink: Optional[RenderSink], scope: TensorScope
    ) -> FramePrediction:
        detector = self.ctx.detector

        self._enter(Stage.PREPROCESSING)
        base = scope.track(to_float_image(frame.pixels))
        plate_input = scope.track(make_input(base, classifier.preprocess))
        det_input = scope.track(make_input(base, detector.preprocess)) if detector is not None else None

        self._enter(Stage.EXECUTING_CLASSIFIER)
        plate_out = scope.track_all(await classifier.run(plate_input))

        self._enter(Stage.DECODING)
        plate = self._decode_plate(plate_out[0], scope)

        if detector is not None:
            self._enter(Stage.EXECUTING_DETECTOR)
            det_out = scope.track_all(await detector.run(det_input))

            self._enter(Stage.DECODING)
            ingredients = self._decode_ingredients(det_out[0], frame.size, detector)
        else:
            ingredients = IngredientReport(status=IngredientStatus.NO_DETECTOR)

        prediction = FramePrediction(frame_size=frame.size, plate=plate, ingredients=ingredients)

        self._enter(Stage.RENDERING)
        if sink is not None:
            sink.render(frame, prediction)
        return prediction

    def _decode_plate(self, raw, scope: TensorScope) -> PlatePrediction:
        k = self.ctx.top_k
        try:
            ranking = rank(raw, top_k=k)
        except DegenerateDistribution as e:
            logger.warning("No confident plate prediction: %s", e)
            return PlatePrediction(top_k=k, no_confident_prediction=True)

        scope.track(ranking.probabilities)
        labels = [self.ctx.plate_names.name(s.index) for s in ranking.top]
        return PlatePrediction(top_k=k, scores=list(ranking.top), labels=labels)

    def _decode_ingredients(self, raw, frame_size: Tuple[int, int], detector: ModelHandle) -> IngredientReport:
        decode_cfg = self.ctx.decode
        if detector.input_size != decode_cfg.input_size:
            # Boxes come back in the input resolution of the detector that ran.
            decode_cfg = replace(decode_cfg, input_size=detector.input_size)
        candidates = DetectionDecoder(decode_cfg).decode(raw, frame_size)
        boxes = SuppressionEngine(self.ctx.nms).suppress(candidates)
        logger.debug("ingredients: %d candidates -> %d boxes", len(candidates), len(boxes))
        if not boxes:
            return IngredientReport(status=IngredientStatus.NONE_FOUND)
        labels = [self.ctx.ingredient_names.name(b.class_id) for b in boxes]
        return IngredientReport(status=IngredientStatus.DETECTED, boxes=boxes, labels=labels)
