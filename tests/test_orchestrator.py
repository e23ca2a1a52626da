import asyncio
import threading
import unittest
from typing import List

import numpy as np

from dish_camera.ingest import Frame
from dish_camera.orchestrator import (
    InferenceContext,
    InferenceOrchestrator,
    IngredientStatus,
    Stage,
)
from dish_kit.errors import (
    ExecutionError,
    FrameNotReady,
    ModelNotReady,
    RequestInFlight,
    ShapeMismatch,
)
from dish_kit.metadata import ClassNames
from dish_kit.preprocess import PreprocessConfig
from dish_kit.runtime import ModelHandle
from dish_kit.scope import TensorScope

FRAME_W, FRAME_H = 64, 48
DET_SIZE = 8


def _frame() -> Frame:
    return Frame(pixels=np.full((FRAME_H, FRAME_W, 3), 128, dtype=np.uint8))


def _detector_output(strong: bool = True) -> np.ndarray:
    # [1, N, 5 + 2] in the detector's 8x8 input space
    p = np.zeros((1, 10, 7), dtype=np.float32)
    p[0, :, 4] = -10.0
    if strong:
        p[0, 0] = [4, 4, 2, 2, 8.0, 6.0, -6.0]
        p[0, 1] = [4, 4, 2, 2, 6.0, 5.0, -6.0]
        p[0, 2] = [1, 1, 1, 1, 8.0, -6.0, 6.0]
    return p


class _Recorder:
    def __init__(self) -> None:
        self.calls: List[str] = []
        self.inputs: List[tuple] = []

    def model(self, name: str, output, size: int) -> ModelHandle:
        def infer(blob: np.ndarray):
            self.calls.append(name)
            self.inputs.append(blob.shape)
            if isinstance(output, Exception):
                raise output
            return output

        return ModelHandle(name, infer, preprocess=PreprocessConfig(size=size))


class _ListSink:
    def __init__(self) -> None:
        self.rendered = []

    def render(self, frame, prediction) -> None:
        self.rendered.append(prediction)


class _Capture:
    def __init__(self, frame=None) -> None:
        self.frame = frame

    def read(self) -> Frame:
        if self.frame is None:
            raise FrameNotReady("no frame")
        return self.frame


class TestInferenceOrchestrator(unittest.IsolatedAsyncioTestCase):
    def _orchestrator(self, *, classifier_out=None, detector_out=None, with_detector=True, **ctx_kwargs):
        self.rec = _Recorder()
        self.scopes: List[TensorScope] = []

        def scope_factory(name: str) -> TensorScope:
            scope = TensorScope(name)
            self.scopes.append(scope)
            return scope

        if classifier_out is None:
            classifier_out = np.array([[2.0, 1.0, 0.1]], dtype=np.float32)
        if detector_out is None:
            detector_out = _detector_output()
        ctx = InferenceContext(
            classifier=self.rec.model("plates", classifier_out, 6),
            detector=self.rec.model("ingredients", detector_out, DET_SIZE) if with_detector else None,
            plate_names=ClassNames(["paella", "tortilla"]),
            ingredient_names=ClassNames(["rice"]),
            **ctx_kwargs,
        )
        return InferenceOrchestrator(ctx, scope_factory=scope_factory)

    async def test_full_prediction(self) -> None:
        orch = self._orchestrator()
        sink = _ListSink()
        result = await orch.predict(_frame(), sink)

        self.assertEqual(result.frame_size, (FRAME_W, FRAME_H))
        self.assertEqual([s.index for s in result.plate.scores], [0])
        self.assertAlmostEqual(result.plate.scores[0].probability, 0.659, places=3)
        self.assertEqual(result.plate.labels, ["paella"])

        ing = result.ingredients
        self.assertEqual(ing.status, IngredientStatus.DETECTED)
        # Candidate 1 overlaps candidate 0 completely and is suppressed.
        self.assertEqual(len(ing.boxes), 2)
        self.assertEqual([b.class_id for b in ing.boxes], [0, 1])
        self.assertEqual(ing.labels, ["rice", "Class 1"])
        b = ing.boxes[0]
        # 8x8 detector space -> 64x48 frame: sx = 8, sy = 6
        self.assertAlmostEqual(b.x1, 24.0, places=4)
        self.assertAlmostEqual(b.x2, 40.0, places=4)
        self.assertAlmostEqual(b.y1, 18.0, places=4)
        self.assertAlmostEqual(b.y2, 30.0, places=4)

        self.assertEqual(sink.rendered, [result])
        self.assertEqual(self.rec.calls, ["plates", "ingredients"])
        self.assertEqual(self.rec.inputs, [(1, 6, 6, 3), (1, DET_SIZE, DET_SIZE, 3)])
        self.assertEqual(
            orch.last_stages,
            [
                Stage.PREPROCESSING,
                Stage.EXECUTING_CLASSIFIER,
                Stage.DECODING,
                Stage.EXECUTING_DETECTOR,
                Stage.DECODING,
                Stage.RENDERING,
            ],
        )
        self.assertEqual(orch.stage, Stage.IDLE)
        self.assertFalse(orch.busy)

        self.assertEqual(len(self.scopes), 1)
        self.assertTrue(self.scopes[0].closed)
        self.assertEqual(self.scopes[0].live_count, 0)
        # frame, 2 model inputs, 2 raw outputs, probability vector
        self.assertEqual(self.scopes[0].released_count, 6)

    async def test_missing_classifier_is_not_ready(self) -> None:
        orch = InferenceOrchestrator(InferenceContext())
        with self.assertRaises(ModelNotReady):
            await orch.predict(_frame())
        self.assertEqual(orch.stage, Stage.IDLE)

    async def test_missing_detector_is_distinct_from_no_detections(self) -> None:
        orch = self._orchestrator(with_detector=False)
        result = await orch.predict(_frame())
        self.assertEqual(result.ingredients.status, IngredientStatus.NO_DETECTOR)
        self.assertEqual(result.ingredients.message, "Ingredient model not loaded.")
        self.assertEqual(self.rec.calls, ["plates"])
        self.assertNotIn(Stage.EXECUTING_DETECTOR, orch.last_stages)

        orch = self._orchestrator(detector_out=_detector_output(strong=False))
        result = await orch.predict(_frame())
        self.assertEqual(result.ingredients.status, IngredientStatus.NONE_FOUND)
        self.assertEqual(result.ingredients.boxes, [])
        self.assertNotEqual(result.ingredients.message, "Ingredient model not loaded.")

    async def test_degenerate_scores_report_no_confident_prediction(self) -> None:
        orch = self._orchestrator(classifier_out=np.array([[np.nan, np.inf]], dtype=np.float32))
        result = await orch.predict(_frame())
        self.assertTrue(result.plate.no_confident_prediction)
        self.assertEqual(result.plate.scores, [])
        self.assertEqual(result.ingredients.status, IngredientStatus.DETECTED)

    async def test_top5_toggle(self) -> None:
        orch = self._orchestrator(classifier_out=np.arange(8, dtype=np.float32))
        self.assertEqual(orch.toggle_top5(), 5)
        result = await orch.predict(_frame())
        self.assertEqual([s.index for s in result.plate.scores], [7, 6, 5, 4, 3])
        self.assertEqual(result.plate.labels[0], "Class 7")
        self.assertEqual(result.plate.heading, "Top-5 predictions")
        self.assertEqual(orch.toggle_top5(), 1)

    async def test_decode_failure_releases_and_returns_to_idle(self) -> None:
        orch = self._orchestrator(detector_out=np.zeros((2, 10, 7), dtype=np.float32))
        with self.assertRaises(ShapeMismatch):
            await orch.predict(_frame())
        self.assertEqual(orch.stage, Stage.IDLE)
        self.assertFalse(orch.busy)
        self.assertTrue(self.scopes[0].closed)
        self.assertEqual(self.scopes[0].live_count, 0)
        self.assertGreater(self.scopes[0].released_count, 0)

        # The orchestrator accepts the next request.
        orch.ctx.detector = None
        result = await orch.predict(_frame())
        self.assertEqual(result.ingredients.status, IngredientStatus.NO_DETECTOR)
        self.assertTrue(self.scopes[1].closed)

    async def test_swapped_detector_rescales_from_its_own_input_size(self) -> None:
        orch = self._orchestrator()
        out = np.zeros((1, 3, 7), dtype=np.float32)
        out[0, :, 4] = -10.0
        out[0, 0] = [8, 8, 4, 4, 8.0, 6.0, -6.0]
        orch.ctx.detector = self.rec.model("ingredients-16", out, 16)

        frame = Frame(pixels=np.full((16, 16, 3), 128, dtype=np.uint8))
        result = await orch.predict(frame)

        self.assertEqual(self.rec.inputs[-1], (1, 16, 16, 3))
        self.assertEqual(len(result.ingredients.boxes), 1)
        self.assertEqual(result.ingredients.boxes[0].as_xyxy(), (6.0, 6.0, 10.0, 10.0))

    async def test_execution_error_is_surfaced_verbatim(self) -> None:
        orch = self._orchestrator(detector_out=RuntimeError("CUDA out of memory"))
        with self.assertRaises(ExecutionError) as cm:
            await orch.predict(_frame())
        self.assertEqual(str(cm.exception), "CUDA out of memory")
        self.assertEqual(self.rec.calls, ["plates", "ingredients"])
        self.assertTrue(self.scopes[0].closed)
        self.assertEqual(orch.stage, Stage.IDLE)

    async def test_overlapping_request_is_rejected(self) -> None:
        release = threading.Event()

        def slow_infer(blob: np.ndarray):
            release.wait(timeout=5.0)
            return np.array([[0.0, 1.0]], dtype=np.float32)

        orch = InferenceOrchestrator(
            InferenceContext(classifier=ModelHandle("plates", slow_infer, preprocess=PreprocessConfig(size=4)))
        )
        first = asyncio.create_task(orch.predict(_frame()))
        while not orch.busy:
            await asyncio.sleep(0)

        with self.assertRaises(RequestInFlight):
            await orch.predict(_frame())
        self.assertEqual(orch.stage, Stage.EXECUTING_CLASSIFIER)

        release.set()
        result = await first
        self.assertEqual(result.plate.scores[0].index, 1)
        self.assertFalse(orch.busy)

        # A new request after completion runs normally.
        result = await orch.predict(_frame())
        self.assertEqual(result.plate.scores[0].index, 1)

    async def test_predict_from_capture(self) -> None:
        orch = self._orchestrator()
        result = await orch.predict_from_capture(_Capture(_frame()))
        self.assertEqual(result.ingredients.status, IngredientStatus.DETECTED)

        with self.assertRaises(FrameNotReady):
            await orch.predict_from_capture(_Capture(None))
        self.assertFalse(orch.busy)

        with self.assertRaises(ModelNotReady):
            await InferenceOrchestrator(InferenceContext()).predict_from_capture(_Capture(_frame()))


if __name__ == "__main__":
    unittest.main()
