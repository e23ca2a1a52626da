from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Protocol, Sequence, Tuple, Union

import cv2
import numpy as np

from dish_kit.errors import CameraUnavailable, FrameNotReady

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Frame:
    """RGB snapshot of the capture device, (H, W, 3) uint8."""

    pixels: np.ndarray

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> tuple:
        return self.width, self.height


class FrameCapture(Protocol):
    def read(self) -> Frame:
        ...


def frame_from_bgr(image_bgr: Optional[np.ndarray]) -> Frame:
    if image_bgr is None or image_bgr.size == 0 or image_bgr.ndim != 3:
        raise FrameNotReady("Capture returned an empty frame")
    h, w = image_bgr.shape[:2]
    if not w or not h:
        raise FrameNotReady("Capture returned a frame with invalid dimensions")
    return Frame(pixels=cv2.cvtColor(image_bgr, cv2.COLOR_BGR2RGB))


class CameraCapture:
    """
    OpenCV camera source.

    Asks for `width` x `height` first; when the constrained open fails the
    device is reopened with its own defaults and `degraded` is set.
    `switch()` cycles through `indices` (e.g. back and front cameras).
    """

    def __init__(
        self,
        index: int = 0,
        *,
        width: int = 640,
        height: int = 480,
        indices: Sequence[int] = (0, 1),
        capture_factory: Callable[[int], "cv2.VideoCapture"] = cv2.VideoCapture,
    ):
        self.index = int(index)
        self.width = width
        self.height = height
        self.indices = tuple(indices) if indices else (self.index,)
        self._factory = capture_factory
        self._cap = None
        self.degraded = False

    def _connect(self, index: int) -> Tuple[Any, bool]:
        """Returns (capture, degraded) for `index` or raises CameraUnavailable."""
        cap = self._factory(index)
        if cap.isOpened():
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, float(self.width))
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, float(self.height))
        if cap.isOpened() and cap.grab():
            return cap, False

        logger.warning("Camera %d rejected %dx%d; falling back to device defaults", index, self.width, self.height)
        cap.release()
        cap = self._factory(index)
        if not cap.isOpened():
            cap.release()
            raise CameraUnavailable(f"Failed to open camera {index}.")
        return cap, True

    def open(self) -> "CameraCapture":
        self.close()
        self._cap, self.degraded = self._connect(self.index)
        logger.info("Camera %d opened%s", self.index, " (generic constraints)" if self.degraded else "")
        return self

    def read(self) -> Frame:
        if self._cap is None:
            raise FrameNotReady("Camera is not open")
        ok, image_bgr = self._cap.read()
        if not ok:
            raise FrameNotReady(f"Camera {self.index} has no frame yet")
        return frame_from_bgr(image_bgr)

    def switch(self) -> int:
        """
        Move to the next index in `indices`. The current device stays open
        until the next one is up; if it cannot be opened, CameraUnavailable
        is raised and the current camera keeps running.
        """
        if self.index in self.indices:
            pos = (self.indices.index(self.index) + 1) % len(self.indices)
        else:
            pos = 0
        target = self.indices[pos]
        if target == self.index and self._cap is not None:
            return self.index

        cap, degraded = self._connect(target)
        self.close()
        self.index, self._cap, self.degraded = target, cap, degraded
        logger.info("Switched to camera %d%s", self.index, " (generic constraints)" if self.degraded else "")
        return self.index

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None

    def __enter__(self) -> "CameraCapture":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class ImageCapture:
    """Serves a still image as if it were the live frame."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def read(self) -> Frame:
        image_bgr = cv2.imread(str(self.path))
        if image_bgr is None:
            raise FrameNotReady(f"Cannot load image: {self.path}")
        return frame_from_bgr(image_bgr)
