from __future__ import annotations

from dataclasses import dataclass

import numpy as np

LAYOUTS = ("nhwc", "nchw")


@dataclass(frozen=True)
class PreprocessConfig:
    """
    Square bilinear resize + optional /255 scaling.

    TF-style exports take NHWC; most ONNX exports take NCHW.
    """

    size: int = 224
    normalize_div255: bool = True
    layout: str = "nhwc"

    def __post_init__(self) -> None:
        if self.size < 1:
            raise ValueError("size must be >= 1")
        if self.layout not in LAYOUTS:
            raise ValueError(f"layout must be one of {LAYOUTS}")


def to_float_image(image_rgb: np.ndarray) -> np.ndarray:
    if image_rgb is None or not hasattr(image_rgb, "shape"):
        raise TypeError("image_rgb must be a NumPy array (RGB).")
    if image_rgb.ndim != 3 or image_rgb.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_rgb, 'shape', None)}")
    return image_rgb.astype(np.float32)


def make_input(image: np.ndarray, cfg: PreprocessConfig) -> np.ndarray:
    """
    Resize a float RGB image (H, W, 3) to cfg.size x cfg.size and add the batch axis.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for make_input(). Install with `pip install opencv-python`.") from e

    h, w = image.shape[:2]
    t = image
    if (w, h) != (cfg.size, cfg.size):
        t = cv2.resize(image, (cfg.size, cfg.size), interpolation=cv2.INTER_LINEAR)
    t = t.astype(np.float32)
    if cfg.normalize_div255:
        t = t / 255.0

    if cfg.layout == "nchw":
        t = np.transpose(t, (2, 0, 1))
    return np.ascontiguousarray(t[None, ...])
