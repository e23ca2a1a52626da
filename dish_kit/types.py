from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple


@dataclass(frozen=True)
class ClassScore:
    """
    One entry of a classifier ranking.
    """

    index: int
    probability: float


@dataclass(frozen=True)
class BoundingBox:
    """
    Detection in original frame pixel coordinates (xyxy).
    """

    x1: float
    y1: float
    x2: float
    y2: float
    score: float
    class_id: int

    def __post_init__(self) -> None:
        if self.x1 > self.x2 or self.y1 > self.y2:
            raise ValueError(f"Box corners out of order: {self.as_xyxy()}")

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x1, self.y1, self.x2, self.y2

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    @property
    def area(self) -> float:
        return self.width * self.height


# Sorted by descending score, at most the configured max count.
DetectionResult = List[BoundingBox]
