"""
Model execution backends for dish_kit.

Kept apart from the numeric core so ranking/decoding/NMS can be used (and
tested) without installing an inference runtime.
"""

from __future__ import annotations

__all__ = []
