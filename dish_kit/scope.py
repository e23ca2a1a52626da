from __future__ import annotations

import logging
from typing import Any, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TensorScope:
    """
    Owns the transient tensors of one prediction request.

    Everything passed to `track` is released exactly once when the scope
    closes, whether the request finished normally or raised. Releasing drops
    the scope's references (and calls `release()` on objects that expose one,
    e.g. device buffers); a second close is a no-op.
    """

    def __init__(self, name: str = "request"):
        self.name = name
        self._tracked: List[Any] = []
        self.closed = False
        self.released_count = 0

    def track(self, tensor: T) -> T:
        if self.closed:
            raise RuntimeError(f"TensorScope {self.name!r} is already closed")
        if tensor is not None:
            self._tracked.append(tensor)
        return tensor

    def track_all(self, tensors: List[T]) -> List[T]:
        for t in tensors:
            self.track(t)
        return tensors

    @property
    def live_count(self) -> int:
        return len(self._tracked)

    def _release_all(self) -> List[BaseException]:
        tracked, self._tracked = self._tracked, []
        errors: List[BaseException] = []
        for t in reversed(tracked):
            release = getattr(t, "release", None)
            if not callable(release):
                continue
            try:
                release()
            except Exception as e:
                logger.warning("TensorScope %r: release of %s failed: %s", self.name, type(t).__name__, e)
                errors.append(e)
        self.released_count = len(tracked)
        logger.debug("TensorScope %r released %d tensor(s)", self.name, self.released_count)
        return errors

    def close(self) -> None:
        """
        Release everything tracked. A failing `release()` does not stop the
        others; the first failure is raised once all of them have run.
        """
        if self.closed:
            return
        self.closed = True
        errors = self._release_all()
        if errors:
            raise errors[0]

    def __enter__(self) -> "TensorScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> Optional[bool]:
        if exc_type is None:
            self.close()
        elif not self.closed:
            # The request's own error wins; release failures were logged.
            self.closed = True
            self._release_all()
        return None
