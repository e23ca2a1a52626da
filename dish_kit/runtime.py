from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Union

import numpy as np

from .errors import ExecutionError
from .preprocess import PreprocessConfig

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", ".git"),
) -> Path:
    """
    Best-effort project root discovery so relative model paths work from any cwd.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()

    # If a file is provided, start from its directory.
    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Absolute paths are returned as-is; relative ones resolve against `root`
    (or the project root when root is "auto"/None).
    """

    p = Path(path)
    if p.is_absolute():
        return p

    if root == "auto" or root is None:
        base = find_project_root()
    else:
        base = Path(root).resolve()

    return (base / p).resolve()


class ModelHandle:
    """
    A loaded network plus the input preparation it expects.

    `run` is the only suspension point of a prediction: the blocking backend
    call happens in a worker thread. Handles are shared read-only.
    """

    def __init__(
        self,
        name: str,
        infer_fn: Callable[[np.ndarray], Any],
        *,
        preprocess: PreprocessConfig = PreprocessConfig(),
        backend: Optional[object] = None,
        backend_name: Optional[str] = None,
    ):
        self.name = name
        self._infer_fn = infer_fn
        self.preprocess = preprocess
        self.backend = backend
        self.backend_name = backend_name

    @property
    def input_size(self) -> int:
        return self.preprocess.size

    async def run(self, blob: np.ndarray) -> List[np.ndarray]:
        try:
            out = await asyncio.to_thread(self._infer_fn, blob)
        except Exception as e:
            logger.error("Model %r failed: %s", self.name, e)
            raise ExecutionError(str(e)) from e

        if isinstance(out, (list, tuple)):
            outputs = [np.asarray(o) for o in out]
        else:
            outputs = [np.asarray(out)]
        if not outputs:
            raise ExecutionError(f"Model {self.name!r} returned no outputs")
        return outputs

    def __repr__(self) -> str:
        return f"ModelHandle(name={self.name!r}, backend={self.backend_name!r}, input_size={self.input_size})"


def infer_backend(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix == ".onnx":
        return "onnxruntime"
    if suffix in {".torchscript", ".ts", ".pt"}:
        return "torchscript"
    raise ValueError(f"Could not infer backend from extension '{suffix}'. Pass backend=... explicitly.")


def load_model(
    model_path: PathLike,
    *,
    name: Optional[str] = None,
    backend: Optional[str] = None,
    root: Optional[PathLike] = "auto",
    preprocess: PreprocessConfig = PreprocessConfig(),
    onnx_providers: Optional[Sequence[str]] = None,
    torch_device: str = "cpu",
    torch_half: bool = False,
) -> ModelHandle:
    """
    Create a ModelHandle for a model on disk.

        plate = load_model("models/plates.onnx", preprocess=PreprocessConfig(size=224, layout="nchw"))

    Args:
        model_path: weights/model file; relative paths resolve against the project root by default
        backend: "onnxruntime" or "torchscript"; None infers from the extension
        torch_half: feed float16 inputs to a half-precision TorchScript model
    """

    resolved = resolve_path(model_path, root=root)
    chosen = (backend or infer_backend(resolved)).lower()
    label = name or resolved.stem

    if chosen == "onnxruntime":
        from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

        ort_backend = OnnxRuntimeBackend(resolved, OnnxRuntimeBackendConfig(providers=onnx_providers))
        handle = ModelHandle(label, ort_backend.infer, preprocess=preprocess, backend=ort_backend, backend_name=chosen)
    elif chosen == "torchscript":
        from .backends.torchscript_backend import TorchScriptBackend, TorchScriptBackendConfig

        ts_backend = TorchScriptBackend(resolved, TorchScriptBackendConfig(device=torch_device, half=torch_half))
        handle = ModelHandle(label, ts_backend.infer, preprocess=preprocess, backend=ts_backend, backend_name=chosen)
    else:
        raise ValueError(f"Unsupported backend: {backend!r}")

    logger.info("Loaded %s model %r from %s", chosen, label, resolved)
    return handle
