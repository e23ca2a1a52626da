from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Union

import numpy as np


PathLike = Union[str, Path]


@dataclass(frozen=True)
class TorchScriptBackendConfig:
    """
    - device: "cpu" or "cuda" (if available)
    - half: cast input to float16 (only if the model expects it)
    """

    device: str = "cpu"
    half: bool = False


class TorchScriptBackend:
    """
    TorchScript backend using `torch.jit.load`; no model class code needed.
    """

    def __init__(self, model_path: PathLike, cfg: TorchScriptBackendConfig = TorchScriptBackendConfig()):
        try:
            import torch  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError("torch is required for the TorchScript backend. Install with `pip install torch`.") from e

        self._torch = torch
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        self.device = torch.device(cfg.device)
        self.half = cfg.half

        model = torch.jit.load(str(self.model_path), map_location=self.device)
        model.eval()
        self.model = model

    def infer(self, blob: np.ndarray) -> List[np.ndarray]:
        torch = self._torch
        x = torch.as_tensor(blob, device=self.device)
        x = x.half() if self.half else x.float()
        x = x.contiguous()

        with torch.no_grad():
            y = self.model(x)

        outputs = y if isinstance(y, (tuple, list)) else [y]
        return [o.detach().to("cpu").float().numpy() for o in outputs]
