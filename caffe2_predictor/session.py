"""
NATIVE INFERENCE SESSION

This module wraps the opaque native runtime that executes the network.

SUPPORTED BACKENDS:
- caffe2:  predict_net.pb + init_net.pb via caffe2.python.workspace.Predictor
- onnx:    exported graph via ONNX Runtime
- pytorch: TorchScript module via torch.jit.load

The backend is chosen from the graph file extension (.onnx, .pt/.pth/.ts,
anything else is Caffe2). Backend libraries are imported lazily; a missing
library is a terminal PredictionError.

CONSTRAINTS:
- Session is created ONCE per predictor, not per request
- predict() is thread-safe (native calls are serialized by a lock)
- No retries on failure
- Metrics are best-effort and never affect inference
"""

import os
import threading
import time
from typing import Any, Dict, List, Optional

import numpy as np
from loguru import logger

from .errors import PredictionError
from .features import Prediction

CAFFE2 = "caffe2"
ONNX = "onnx"
PYTORCH = "pytorch"

_BACKEND_BY_SUFFIX = {
    ".onnx": ONNX,
    ".pt": PYTORCH,
    ".pth": PYTORCH,
    ".ts": PYTORCH,
}


def backend_for(graph_path: str) -> str:
    """Pick the runtime backend for a graph file."""
    suffix = os.path.splitext(graph_path)[1].lower()
    return _BACKEND_BY_SUFFIX.get(suffix, CAFFE2)


def _cuda_available() -> bool:
    try:
        import torch
        return torch.cuda.is_available()
    except ImportError:
        pass
    try:
        import onnxruntime as ort
        return "CUDAExecutionProvider" in ort.get_available_providers()
    except ImportError:
        return False


def detect_device(requested: Optional[str] = None) -> str:
    """
    Resolve the inference device.

    GPU ABSENCE SEMANTICS:
    - "cpu" requested -> cpu
    - "cuda*" requested but unavailable -> cpu, with a warning
    - nothing requested -> cuda if available, else cpu
    """
    if requested == "cpu":
        return "cpu"

    if requested and requested.startswith("cuda"):
        if _cuda_available():
            return requested
        logger.warning(f"GPU requested ({requested}) but not available, falling back to CPU")
        return "cpu"

    if _cuda_available():
        logger.info("GPU detected, using CUDA")
        return "cuda"
    logger.info("No GPU detected, using CPU")
    return "cpu"


class InferenceSession:
    """
    Loaded network plus the lock and counters around it.

    Lifecycle: create (loads the model) -> predict() many times -> close()
    """

    def __init__(
        self,
        graph_path: str,
        weights_path: str = "",
        device: Optional[str] = None,
        backend: Optional[str] = None,
    ):
        """
        Load the network.

        Args:
            graph_path: Network definition (predict_net.pb, model.onnx, model.pt)
            weights_path: Network weights (init_net.pb); unused by onnx/pytorch
            device: "cpu", "cuda", "cuda:N" or None to auto-detect
            backend: Override the backend chosen from graph_path

        Raises:
            PredictionError: If the backend is unavailable or loading fails
        """
        self.graph_path = graph_path
        self.weights_path = weights_path
        self.backend = backend or backend_for(graph_path)
        self.device = detect_device(device)

        self._model: Any = None
        self._input_name: Optional[str] = None
        self._inference_lock = threading.Lock()

        self._total_requests = 0
        self._total_errors = 0
        self._total_latency_ms = 0.0
        self._metrics_lock = threading.Lock()

        logger.info(
            f"Loading {self.backend} network {os.path.basename(graph_path)} on {self.device}"
        )

        loaders = {
            CAFFE2: self._load_caffe2,
            ONNX: self._load_onnx,
            PYTORCH: self._load_pytorch,
        }
        if self.backend not in loaders:
            raise PredictionError(f"unsupported backend: {self.backend}")

        try:
            loaders[self.backend]()
        except PredictionError:
            raise
        except Exception as e:
            raise PredictionError(f"failed to load {self.backend} network from {graph_path}: {e}") from e

    def _load_caffe2(self) -> None:
        try:
            from caffe2.python import workspace
        except ImportError as e:
            raise PredictionError(
                "Caffe2 runtime not available. Install a PyTorch build that ships caffe2"
            ) from e

        if not self.weights_path:
            raise PredictionError("caffe2 backend requires a weights (init_net) file")

        with open(self.weights_path, "rb") as f:
            init_net = f.read()
        with open(self.graph_path, "rb") as f:
            predict_net = f.read()

        if self.device != "cpu":
            logger.warning("caffe2 backend runs on CPU only")
            self.device = "cpu"

        self._model = workspace.Predictor(init_net, predict_net)

    def _load_onnx(self) -> None:
        try:
            import onnxruntime as ort
        except ImportError as e:
            raise PredictionError(
                "ONNX Runtime not available. Install with: pip install onnxruntime or onnxruntime-gpu"
            ) from e

        if self.device.startswith("cuda"):
            providers = ["CUDAExecutionProvider", "CPUExecutionProvider"]
        else:
            providers = ["CPUExecutionProvider"]

        self._model = ort.InferenceSession(self.graph_path, providers=providers)
        self._input_name = self._model.get_inputs()[0].name
        logger.debug(f"ONNX network loaded with provider: {self._model.get_providers()[0]}")

    def _load_pytorch(self) -> None:
        try:
            import torch
        except ImportError as e:
            raise PredictionError("PyTorch not available. Install with: pip install torch") from e

        self._model = torch.jit.load(self.graph_path, map_location=self.device)
        self._model.eval()

    def predict(self, data: Any, channels: int, height: int, width: int) -> List[Prediction]:
        """
        Run the network on one preprocessed image.

        Args:
            data: Flat float buffer of length channels * height * width
            channels, height, width: Input tensor shape (batch is 1)

        Returns:
            One Prediction per output class, most probable first

        Raises:
            PredictionError: On shape mismatch, closed session or runtime failure
        """
        start_time = time.time()
        is_error = True
        try:
            if self._model is None:
                raise PredictionError("inference session is closed")

            batch = np.asarray(data, dtype=np.float32)
            expected = channels * height * width
            if batch.size != expected:
                raise PredictionError(
                    f"input has {batch.size} values, expected {expected} "
                    f"({channels}x{height}x{width})"
                )
            batch = batch.reshape(1, channels, height, width)

            with self._inference_lock:
                output = self._run(batch)

            probabilities = np.asarray(output, dtype=np.float32).reshape(-1)
            order = np.argsort(-probabilities, kind="stable")
            is_error = False
            return [Prediction(index=int(i), probability=float(probabilities[i])) for i in order]

        except PredictionError:
            raise
        except Exception as e:
            raise PredictionError(f"{self.backend} inference failed: {e}") from e

        finally:
            self._update_metrics((time.time() - start_time) * 1000, is_error)

    def _run(self, batch: np.ndarray) -> np.ndarray:
        if self.backend == CAFFE2:
            outputs = self._model.run([batch])
            return outputs[0]

        if self.backend == ONNX:
            outputs = self._model.run(None, {self._input_name: batch})
            return outputs[0]

        import torch

        with torch.no_grad():
            tensor = torch.from_numpy(batch).to(self.device)
            output = self._model(tensor)
            if isinstance(output, (list, tuple)):
                output = output[0]
            return output.cpu().numpy()

    def _update_metrics(self, inference_time_ms: float, is_error: bool) -> None:
        with self._metrics_lock:
            self._total_requests += 1
            if is_error:
                self._total_errors += 1
            self._total_latency_ms += inference_time_ms

    def get_metrics(self) -> Dict[str, Any]:
        """
        Read-only metrics for this session.

        Returns:
            total_requests, total_errors, avg_latency_ms, error_rate
        """
        with self._metrics_lock:
            total_requests = self._total_requests
            total_errors = self._total_errors
            total_latency_ms = self._total_latency_ms

        avg_latency_ms = (total_latency_ms / total_requests) if total_requests > 0 else 0.0
        error_rate = (total_errors / total_requests) if total_requests > 0 else 0.0

        return {
            "total_requests": total_requests,
            "total_errors": total_errors,
            "avg_latency_ms": round(avg_latency_ms, 2),
            "error_rate": round(error_rate, 4),
        }

    @property
    def closed(self) -> bool:
        return self._model is None

    def close(self) -> None:
        """Release the native network. Safe to call more than once."""
        if self._model is None:
            return

        if self.backend == PYTORCH and self.device.startswith("cuda"):
            try:
                import torch
                torch.cuda.empty_cache()
            except ImportError:
                pass

        self._model = None
        logger.debug(f"Released {self.backend} network {os.path.basename(self.graph_path)}")
