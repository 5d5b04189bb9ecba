"""
IMAGE PREDICTOR

Adapter between the agent's predictor lifecycle and the Caffe2 runtime.

LIFECYCLE (driven by the agent host):
1. new() / load(manifest)  -> configured predictor (no I/O beyond mkdir)
2. await download()        -> graph, weights, labels (and mean image) on disk
3. preprocess(image)       -> flat float32 tensor, BGR planar
4. predict(tensor)         -> labeled Feature records
5. close()                 -> native session released

The native session is created lazily on the first predict() call and
reused afterwards.
"""

import os
from typing import Any, List, Optional

import numpy as np
from loguru import logger

from .config import PredictorSettings, get_settings
from .download import DownloadManager
from .errors import DownloadError, PredictionError, PreprocessError, PredictorError
from .features import Feature, load_labels, to_features, top_k as take_top_k
from .frameworks import CAFFE2_FRAMEWORK, FrameworkManifest
from .manifest import ModelManifest
from .preprocess import ImageInput, ImagePreprocessor
from .session import InferenceSession


class ImagePredictor:
    """
    Image-classification predictor for one model manifest.

    An instance without a manifest is a prototype: it is what gets
    registered with the agent, which calls load() to obtain a working
    predictor per model.
    """

    def __init__(
        self,
        framework: FrameworkManifest = CAFFE2_FRAMEWORK,
        manifest: Optional[ModelManifest] = None,
        work_dir: str = "",
        settings: Optional[PredictorSettings] = None,
    ):
        self.framework = framework
        self.manifest = manifest
        self.work_dir = work_dir
        self.settings = settings or get_settings()

        self._session: Optional[InferenceSession] = None
        self._features: List[str] = []
        self._input_dims: List[int] = []

    @classmethod
    def new(cls, manifest: ModelManifest, settings: Optional[PredictorSettings] = None) -> "ImagePredictor":
        """
        Validate a manifest's inputs and load a predictor for it.

        Raises:
            PredictorError: If the model does not take exactly one image input
        """
        if len(manifest.inputs) != 1:
            raise PredictorError("number of inputs not supported")
        if manifest.inputs[0].type.lower() != "image":
            raise PredictorError("input type not supported")
        return cls(settings=settings).load(manifest)

    def load(self, manifest: ModelManifest) -> "ImagePredictor":
        """
        Return a new predictor bound to ``manifest``.

        The receiver (typically the registered prototype) is not modified.
        """
        framework = manifest.resolve_framework()
        if framework.name.lower() != self.framework.name.lower():
            raise PredictorError(
                f"model {manifest.name} targets {framework.name}, not {self.framework.name}"
            )
        work_dir = manifest.work_dir(str(self.settings.work_dir_root))
        return type(self)(
            framework=framework,
            manifest=manifest,
            work_dir=work_dir,
            settings=self.settings,
        )

    def _require_manifest(self) -> ModelManifest:
        if self.manifest is None:
            raise PredictorError("predictor has no model loaded")
        return self.manifest

    def _asset_url(self, relative_path: str) -> str:
        assets = self._require_manifest().model
        if assets.is_archive:
            return assets.base_url
        base_url = ""
        if assets.base_url:
            base_url = assets.base_url.rstrip("/") + "/"
        return base_url + relative_path

    def graph_url(self) -> str:
        return self._asset_url(self._require_manifest().model.graph_path)

    def weights_url(self) -> str:
        return self._asset_url(self._require_manifest().model.weights_path)

    def features_url(self) -> str:
        return self._require_manifest().features_url()

    def _local_path(self, relative_path: str) -> str:
        # Archive members keep their folder layout; plain downloads are flat.
        if self._require_manifest().model.is_archive:
            return os.path.normpath(os.path.join(self.work_dir, relative_path))
        return os.path.join(self.work_dir, os.path.basename(relative_path))

    def graph_path(self) -> str:
        return self._local_path(self._require_manifest().model.graph_path)

    def weights_path(self) -> str:
        return self._local_path(self._require_manifest().model.weights_path)

    def features_path(self) -> str:
        return os.path.join(self.work_dir, self._require_manifest().name + ".features")

    def mean_path(self) -> str:
        return os.path.join(self.work_dir, self._require_manifest().name + ".mean.npy")

    def image_dimensions(self) -> List[int]:
        """
        Return the input tensor shape as [batch, channels, height, width].

        Raises:
            PredictorError: If the manifest has no usable dimensions
        """
        dims = self._require_manifest().input_parameter("dimensions")
        if not isinstance(dims, list) or len(dims) != 3:
            raise PredictorError("input dimensions must be [channels, height, width]")
        try:
            dims = [int(d) for d in dims]
        except (TypeError, ValueError) as e:
            raise PredictorError(f"invalid input dimensions {dims}") from e
        if dims[0] != 3 or dims[1] <= 0 or dims[2] <= 0:
            raise PredictorError(f"unsupported input dimensions {dims}")
        return [1] + dims

    def _download_manager(self) -> DownloadManager:
        return DownloadManager(
            timeout_seconds=self.settings.download_timeout_seconds,
            verify_checksums=self.settings.verify_checksums,
        )

    async def download(self) -> None:
        """
        Fetch every artifact the model needs into its work directory.

        Raises:
            DownloadError: If any artifact cannot be fetched
        """
        manifest = self._require_manifest()
        manager = self._download_manager()

        if manifest.model.is_archive:
            await manager.download_archive(manifest.model.base_url, self.work_dir)
            for path in (self.graph_path(), self.weights_path()):
                if not os.path.isfile(path):
                    raise DownloadError(
                        f"archive {manifest.model.base_url} has no {os.path.relpath(path, self.work_dir)}"
                    )
        else:
            await manager.download_file(self.graph_url(), self.graph_path(), manifest.model.graph_checksum)
            await manager.download_file(self.weights_url(), self.weights_path(), manifest.model.weights_checksum)

        await manager.download_file(self.features_url(), self.features_path(), manifest.features_checksum())

        mean_url = manifest.input_parameter("mean_url")
        if mean_url:
            await manager.download_file(str(mean_url), self.mean_path())

        logger.info(f"Artifacts for {manifest.name} ready in {self.work_dir}")

    def _mean(self) -> Any:
        manifest = self._require_manifest()
        if manifest.input_parameter("mean_url"):
            path = self.mean_path()
            if not os.path.exists(path):
                raise PreprocessError(f"mean image not downloaded: {path}")
            try:
                return np.load(path, allow_pickle=False)
            except (OSError, ValueError) as e:
                raise PreprocessError(f"failed to get mean image: {e}") from e
        return manifest.input_parameter("mean")

    def preprocess(self, image: ImageInput) -> np.ndarray:
        """
        Convert an image into the model's flat BGR planar input tensor.

        Raises:
            PreprocessError: If the input is not an image or cannot be resized
        """
        dims = self.image_dimensions()
        scale = self._require_manifest().input_parameter("scale", 1.0)
        try:
            scale = float(scale)
        except (TypeError, ValueError) as e:
            raise PreprocessError(f"invalid scale {scale!r}") from e

        return ImagePreprocessor.preprocess(
            image,
            height=dims[2],
            width=dims[3],
            mean=self._mean(),
            scale=scale,
        )

    def _create_session(self) -> InferenceSession:
        return InferenceSession(
            graph_path=self.graph_path(),
            weights_path=self.weights_path(),
            device=self.settings.device,
        )

    def load_predictor(self) -> None:
        """Read labels and create the native session (once)."""
        if self._session is not None:
            return

        self._features = load_labels(self.features_path())
        self._input_dims = self.image_dimensions()
        self._session = self._create_session()
        logger.info(
            f"Predictor for {self._require_manifest().name} loaded "
            f"({len(self._features)} labels, input {self._input_dims})"
        )

    def predict(self, data: Any, top_k: Optional[int] = None) -> List[Feature]:
        """
        Run inference on a preprocessed tensor.

        Args:
            data: Output of preprocess() (flat float buffer)
            top_k: Keep only the k most probable features

        Returns:
            Features ordered by descending probability
        """
        self.load_predictor()

        if not isinstance(data, (np.ndarray, list, tuple)):
            raise PredictionError("expecting a float32 buffer in predict function")

        _, channels, height, width = self._input_dims
        predictions = self._session.predict(data, channels, height, width)
        features = to_features(predictions, self._features)
        return take_top_k(features, top_k)

    def predict_image(self, image: ImageInput, top_k: Optional[int] = None) -> List[Feature]:
        return self.predict(self.preprocess(image), top_k=top_k)

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self) -> "ImagePredictor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        model = self.manifest.name if self.manifest is not None else None
        return f"ImagePredictor(framework={self.framework}, model={model!r})"
