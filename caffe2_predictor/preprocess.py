"""
IMAGE PREPROCESSING

Converts an input image into the flat float tensor a Caffe2 image
classifier expects.

PIPELINE:
1. Decode / normalize the input to an RGB uint8 array (H, W, 3)
2. Resize to the model's (height, width)
3. Subtract the per-channel mean and divide by the scale
4. Reorder to channel-planar BGR (C, H, W) and flatten

OUTPUT LAYOUT:
- float32, length 3 * H * W
- plane 0 = blue, plane 1 = green, plane 2 = red
- row-major within each plane: index = c * H * W + y * W + x

Means are given in RGB order (as manifests list them, e.g.
[123, 117, 104]). Mean images are channel-planar BGR, as Caffe stores
them, and are reduced to one value per channel.
"""

import os
from typing import Optional, Sequence, Union

import cv2
import numpy as np

from .errors import PreprocessError

ImageInput = Union[np.ndarray, bytes, bytearray, str, os.PathLike]


class ImagePreprocessor:
    """
    Stateless image-to-tensor conversion.

    All methods are static; the class only groups them.
    """

    @staticmethod
    def load_image(image: ImageInput) -> np.ndarray:
        """
        Normalize an input into an RGB uint8 array.

        Args:
            image: RGB array (H, W, 3), grayscale (H, W), RGBA (H, W, 4),
                encoded image bytes, or a path to an image file. Float
                arrays hold [0, 1] intensities.

        Returns:
            RGB image as NumPy array (height, width, 3), dtype uint8

        Raises:
            PreprocessError: If the input is not a decodable image
        """
        if isinstance(image, np.ndarray):
            return ImagePreprocessor._normalize_array(image)

        if isinstance(image, (bytes, bytearray)):
            buffer = np.frombuffer(bytes(image), dtype=np.uint8)
            decoded = cv2.imdecode(buffer, cv2.IMREAD_COLOR) if buffer.size else None
            if decoded is None:
                raise PreprocessError("failed to decode image bytes")
            return cv2.cvtColor(decoded, cv2.COLOR_BGR2RGB)

        if isinstance(image, (str, os.PathLike)):
            path = os.fspath(image)
            decoded = cv2.imread(path, cv2.IMREAD_COLOR)
            if decoded is None:
                raise PreprocessError(f"failed to read image {path}")
            return cv2.cvtColor(decoded, cv2.COLOR_BGR2RGB)

        raise PreprocessError("expecting an image input")

    @staticmethod
    def _normalize_array(image: np.ndarray) -> np.ndarray:
        if image.ndim == 2:
            image = np.stack([image] * 3, axis=2)
        elif image.ndim == 3 and image.shape[2] == 4:
            image = image[:, :, :3]
        elif image.ndim == 3 and image.shape[2] == 1:
            image = np.repeat(image, 3, axis=2)

        if image.ndim != 3 or image.shape[2] != 3:
            raise PreprocessError(f"expecting an image input, got array of shape {image.shape}")
        if image.shape[0] == 0 or image.shape[1] == 0:
            raise PreprocessError("image has no pixels")

        if image.dtype == np.uint8:
            return image

        # Floats are [0, 1] intensities; other integer types must already fit in 0..255.
        if np.issubdtype(image.dtype, np.floating):
            if not np.isfinite(image).all() or image.min() < 0.0 or image.max() > 1.0:
                raise PreprocessError("float images must hold values in [0, 1]")
            return np.rint(image * 255.0).astype(np.uint8)
        if np.issubdtype(image.dtype, np.integer):
            if image.min() < 0 or image.max() > 255:
                raise PreprocessError(f"{image.dtype} image has values outside 0..255")
            return image.astype(np.uint8)
        raise PreprocessError(f"unsupported image dtype {image.dtype}")

    @staticmethod
    def resize(image: np.ndarray, height: int, width: int) -> np.ndarray:
        """Bilinear resize to (height, width)."""
        if height <= 0 or width <= 0:
            raise PreprocessError(f"invalid target size {height}x{width}")
        if image.shape[0] == height and image.shape[1] == width:
            return image
        try:
            return cv2.resize(image, (width, height), interpolation=cv2.INTER_LINEAR)
        except cv2.error as e:
            raise PreprocessError(f"failed to resize input image: {e}") from e

    @staticmethod
    def channel_mean(mean: Optional[Union[Sequence[float], np.ndarray]]) -> np.ndarray:
        """
        Reduce a mean specification to an RGB triple.

        Args:
            mean: None (zero mean), a 3-element RGB list, or a BGR planar
                mean image (shape (3, H, W) or flat of length 3 * H * W)

        Returns:
            float32 array [mean_r, mean_g, mean_b]
        """
        if mean is None:
            return np.zeros(3, dtype=np.float32)

        values = np.asarray(mean, dtype=np.float32)
        if values.size == 3:
            return values.reshape(3)

        if values.size == 0 or values.size % 3 != 0:
            raise PreprocessError(f"mean must have 3 values or 3 planes, got {values.size}")

        # average each BGR plane, then flip to RGB
        planes = values.reshape(3, -1)
        return planes.mean(axis=1)[::-1].astype(np.float32)

    @staticmethod
    def to_planar_bgr(image: np.ndarray, mean_rgb: np.ndarray, scale: float = 1.0) -> np.ndarray:
        """
        Normalize an RGB image and lay it out as flat channel-planar BGR.

        Args:
            image: RGB image (H, W, 3)
            mean_rgb: Per-channel mean in RGB order
            scale: Divisor applied after mean subtraction

        Returns:
            float32 array of length 3 * H * W
        """
        if not scale:
            raise PreprocessError("scale must be non-zero")

        normalized = (image.astype(np.float32) - mean_rgb.astype(np.float32)) / np.float32(scale)
        planar = np.transpose(normalized[:, :, ::-1], (2, 0, 1))
        return np.ascontiguousarray(planar, dtype=np.float32).reshape(-1)

    @classmethod
    def preprocess(
        cls,
        image: ImageInput,
        height: int,
        width: int,
        mean: Optional[Union[Sequence[float], np.ndarray]] = None,
        scale: float = 1.0,
    ) -> np.ndarray:
        """Run the full pipeline: load, resize, normalize, flatten."""
        rgb = cls.load_image(image)
        resized = cls.resize(rgb, height, width)
        return cls.to_planar_bgr(resized, cls.channel_mean(mean), scale)
