import cv2
import numpy as np
from typing import Tuple, Dict, Any, Optional
from config import settings

BLUR_MESSAGE = "Image is too blurry. Please ensure the document is in focus."
DARK_MESSAGE = "Image is too dark. Please improve lighting."
GOOD_MESSAGE = "Image quality is good"


class ImageQualityGate:
    """
    Local blur/brightness check for captured frames.

    Intensity is the plain mean of R, G and B per pixel. A low population
    variance is read as blur and a low mean as darkness. This is a crude
    proxy: a high-contrast but out-of-focus frame can still pass.
    """

    def __init__(self, blur_threshold: Optional[float] = None, min_brightness: Optional[float] = None):
        self.blur_threshold = settings.BLUR_THRESHOLD if blur_threshold is None else blur_threshold
        self.min_brightness = settings.MIN_BRIGHTNESS if min_brightness is None else min_brightness

    def decode_image(self, image_bytes: bytes) -> Optional[np.ndarray]:
        """Decode encoded image bytes (JPEG/PNG) into a pixel array"""
        buffer = np.frombuffer(image_bytes, dtype=np.uint8)
        if buffer.size == 0:
            return None
        return cv2.imdecode(buffer, cv2.IMREAD_COLOR)

    def intensity_stats(self, pixels: np.ndarray) -> Tuple[float, float]:
        """Population mean and variance of per-pixel grayscale intensity"""
        pixels = np.asarray(pixels, dtype=np.float64)
        if pixels.ndim == 3:
            # Alpha does not contribute
            gray = pixels[..., :3].mean(axis=-1)
        else:
            gray = pixels
        if gray.size == 0:
            raise ValueError("Empty pixel buffer")
        mean = gray.mean()
        variance = (gray * gray).mean() - mean * mean
        return float(mean), float(variance)

    def check_blur(self, variance: float) -> Tuple[bool, str]:
        if variance < self.blur_threshold:
            return False, BLUR_MESSAGE
        return True, None

    def check_brightness(self, mean: float) -> Tuple[bool, str]:
        if mean < self.min_brightness:
            return False, DARK_MESSAGE
        return True, None

    def evaluate(self, pixels: np.ndarray) -> Dict[str, Any]:
        """
        Evaluate a raw pixel buffer (H x W x 3 or 4, or H x W grayscale).
        Blur is checked before brightness; the first failure decides.
        """
        mean, variance = self.intensity_stats(pixels)

        for ok, message in (self.check_blur(variance), self.check_brightness(mean)):
            if not ok:
                return {
                    "is_valid": False,
                    "message": message,
                    "mean": round(mean, 2),
                    "variance": round(variance, 2),
                }

        return {
            "is_valid": True,
            "message": GOOD_MESSAGE,
            "mean": round(mean, 2),
            "variance": round(variance, 2),
        }

    def evaluate_bytes(self, image_bytes: bytes) -> Dict[str, Any]:
        """Evaluate an encoded image; undecodable input fails the gate"""
        img = self.decode_image(image_bytes)
        if img is None:
            return {
                "is_valid": False,
                "message": "Image could not be loaded",
                "mean": None,
                "variance": None,
            }
        return self.evaluate(img)
