import logging

import cv2
import numpy as np
from config import settings as default_settings

from .errors import ExtractionError
from .models import ImageQuality, ResolutionClass

logger = logging.getLogger(__name__)


class ImageQualityGate:
    """
    Measures image quality for face captures and identity documents.
    Produces an ImageQuality snapshot with brightness, contrast and sharpness
    each normalised to [0, 1] plus a resolution class.
    """

    def __init__(self, settings=None):
        settings = settings or default_settings
        self.blur_threshold = settings.BLUR_THRESHOLD
        self.min_brightness = settings.MIN_BRIGHTNESS
        self.max_brightness = settings.MAX_BRIGHTNESS
        self.min_contrast = settings.MIN_CONTRAST
        self.high_resolution_pixels = settings.HIGH_RESOLUTION_PIXELS
        self.medium_resolution_pixels = settings.MEDIUM_RESOLUTION_PIXELS

    def brightness_score(self, gray: np.ndarray) -> float:
        """1.0 inside the accepted brightness band, falling off linearly outside it"""
        mean = float(gray.mean())
        if mean < self.min_brightness:
            return max(0.0, mean / self.min_brightness)
        if mean > self.max_brightness:
            return max(0.0, (255.0 - mean) / (255.0 - self.max_brightness))
        return 1.0

    def contrast_score(self, gray: np.ndarray) -> float:
        std = float(gray.std())
        return min(1.0, std / self.min_contrast)

    def sharpness_score(self, gray: np.ndarray) -> float:
        """Laplacian variance relative to the blur threshold"""
        variance = float(cv2.Laplacian(gray, cv2.CV_64F).var())
        return min(1.0, variance / self.blur_threshold)

    def resolution_class(self, width: int, height: int) -> ResolutionClass:
        pixels = width * height
        if pixels > self.high_resolution_pixels:
            return ResolutionClass.HIGH
        if pixels > self.medium_resolution_pixels:
            return ResolutionClass.MEDIUM
        return ResolutionClass.LOW

    def assess(self, img: np.ndarray) -> ImageQuality:
        if img is None or img.size == 0:
            raise ExtractionError("Image could not be loaded")

        gray = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY) if img.ndim == 3 else img
        h, w = img.shape[:2]

        quality = ImageQuality(
            brightness=round(self.brightness_score(gray), 4),
            contrast=round(self.contrast_score(gray), 4),
            sharpness=round(self.sharpness_score(gray), 4),
            resolution=self.resolution_class(w, h),
            width=w,
            height=h,
        )
        logger.debug("Image quality %sx%s overall=%.2f", w, h, quality.overall)
        return quality
