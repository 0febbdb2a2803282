import base64
import json
import os
import re
from typing import Any, Dict, Optional, Union
from urllib.parse import urlparse

import cv2
import numpy as np
import requests

from .errors import ExtractionError

ImageSource = Union[str, bytes, np.ndarray]


def is_valid_url(url: str) -> bool:
    """Check if string is an http(s) URL"""
    try:
        result = urlparse(url)
    except ValueError:
        return False
    return result.scheme in ("http", "https") and bool(result.netloc)


def download_image(url: str, timeout: float = 30) -> bytes:
    """Download image bytes from URL"""
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise ExtractionError(f"Failed to download image from {url}: {e}", source=url) from e
    return response.content


def load_image(image: ImageSource) -> np.ndarray:
    """
    Decode an image given as a BGR array, raw bytes, a local path or a URL.
    Raises ExtractionError when the input cannot be decoded.
    """
    if isinstance(image, np.ndarray):
        return image

    if isinstance(image, str):
        if is_valid_url(image):
            data = download_image(image)
        elif os.path.exists(image):
            img = cv2.imread(image)
            if img is None:
                raise ExtractionError("Image could not be loaded", source=image)
            return img
        else:
            raise ExtractionError("Image file not found", source=image)
    else:
        data = image

    arr = np.frombuffer(data, dtype=np.uint8)
    img = cv2.imdecode(arr, cv2.IMREAD_COLOR)
    if img is None:
        raise ExtractionError("Image could not be decoded")
    return img


def encode_image(img: np.ndarray) -> str:
    """Encode image as base64 JPEG data URL"""
    ok, buf = cv2.imencode(".jpg", img)
    if not ok:
        raise ExtractionError("Image could not be encoded")
    return f"data:image/jpeg;base64,{base64.b64encode(buf.tobytes()).decode('utf-8')}"


def safe_json_parse(text: Optional[str]) -> Dict[str, Any]:
    """Parse the first JSON object found in model output"""
    match = re.search(r"\{.*\}", text or "", re.DOTALL)
    if not match:
        raise ValueError("No JSON found in model output")
    return json.loads(match.group())


def to_confidence(val) -> float:
    """Normalise a model-reported confidence (0-1, 0-100 or '95%') into [0, 1]"""
    if val is None or isinstance(val, bool):
        return 0.0
    try:
        if isinstance(val, (int, float)):
            v = float(val)
        else:
            v = float(str(val).strip().replace('%', ''))
    except ValueError:
        return 0.0
    # Percentages like 95 become 0.95
    if v > 1:
        v = v / 100.0
    return max(0.0, min(1.0, v))


def to_bool(val) -> bool:
    if isinstance(val, bool):
        return val
    if isinstance(val, (int, float)):
        return bool(val)
    if val is None:
        return False
    return str(val).strip().lower() in ("true", "yes", "y", "1", "detected")
