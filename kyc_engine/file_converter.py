import logging
import os
import uuid
from typing import List

from PIL import Image, UnidentifiedImageError
import pillow_heif
from pdf2image import convert_from_path
from pdf2image.exceptions import PDFPageCountError

from .errors import ExtractionError

pillow_heif.register_heif_opener()

logger = logging.getLogger(__name__)

SUPPORTED_IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".heic", ".heif", ".webp"}
PDF_EXT = ".pdf"


def is_supported(filename: str) -> bool:
    ext = os.path.splitext(filename or "")[1].lower()
    return ext in SUPPORTED_IMAGE_EXTS or ext == PDF_EXT


def convert_to_images(input_path: str, output_dir: str) -> List[str]:
    """
    Converts an uploaded file (image / HEIC / PDF) into JPEG images.
    Returns list of image paths, one per page.
    """
    ext = os.path.splitext(input_path)[1].lower()
    os.makedirs(output_dir, exist_ok=True)

    output_paths = []

    # -------- Normal image or HEIC --------
    if ext in SUPPORTED_IMAGE_EXTS:
        try:
            img = Image.open(input_path).convert("RGB")
        except (UnidentifiedImageError, OSError) as e:
            raise ExtractionError(f"Could not decode image {os.path.basename(input_path)}: {e}") from e
        out_path = os.path.join(output_dir, f"{uuid.uuid4().hex}.jpg")
        img.save(out_path, "JPEG", quality=95)
        return [out_path]

    # -------- PDF --------
    if ext == PDF_EXT:
        try:
            pages = convert_from_path(input_path, dpi=300)
        except PDFPageCountError as e:
            raise ExtractionError(f"Could not read PDF {os.path.basename(input_path)}: {e}") from e
        for i, page in enumerate(pages):
            out_path = os.path.join(output_dir, f"{uuid.uuid4().hex}_page{i+1}.jpg")
            page.convert("RGB").save(out_path, "JPEG", quality=95)
            output_paths.append(out_path)
        logger.info("Converted %s into %d page image(s)", os.path.basename(input_path), len(output_paths))
        return output_paths

    raise ValueError(f"Unsupported file type: {ext}")


def first_page_bytes(input_path: str, output_dir: str) -> bytes:
    """JPEG bytes of the first page; identity documents are single-page"""
    images = convert_to_images(input_path, output_dir)
    if not images:
        raise ExtractionError(f"No images produced for {os.path.basename(input_path)}")
    with open(images[0], "rb") as f:
        return f.read()
