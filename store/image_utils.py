import base64
import io
import os

import numpy as np
import pydicom
from PIL import Image, UnidentifiedImageError
from pydicom.errors import InvalidDicomError
from pydicom.pixels import apply_modality_lut, apply_voi_lut

from records.errors import ValidationError

_DATA_URL_PREFIX = "data:"
_MIME_BY_FORMAT = {"PNG": "image/png", "JPEG": "image/jpeg"}


def dicom_to_gray_np(path: str) -> np.ndarray:
    """
    Convert DICOM to normalized uint8 grayscale numpy array.
    """
    try:
        ds = pydicom.dcmread(path, force=True)
        arr = ds.pixel_array.astype(np.float32)
    except (InvalidDicomError, AttributeError, ValueError) as e:
        raise ValidationError(f"Could not read DICOM pixels from '{path}': {e}") from e

    arr = apply_modality_lut(arr, ds)
    arr = apply_voi_lut(arr, ds)

    if str(getattr(ds, "PhotometricInterpretation", "")).upper() == "MONOCHROME1":
        arr = arr.max() - arr

    # normalize to 0-255
    arr = arr.astype(np.float32)
    arr -= arr.min()
    if arr.max() > 0:
        arr /= arr.max()
    arr *= 255.0

    return arr.astype(np.uint8)


def _is_dicom(path: str) -> bool:
    if path.lower().endswith(".dcm"):
        return True
    with open(path, "rb") as f:
        head = f.read(132)
    return head[128:132] == b"DICM"


def image_to_data_url(img: Image.Image, fmt: str = "PNG") -> str:
    fmt = fmt.upper()
    if fmt not in _MIME_BY_FORMAT:
        raise ValidationError(f"Unsupported image format '{fmt}'")
    if fmt == "JPEG" and img.mode not in ("L", "RGB"):
        img = img.convert("RGB")
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:{_MIME_BY_FORMAT[fmt]};base64,{encoded}"


def encode_image_file(path: str) -> str:
    """
    Read a scan image from disk and return it as a data URL for ``Scan.image_data``.

    - DICOM (.dcm or DICM magic) -> 8-bit grayscale PNG
    - JPEG stays JPEG, every other format Pillow reads becomes PNG
    """
    if not os.path.exists(path):
        raise ValidationError(f"Image file not found: {path}")

    if _is_dicom(path):
        gray = dicom_to_gray_np(path)
        # multi-frame series: keep the first slice
        if gray.ndim == 3:
            gray = gray[0]
        return image_to_data_url(Image.fromarray(gray), "PNG")

    try:
        with Image.open(path) as img:
            img.load()
            fmt = "JPEG" if img.format == "JPEG" else "PNG"
            return image_to_data_url(img, fmt)
    except UnidentifiedImageError as e:
        raise ValidationError(f"Could not read image: {path}") from e


def decode_image_data(data_url: str) -> Image.Image:
    if not data_url.startswith(_DATA_URL_PREFIX) or ";base64," not in data_url:
        raise ValidationError("Image data must be a base64 data URL")
    encoded = data_url.split(";base64,", 1)[1]
    try:
        raw = base64.b64decode(encoded, validate=True)
        img = Image.open(io.BytesIO(raw))
        img.load()
    except (ValueError, UnidentifiedImageError) as e:
        raise ValidationError(f"Image data could not be decoded: {e}") from e
    return img
