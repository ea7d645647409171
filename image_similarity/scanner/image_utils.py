"""Image loading and orientation handling."""

import base64
import io
from pathlib import Path
from typing import List, Union

from PIL import Image, ExifTags

SUPPORTED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".tiff"}

_ORIENTATION_TAG = next(
    tag_id for tag_id, name in ExifTags.TAGS.items() if name == "Orientation"
)

# EXIF orientation -> counter-clockwise rotation in degrees
_ROTATIONS = {3: 180, 6: 270, 8: 90}


def get_orientation(image: Image.Image) -> int:
    """Read the EXIF orientation flag, defaulting to 1 (upright)."""
    try:
        exif = image.getexif()
    except (AttributeError, OSError):
        return 1
    orientation = exif.get(_ORIENTATION_TAG, 1)
    return orientation if isinstance(orientation, int) else 1


def apply_orientation(image: Image.Image) -> Image.Image:
    """
    Rotate an image upright and convert it to RGB.

    Args:
        image: Image as decoded, possibly carrying an EXIF orientation

    Returns:
        Upright RGB image
    """
    orientation = get_orientation(image)
    if orientation in _ROTATIONS:
        image = image.rotate(_ROTATIONS[orientation], expand=True)

    if image.mode != "RGB":
        image = image.convert("RGB")
    return image


def load_image(file_path: Union[str, Path]) -> Image.Image:
    """Load an image file upright and in RGB."""
    with Image.open(file_path) as image:
        image.load()
        return apply_orientation(image).copy()


def decode_image(data: bytes) -> Image.Image:
    """Decode raw image bytes upright and in RGB."""
    image = Image.open(io.BytesIO(data))
    image.load()
    return apply_orientation(image)


def decode_base64_image(b64_image: str) -> Image.Image:
    """Decode a base64 image, accepting data URIs."""
    if b64_image.startswith("data:image"):
        b64_image = b64_image.split(",", 1)[1]
    return decode_image(base64.b64decode(b64_image))


def encode_base64_image(image: Image.Image, quality: int = 95) -> str:
    """Encode an image as base64 JPEG."""
    buffer = io.BytesIO()
    image.convert("RGB").save(buffer, format="JPEG", quality=quality)
    return base64.b64encode(buffer.getvalue()).decode("utf-8")


def is_supported_image(file_path: Path) -> bool:
    """Check if file is a supported image format."""
    return file_path.suffix.lower() in SUPPORTED_EXTENSIONS


def find_images(directory: Path) -> List[Path]:
    """List supported images under a directory in a stable order."""
    return sorted(
        path for path in Path(directory).rglob("*")
        if path.is_file() and is_supported_image(path)
    )
