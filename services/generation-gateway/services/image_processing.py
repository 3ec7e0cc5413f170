import base64
import io
from dataclasses import dataclass
from typing import Optional, Tuple

import structlog
from core.exceptions import ValidationException
from domain.models import ProcessImageOptions
from PIL import Image, ImageOps, UnidentifiedImageError

logger = structlog.get_logger()

PIL_FORMATS = {"png": "PNG", "jpeg": "JPEG", "webp": "WEBP"}


@dataclass
class ProcessedImage:
    url: str
    size: int
    format: str
    width: int
    height: int


def _target_size(image: Image.Image, width: Optional[int], height: Optional[int]) -> Tuple[int, int]:
    # A single given dimension keeps the aspect ratio
    if width and height:
        return width, height
    if width:
        return width, max(1, round(image.height * width / image.width))
    return max(1, round(image.width * height / image.height)), height


def process_image_bytes(data: bytes, options: ProcessImageOptions) -> ProcessedImage:
    """
    Resizes and re-encodes an image. Blocking; run it in an executor.
    - Applies EXIF orientation before resizing.
    - Flattens alpha for JPEG, which has none.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img = ImageOps.exif_transpose(img)

            if options.width or options.height:
                size = _target_size(img, options.width, options.height)
                if options.fit == "cover":
                    img = ImageOps.fit(img, size)
                elif options.fit == "contain":
                    img = ImageOps.contain(img, size)
                else:
                    img = img.resize(size)

            if options.format == "jpeg" and img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            elif img.mode in ("CMYK", "LAB", "HSV"):
                img = img.convert("RGB")

            save_options = {}
            if options.format == "png":
                save_options = {"optimize": options.optimize, "compress_level": 9 if options.optimize else 6}
            elif options.format == "jpeg":
                save_options = {"quality": options.quality, "optimize": options.optimize}
            else:
                save_options = {"quality": options.quality, "method": 6 if options.optimize else 4}

            out = io.BytesIO()
            img.save(out, PIL_FORMATS[options.format], **save_options)
            width, height = img.size
    except (UnidentifiedImageError, OSError) as e:
        raise ValidationException("Source is not a readable image", original_error=e)

    encoded = out.getvalue()
    logger.debug("image_processed", format=options.format, width=width, height=height, size=len(encoded))
    return ProcessedImage(
        url=f"data:image/{options.format};base64,{base64.b64encode(encoded).decode('ascii')}",
        size=len(encoded),
        format=options.format,
        width=width,
        height=height,
    )
