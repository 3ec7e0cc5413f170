import base64
import binascii
from pathlib import Path

import aiofiles
import httpx
import puremagic
from core.exceptions import MediaSourceError

# Magic-byte signatures all sit near the start of the file
SNIFF_BYTES = 8192


def to_data_uri(encoded: str, mime: str = "image/png") -> str:
    if encoded.startswith("data:"):
        return encoded
    return f"data:{mime};base64,{encoded}"


def strip_data_uri(value: str) -> str:
    """Returns the base64 part of a data URI, or the value unchanged."""
    if value.startswith("data:"):
        return value.split(",", 1)[1] if "," in value else ""
    return value


def sniff_media_type(content: bytes, default: str) -> str:
    """
    MIME type read from the magic bytes, kept within the family of `default` (image/video).
    Unrecognized bytes get `default`; bytes recognized as another kind of file are rejected.
    """
    family = default.split("/")[0]
    try:
        matches = puremagic.magic_string(content[:SNIFF_BYTES])
    except puremagic.PureError:
        return default

    for match in matches:
        if match.mime_type.startswith(f"{family}/"):
            return match.mime_type
    detected = next((m.mime_type for m in matches if m.mime_type), None)
    if detected:
        raise MediaSourceError(f"Expected {family} media but the source is {detected}")
    return default


class MediaSourceReader:
    """
    Resolves an edit/upscale source into bytes.
    Accepts data URIs, http(s) URLs and files under the local media root.
    """

    def __init__(self, client: httpx.AsyncClient, media_root: Path):
        self.client = client
        self.media_root = Path(media_root).resolve()

    async def read(self, source: str) -> bytes:
        if source.startswith("data:"):
            try:
                return base64.b64decode(strip_data_uri(source), validate=True)
            except (binascii.Error, ValueError) as e:
                raise MediaSourceError("Malformed data URI", original_error=e)

        if source.startswith(("http://", "https://")):
            try:
                resp = await self.client.get(source, follow_redirects=True)
                resp.raise_for_status()
            except httpx.HTTPError as e:
                raise MediaSourceError(f"Could not download media from {source}", original_error=e)
            return resp.content

        path = (self.media_root / source).resolve()
        if not path.is_relative_to(self.media_root) or not path.is_file():
            raise MediaSourceError(f"Media file not found under media root: {source}")

        async with aiofiles.open(path, "rb") as f:
            return await f.read()

    async def read_base64(self, source: str) -> str:
        if source.startswith("data:"):
            return strip_data_uri(source)
        return base64.b64encode(await self.read(source)).decode("ascii")
