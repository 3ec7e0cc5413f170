import base64
import io

import httpx
import pytest
from PIL import Image

from connections.media_source import MediaSourceReader, sniff_media_type, strip_data_uri, to_data_uri
from core.exceptions import MediaSourceError


def _png_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (4, 4)).save(buf, "PNG")
    return buf.getvalue()


@pytest.fixture
def reader(client, tmp_path):
    return MediaSourceReader(client, tmp_path)


@pytest.mark.asyncio
async def test_reads_data_uris(reader):
    assert await reader.read("data:image/png;base64,aGk=") == b"hi"
    assert await reader.read_base64("data:image/png;base64,aGk=") == "aGk="


@pytest.mark.asyncio
async def test_malformed_data_uri(reader):
    with pytest.raises(MediaSourceError):
        await reader.read("data:image/png;base64,@@@")


@pytest.mark.asyncio
async def test_downloads_urls(reader, transport):
    transport.on("GET", "https://cdn.test/a.png", httpx.Response(200, content=b"png"))

    assert await reader.read("https://cdn.test/a.png") == b"png"


@pytest.mark.asyncio
async def test_failed_download_is_a_media_error(reader):
    with pytest.raises(MediaSourceError):
        await reader.read("https://cdn.test/missing.png")


@pytest.mark.asyncio
async def test_reads_files_under_the_media_root(reader, tmp_path):
    (tmp_path / "gen").mkdir()
    (tmp_path / "gen" / "a.png").write_bytes(b"local")

    assert await reader.read("gen/a.png") == b"local"
    assert await reader.read_base64("gen/a.png") == base64.b64encode(b"local").decode()


@pytest.mark.asyncio
async def test_paths_outside_the_media_root_are_refused(reader, tmp_path):
    (tmp_path.parent / "secret.txt").write_bytes(b"nope")

    with pytest.raises(MediaSourceError):
        await reader.read("../secret.txt")


def test_sniffing_detects_png():
    assert sniff_media_type(_png_bytes(), "image/png") == "image/png"


def test_sniffing_unknown_bytes_keeps_the_default():
    assert sniff_media_type(b"hello", "video/mp4") == "video/mp4"


def test_sniffing_rejects_the_wrong_kind_of_media():
    with pytest.raises(MediaSourceError):
        sniff_media_type(_png_bytes(), "video/mp4")


def test_data_uri_helpers():
    assert to_data_uri("aGk=") == "data:image/png;base64,aGk="
    assert to_data_uri("data:image/jpeg;base64,aGk=") == "data:image/jpeg;base64,aGk="
    assert strip_data_uri("data:image/png;base64,aGk=") == "aGk="
