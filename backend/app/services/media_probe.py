"""Cheap media dimension probing from the first bytes of a file.

Only a leading chunk is fetched (HTTP ``Range``), so a probe costs one small
request no matter how large the source is. Parsers understand the MP4 track
header, PNG ``IHDR`` and JPEG start-of-frame markers; anything else yields
``None`` and callers fall back to their own default orientation.
"""

from __future__ import annotations

import logging
import struct

import httpx

logger = logging.getLogger(__name__)

PROBE_BYTES = 64 * 1024

LANDSCAPE = "landscape"
PORTRAIT = "portrait"

_MAX_DIMENSION = 10000


def _plausible(width: int, height: int) -> bool:
    return 0 < width < _MAX_DIMENSION and 0 < height < _MAX_DIMENSION


def parse_mp4_dimensions(data: bytes) -> tuple[int, int] | None:
    """Width/height from the first ``tkhd`` box with a non-zero size.

    Audio tracks carry 0x0, so the scan continues past them.
    """
    start = 0
    while True:
        i = data.find(b"tkhd", start)
        if i < 0 or i + 8 > len(data):
            return None
        start = i + 4
        version = data[i + 4]
        # type(4) + version/flags(4) + times/ids + reserved + layer..volume + matrix(36)
        offset = i + (88 if version == 1 else 76)
        if offset + 8 > len(data):
            continue
        raw_w, raw_h = struct.unpack_from(">II", data, offset)
        width, height = raw_w >> 16, raw_h >> 16  # 16.16 fixed point
        if _plausible(width, height):
            return width, height


def parse_png_dimensions(data: bytes) -> tuple[int, int] | None:
    if len(data) < 24 or data[1:4] != b"PNG" or data[12:16] != b"IHDR":
        return None
    width, height = struct.unpack_from(">II", data, 16)
    return (width, height) if _plausible(width, height) else None


def parse_jpeg_dimensions(data: bytes) -> tuple[int, int] | None:
    i = 0
    while True:
        i = data.find(b"\xff", i)
        if i < 0 or i + 9 > len(data):
            return None
        if data[i + 1] in (0xC0, 0xC2):  # baseline / progressive SOF
            height, width = struct.unpack_from(">HH", data, i + 5)
            if _plausible(width, height):
                return width, height
        i += 1


def parse_dimensions(data: bytes, mime_type: str) -> tuple[int, int] | None:
    """Dispatch on MIME type to the matching parser."""
    mime_type = (mime_type or "").lower()
    if mime_type.startswith("video/"):
        return parse_mp4_dimensions(data)
    if mime_type == "image/png":
        return parse_png_dimensions(data)
    if mime_type in ("image/jpeg", "image/jpg"):
        return parse_jpeg_dimensions(data)
    return None


def orientation_for(width: int, height: int) -> str:
    return LANDSCAPE if width > height else PORTRAIT


async def probe_orientation(
    url: str,
    mime_type: str,
    *,
    client: httpx.AsyncClient,
    default: str,
) -> str:
    """Best-effort orientation of the media at ``url``; ``default`` on any failure."""
    try:
        resp = await client.get(url, headers={"Range": f"bytes=0-{PROBE_BYTES - 1}"})
        resp.raise_for_status()
        dims = parse_dimensions(resp.content[:PROBE_BYTES], mime_type)
    except httpx.HTTPError as e:
        logger.warning("Orientation probe failed for %s: %s", mime_type, e)
        return default

    if dims is None:
        logger.info("Could not read dimensions (%s), using %s", mime_type, default)
        return default

    orientation = orientation_for(*dims)
    logger.debug("Probed %dx%d -> %s", dims[0], dims[1], orientation)
    return orientation
