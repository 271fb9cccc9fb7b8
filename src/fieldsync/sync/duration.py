"""Duration measurement for captured audio with a bounded wait."""

import asyncio
import io
import logging
from typing import Optional

from pydub import AudioSegment

logger = logging.getLogger(__name__)

# MIME subtype -> ffmpeg demuxer name
_FORMATS = {
    "audio/mp4": "mp4",
    "audio/m4a": "mp4",
    "audio/x-m4a": "mp4",
    "audio/aac": "aac",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/webm": "webm",
    "audio/ogg": "ogg",
}


def _decode_duration(data: bytes, content_type: Optional[str]) -> Optional[float]:
    fmt = _FORMATS.get((content_type or "").split(";")[0].strip().lower())
    segment = AudioSegment.from_file(io.BytesIO(data), format=fmt)
    seconds = segment.duration_seconds
    return float(seconds) if seconds and seconds > 0 else None


async def measure_duration(
    data: bytes,
    content_type: Optional[str],
    timeout: float,
) -> Optional[float]:
    """Decode the artifact metadata and return its duration in seconds.

    Decoding runs in a worker thread and is abandoned after ``timeout``
    seconds. Any decode failure or timeout yields None: a recording is always
    saved, with an unknown duration if need be.
    """
    if not data:
        return None
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(_decode_duration, data, content_type),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning("Duration probe timed out after %.1fs", timeout)
    except Exception as e:
        logger.warning("Duration probe failed: %s", e)
    return None
