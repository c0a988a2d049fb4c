"""Utility functions for whisper-t."""

import os
import logging
import mimetypes
from .exceptions import FileSystemError

logger = logging.getLogger(__name__)

# Types the stdlib table misses or maps inconsistently across platforms.
_EXTRA_MEDIA_TYPES = {
    '.m4a': 'audio/mp4',
    '.mp3': 'audio/mpeg',
    '.mpga': 'audio/mpeg',
    '.ogg': 'audio/ogg',
    '.oga': 'audio/ogg',
    '.opus': 'audio/ogg',
    '.flac': 'audio/flac',
    '.wav': 'audio/wav',
    '.webm': 'video/webm',
    '.mkv': 'video/x-matroska',
}

def ensure_dir_exists(dir_path: str) -> None:
    """
    Ensures that a directory exists. Creates it if it doesn't.

    Args:
        dir_path: The path to the directory.

    Raises:
        FileSystemError: If the directory cannot be created due to permissions
                         or if the path exists but is not a directory.
    """
    if not dir_path:
        raise ValueError("Directory path cannot be empty.")
    try:
        if not os.path.exists(dir_path):
            os.makedirs(dir_path)
            logger.info(f"Created directory: {dir_path}")
        elif not os.path.isdir(dir_path):
            raise FileSystemError(f"Path exists but is not a directory: {dir_path}")
    except OSError as e:
        logger.error(f"Error creating or accessing directory {dir_path}: {e}", exc_info=True)
        raise FileSystemError(f"Could not create or access directory {dir_path}: {e}") from e

def detect_media_type(file_path: str, default: str = "application/octet-stream") -> str:
    """
    Guesses the media (MIME) type of a file from its extension.

    Args:
        file_path: Path or filename of the media file.
        default: Value returned when the type cannot be determined.

    Returns:
        A MIME type string such as 'video/mp4' or 'audio/mpeg'.
    """
    ext = os.path.splitext(file_path)[1].lower()
    if ext in _EXTRA_MEDIA_TYPES:
        return _EXTRA_MEDIA_TYPES[ext]
    guessed, _ = mimetypes.guess_type(file_path)
    return guessed or default

def format_timestamp(seconds: float) -> str:
    """
    Formats seconds as HH:MM:SS.mmm for log messages and gap markers.

    Args:
        seconds: Time in seconds.

    Returns:
        Formatted time string.
    """
    if seconds < 0:
        seconds = 0.0
    milliseconds = round(seconds * 1000)
    hrs = milliseconds // 3600000
    milliseconds %= 3600000
    mins = milliseconds // 60000
    milliseconds %= 60000
    secs = milliseconds // 1000
    milliseconds %= 1000
    return f"{hrs:02d}:{mins:02d}:{secs:02d}.{milliseconds:03d}"
