"""Google Drive helpers: file-id parsing, derived URLs and metadata lookups."""
import logging
import re
from typing import Optional, Dict, Any

import requests

from core.config import settings
from core.errors import UpstreamError

logger = logging.getLogger(__name__)

DRIVE_API_URL = "https://www.googleapis.com/drive/v3/files"

FILE_ID_PATTERNS = [
    re.compile(r"/file/d/([a-zA-Z0-9_-]+)"),
    re.compile(r"[?&]id=([a-zA-Z0-9_-]+)"),
    re.compile(r"/document/d/([a-zA-Z0-9_-]+)"),
]
RAW_FILE_ID = re.compile(r"^[a-zA-Z0-9_-]+$")


def extract_file_id(url: Optional[str]) -> Optional[str]:
    """Return the Drive file id from a share/open/document URL or a bare id."""
    if not url or not isinstance(url, str):
        return None
    url = url.strip()

    for pattern in FILE_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)

    if RAW_FILE_ID.match(url) and len(url) > 10:
        return url
    return None


def get_canonical_url(file_id: str) -> str:
    return f"https://drive.google.com/file/d/{file_id}/view" if file_id else ""


def get_embed_url(file_id: str) -> str:
    return f"https://drive.google.com/file/d/{file_id}/preview" if file_id else ""


def get_download_url(file_id: str) -> str:
    return f"https://drive.google.com/uc?export=download&id={file_id}" if file_id else ""


def get_file_metadata(file_id: str) -> Optional[Dict[str, Any]]:
    """Drive API metadata, or None when the key is missing or the call fails."""
    if not settings.GOOGLE_API_KEY:
        logger.warning("⚠️ GOOGLE_API_KEY not set: Drive metadata lookups disabled.")
        return None
    try:
        response = requests.get(
            f"{DRIVE_API_URL}/{file_id}",
            params={"fields": "id,name,mimeType,size,thumbnailLink", "key": settings.GOOGLE_API_KEY},
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        return response.json()
    except requests.RequestException as e:
        logger.warning(f"⚠️ Drive metadata lookup failed for {file_id}: {e}")
        return None


def get_thumbnail_url(file_id: str) -> Optional[str]:
    metadata = get_file_metadata(file_id)
    return (metadata or {}).get("thumbnailLink")


def download_file(file_id: str) -> bytes:
    """Download a publicly shared file's bytes. Raises UpstreamError on failure."""
    url = get_download_url(file_id)
    try:
        response = requests.get(url, timeout=settings.HTTP_TIMEOUT_SECONDS)
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error(f"❌ Drive download failed for {file_id}: {e}")
        raise UpstreamError("Failed to download file from Google Drive")
    return response.content
