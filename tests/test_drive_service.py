"""Tests for Google Drive URL handling."""
import pytest

from services import drive_service

FILE_ID = "1AbCdEfGhIjKlMnOpQrStUv"


@pytest.mark.parametrize("url", [
    f"https://drive.google.com/file/d/{FILE_ID}/view?usp=sharing",
    f"https://drive.google.com/open?id={FILE_ID}",
    f"https://drive.google.com/uc?export=download&id={FILE_ID}",
    f"https://docs.google.com/document/d/{FILE_ID}/edit",
    FILE_ID,
    f"  {FILE_ID}  ",
])
def test_extract_file_id(url):
    assert drive_service.extract_file_id(url) == FILE_ID


@pytest.mark.parametrize("url", [None, "", "https://example.com/book.pdf", "short"])
def test_extract_file_id_rejects_non_drive_input(url):
    assert drive_service.extract_file_id(url) is None


def test_derived_urls():
    assert drive_service.get_canonical_url(FILE_ID) == f"https://drive.google.com/file/d/{FILE_ID}/view"
    assert drive_service.get_embed_url(FILE_ID) == f"https://drive.google.com/file/d/{FILE_ID}/preview"
    assert drive_service.get_download_url("") == ""


def test_metadata_lookup_disabled_without_api_key():
    assert drive_service.get_file_metadata(FILE_ID) is None
