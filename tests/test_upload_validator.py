import io
import os
import struct
import zlib

import pytest
from werkzeug.datastructures import FileStorage

from conftest import pdf_bytes, png_bytes
from utils.errors import UploadRejected
from utils.upload_validator import (
    DEFAULT_MAX_PROOF_BYTES,
    SIZE_ERROR,
    TYPE_ERROR,
    discard_proof,
    mime_type_for,
    resolve_proof_path,
    store_proof,
    validate_proof_file,
)


def _upload(data: bytes, filename: str, content_type: str) -> FileStorage:
    return FileStorage(stream=io.BytesIO(data), filename=filename, content_type=content_type)


def test_png_and_pdf_are_accepted():
    png = validate_proof_file(_upload(png_bytes(), "receipt.PNG", "image/png"))
    assert png.extension == "png"
    assert png.mime_type == "image/png"

    pdf = validate_proof_file(_upload(pdf_bytes(), "statement.pdf", "application/pdf"))
    assert pdf.extension == "pdf"


@pytest.mark.parametrize(
    "filename, content_type",
    [
        ("installer.exe", "application/octet-stream"),
        ("shell.php", "image/png"),
        ("receipt.png", "text/plain"),
        ("receipt", "image/png"),
    ],
)
def test_declared_type_and_extension_must_both_be_allowed(filename, content_type):
    with pytest.raises(UploadRejected) as excinfo:
        validate_proof_file(_upload(png_bytes(), filename, content_type))
    assert excinfo.value.message == TYPE_ERROR
    assert excinfo.value.reason == "type"


def test_content_must_match_the_declared_image_type():
    with pytest.raises(UploadRejected) as excinfo:
        validate_proof_file(_upload(b"<?php system($_GET['c']); ?>", "receipt.png", "image/png"))
    assert excinfo.value.reason == "type"

    with pytest.raises(UploadRejected):
        validate_proof_file(_upload(png_bytes(), "statement.pdf", "application/pdf"))


def _png_header_only(width: int, height: int) -> bytes:
    def chunk(kind: bytes, data: bytes) -> bytes:
        return struct.pack(">I", len(data)) + kind + data + struct.pack(">I", zlib.crc32(kind + data) & 0xFFFFFFFF)

    ihdr = struct.pack(">IIBBBBB", width, height, 1, 0, 0, 0, 0)
    return b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", ihdr) + chunk(b"IDAT", zlib.compress(b"\x00")) + chunk(b"IEND", b"")


def test_image_claiming_an_enormous_pixel_count_is_rejected():
    bomb = _png_header_only(20000, 20000)
    assert len(bomb) < 1024
    with pytest.raises(UploadRejected) as excinfo:
        validate_proof_file(_upload(bomb, "proof.png", "image/png"))
    assert excinfo.value.message == TYPE_ERROR
    assert excinfo.value.reason == "type"


def test_size_limit_is_inclusive():
    at_limit = b"%PDF-" + b"0" * (DEFAULT_MAX_PROOF_BYTES - 5)
    assert validate_proof_file(_upload(at_limit, "big.pdf", "application/pdf"))

    with pytest.raises(UploadRejected) as excinfo:
        validate_proof_file(_upload(at_limit + b"0", "big.pdf", "application/pdf"))
    assert excinfo.value.message == SIZE_ERROR
    assert excinfo.value.reason == "size"


def test_missing_or_empty_upload_is_rejected():
    with pytest.raises(UploadRejected) as excinfo:
        validate_proof_file(None)
    assert excinfo.value.reason == "missing"

    with pytest.raises(UploadRejected) as excinfo:
        validate_proof_file(_upload(b"", "empty.pdf", "application/pdf"))
    assert excinfo.value.reason == "missing"


def test_stored_name_never_uses_the_client_filename(tmp_path):
    proof = validate_proof_file(_upload(png_bytes(), "../../etc/passwd.png", "image/png"))
    first = store_proof(proof, str(tmp_path))
    second = store_proof(proof, str(tmp_path))

    assert first != second
    assert first.startswith("proof_") and first.endswith(".png")
    assert "passwd" not in first
    assert os.path.isfile(tmp_path / first)
    assert mime_type_for(first) == "image/png"

    discard_proof(first, str(tmp_path))
    assert not os.path.exists(tmp_path / first)


def test_resolve_refuses_paths_outside_the_upload_root(tmp_path):
    (tmp_path / "uploads").mkdir()
    (tmp_path / "secret.txt").write_text("nope")
    assert resolve_proof_path("../secret.txt", str(tmp_path / "uploads")) is None
    assert resolve_proof_path("proof_missing.png", str(tmp_path / "uploads")) is None
