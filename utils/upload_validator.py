"""Validation and storage of proof-of-purchase attachments."""
import io
import os
import uuid
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from utils.errors import UploadRejected

ALLOWED_PROOF_MIME_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "application/pdf"})
ALLOWED_PROOF_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "pdf"})
DEFAULT_MAX_PROOF_BYTES = 5 * 1024 * 1024

TYPE_ERROR = "Only JPG, PNG, GIF, and PDF files are allowed."
SIZE_ERROR = "File size too large. Maximum size is 5MB."

_PIL_FORMATS = {"jpg": {"JPEG", "MPO"}, "jpeg": {"JPEG", "MPO"}, "png": {"PNG"}, "gif": {"GIF"}}
_MIME_BY_EXTENSION = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "pdf": "application/pdf",
}


@dataclass
class AcceptedProof:
    content: bytes
    extension: str
    mime_type: str


def _extension_of(filename: str | None) -> str:
    name = (filename or "").strip()
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[1].lower()


def _size_message(max_bytes: int) -> str:
    if max_bytes == DEFAULT_MAX_PROOF_BYTES:
        return SIZE_ERROR
    return f"File size too large. Maximum size is {max_bytes // (1024 * 1024) or 1}MB."


def _content_matches(content: bytes, ext: str) -> bool:
    if ext == "pdf":
        return content.startswith(b"%PDF-")
    try:
        with Image.open(io.BytesIO(content)) as img:
            detected = img.format
            img.verify()
    except (Image.DecompressionBombError, UnidentifiedImageError, OSError, SyntaxError, ValueError):
        return False
    return detected in _PIL_FORMATS.get(ext, set())


def validate_proof_file(file: FileStorage | None, max_bytes: int = DEFAULT_MAX_PROOF_BYTES) -> AcceptedProof:
    """Accept a file only if its declared content type and its extension are both allow-listed."""
    if file is None or not file.filename:
        raise UploadRejected("Please upload proof of your claim.", reason="missing")

    ext = _extension_of(file.filename)
    declared = (file.mimetype or "").lower()
    if declared not in ALLOWED_PROOF_MIME_TYPES or ext not in ALLOWED_PROOF_EXTENSIONS:
        raise UploadRejected(TYPE_ERROR, reason="type")

    file.stream.seek(0, os.SEEK_END)
    size = file.stream.tell()
    file.stream.seek(0)
    if size == 0:
        raise UploadRejected("The uploaded file is empty.", reason="missing")
    if size > max_bytes:
        raise UploadRejected(_size_message(max_bytes), reason="size")

    content = file.read()
    if len(content) > max_bytes:
        raise UploadRejected(_size_message(max_bytes), reason="size")
    if not _content_matches(content, ext):
        raise UploadRejected(TYPE_ERROR, reason="type")

    file.stream.seek(0)
    return AcceptedProof(content=content, extension=ext, mime_type=_MIME_BY_EXTENSION[ext])


def store_proof(proof: AcceptedProof, upload_dir: str) -> str:
    """Write under a random name; the client's filename never reaches the filesystem."""
    os.makedirs(upload_dir, exist_ok=True)
    stored_name = secure_filename(f"proof_{uuid.uuid4().hex}.{proof.extension}")
    path = os.path.join(upload_dir, stored_name)
    with open(path, "xb") as f:
        f.write(proof.content)
    return stored_name


def discard_proof(stored_name: str | None, upload_dir: str) -> None:
    if not stored_name:
        return
    path = os.path.join(upload_dir, os.path.basename(stored_name))
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def resolve_proof_path(stored_name: str, upload_dir: str) -> str | None:
    """Absolute path of a stored proof, or ``None`` if it escapes the upload root or is missing."""
    abs_root = os.path.abspath(upload_dir)
    abs_path = os.path.abspath(os.path.join(abs_root, stored_name))
    if os.path.commonpath([abs_root, abs_path]) != abs_root:
        return None
    if not os.path.isfile(abs_path):
        return None
    return abs_path


def mime_type_for(stored_name: str) -> str:
    return _MIME_BY_EXTENSION.get(_extension_of(stored_name), "application/octet-stream")
