import hashlib
import io
import json
import zipfile

from app.domain.errors import ArchiveIntegrityError

# Entries not listed in the manifest but always present
ARCHIVE_CONTROL_FILES = ("manifest.json", "signature")

# Fixed entry timestamp so identical inputs give identical archives
_ZIP_DATE_TIME = (1980, 1, 1, 0, 0, 0)


def build_manifest(files: dict[str, bytes]) -> bytes:
    """manifest.json: every bundled file name -> SHA-1 hex of its bytes."""
    manifest = {name: hashlib.sha1(content).hexdigest() for name, content in files.items()}
    return json.dumps(manifest, sort_keys=True, separators=(",", ":")).encode("utf-8")


def package_pass(files: dict[str, bytes], manifest_data: bytes, signature: bytes) -> bytes:
    """Zip a signed pass. ``files`` holds pass.json and the images."""
    try:
        manifest = json.loads(manifest_data)
    except ValueError as e:
        raise ArchiveIntegrityError() from e

    if "pass.json" not in files or set(manifest) != set(files):
        raise ArchiveIntegrityError()
    for name, content in files.items():
        if hashlib.sha1(content).hexdigest() != manifest[name]:
            raise ArchiveIntegrityError()
    if not signature:
        raise ArchiveIntegrityError()

    entries = {**files, "manifest.json": manifest_data, "signature": signature}

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for name in sorted(entries):
            info = zipfile.ZipInfo(name, date_time=_ZIP_DATE_TIME)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.external_attr = 0o644 << 16
            zf.writestr(info, entries[name])
    return buffer.getvalue()
