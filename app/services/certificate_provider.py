"""
Certificate Provider for Apple Wallet pass signing.

Handles:
- Normalizing PEM / base64 / DER / PKCS#12 configuration blobs to canonical PEM
- Parsing the signer certificate, private key and WWDR intermediate once
- Liveness checks reported as a full diagnostic list (never stops at the first issue)

Nothing else in the codebase touches raw key material: the signing engine gets
parsed objects through get_material().
"""

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    load_der_private_key,
    load_pem_private_key,
    pkcs12,
)
from cryptography.x509.oid import NameOID

from app.domain.errors import CertificatesNotConfiguredError
from app.domain.schemas import CertificateDiagnostics

logger = logging.getLogger(__name__)

_LIVENESS_PAYLOAD = b"pass-signing-liveness-check"


@dataclass(frozen=True)
class SigningMaterial:
    """Parsed, validated key material for the signing engine."""

    signer_cert: x509.Certificate
    private_key: rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey
    wwdr_cert: x509.Certificate


def _wrap_pem(der: bytes, label: str) -> bytes:
    body = base64.b64encode(der).decode("ascii")
    lines = [body[i:i + 64] for i in range(0, len(body), 64)]
    return ("\n".join([f"-----BEGIN {label}-----", *lines, f"-----END {label}-----"]) + "\n").encode("ascii")


def _decode_blob(blob: str | bytes) -> bytes:
    """Return PEM text (if the blob is or contains PEM) or raw DER bytes."""
    original = blob.encode("utf-8") if isinstance(blob, str) else bytes(blob)
    data = original.strip()
    if b"-----BEGIN" in data:
        # Env vars often carry literal "\n" sequences instead of newlines
        return data.replace(b"\\n", b"\n")

    try:
        raw = base64.b64decode(re.sub(rb"\s+", b"", data), validate=True)
    except (binascii.Error, ValueError):
        if isinstance(blob, str):
            raise ValueError("content is neither PEM nor base64")
        # Binary file contents: already DER
        return original

    if b"-----BEGIN" in raw:
        return raw.strip()
    return raw


def normalize_pem(blob: str | bytes, label: str, password: str | None = None) -> bytes:
    """Normalize a configuration blob to canonical PEM.

    ``label`` is ``CERTIFICATE`` or ``PRIVATE KEY``. Private keys supplied as
    DER or as a PKCS#12 bundle are re-serialized as unencrypted PKCS#8.
    """
    decoded = _decode_blob(blob)
    if b"-----BEGIN" in decoded:
        # Drop "Bag Attributes" preambles left by openssl pkcs12 exports
        decoded = decoded[decoded.index(b"-----BEGIN"):]
        return decoded if decoded.endswith(b"\n") else decoded + b"\n"

    if label != "PRIVATE KEY":
        return _wrap_pem(decoded, label)

    pwd = password.encode() if password else None
    try:
        key = load_der_private_key(decoded, pwd)
    except (TypeError, ValueError):
        key, _, _ = pkcs12.load_key_and_certificates(decoded, pwd)
        if key is None:
            raise ValueError("PKCS#12 bundle does not contain a private key")
    return key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())


def _common_name(name: x509.Name) -> str:
    attrs = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    return str(attrs[0].value) if attrs else ""


def _validity_error(cert: x509.Certificate, now: datetime) -> str | None:
    if now < cert.not_valid_before_utc:
        return "Certificate is not yet valid"
    if now > cert.not_valid_after_utc:
        return "Certificate is expired"
    return None


def _sign_verify(private_key, public_key) -> None:
    """Sign a throwaway payload and verify it; raises on any mismatch."""
    if isinstance(private_key, rsa.RSAPrivateKey):
        signature = private_key.sign(_LIVENESS_PAYLOAD, padding.PKCS1v15(), hashes.SHA256())
        public_key.verify(signature, _LIVENESS_PAYLOAD, padding.PKCS1v15(), hashes.SHA256())
    elif isinstance(private_key, ec.EllipticCurvePrivateKey):
        signature = private_key.sign(_LIVENESS_PAYLOAD, ec.ECDSA(hashes.SHA256()))
        public_key.verify(signature, _LIVENESS_PAYLOAD, ec.ECDSA(hashes.SHA256()))
    else:
        raise TypeError(f"Unsupported private key type: {type(private_key).__name__}")


class CertificateProvider:
    """Loads and validates the pass signing certificate chain."""

    def __init__(
        self,
        signer_cert: str | bytes | None,
        signer_key: str | bytes | None,
        wwdr_cert: str | bytes | None,
        key_password: str | None = None,
        expected_issuer: str = "Apple",
    ):
        self._sources = {
            "signer_cert": signer_cert,
            "signer_key": signer_key,
            "wwdr_cert": wwdr_cert,
        }
        self._key_password = key_password
        self._expected_issuer = expected_issuer
        self._material: Optional[SigningMaterial] = None
        self._report: Optional[CertificateDiagnostics] = None

    @classmethod
    def from_settings(cls, settings) -> "CertificateProvider":
        """Inline PEM/base64 settings win over the file paths."""

        def _source(inline: str, path: str) -> str | bytes | None:
            if inline:
                return inline
            if path and Path(path).is_file():
                return Path(path).read_bytes()
            return None

        return cls(
            signer_cert=_source(settings.signer_cert_pem, settings.cert_path),
            signer_key=_source(settings.signer_key_pem, settings.key_path),
            wwdr_cert=_source(settings.wwdr_pem, settings.wwdr_path),
            key_password=settings.cert_password,
            expected_issuer=settings.wwdr_expected_issuer,
        )

    @property
    def is_configured(self) -> bool:
        if self._report is None:
            self.load()
        return self._material is not None

    def load(self, now: datetime | None = None) -> CertificateDiagnostics:
        """Parse and check all three artifacts, caching the result."""
        now = now or datetime.now(timezone.utc)
        diagnostics: list[str] = []

        signer_cert, cert_errors = self._load_signer_cert(now)
        private_key, key_errors = self._load_private_key(signer_cert)
        wwdr_cert, wwdr_errors = self._load_wwdr_cert(now)

        if cert_errors:
            diagnostics.append("Signing Certificate Issues:")
            diagnostics.extend(f"- {error}" for error in cert_errors)
        else:
            diagnostics.append("✓ Signing Certificate is valid")
            diagnostics.append(f"  Subject: {_common_name(signer_cert.subject)}")
            diagnostics.append(f"  Valid until: {signer_cert.not_valid_after_utc.date().isoformat()}")

        if key_errors:
            diagnostics.append("Private Key Issues:")
            diagnostics.extend(f"- {error}" for error in key_errors)
        else:
            diagnostics.append("✓ Private Key is valid")

        if wwdr_errors:
            diagnostics.append("WWDR Certificate Issues:")
            diagnostics.extend(f"- {error}" for error in wwdr_errors)
        else:
            diagnostics.append("✓ WWDR Certificate is valid")
            diagnostics.append(f"  Issuer: {_common_name(wwdr_cert.issuer)}")
            diagnostics.append(f"  Valid until: {wwdr_cert.not_valid_after_utc.date().isoformat()}")

        is_valid = not (cert_errors or key_errors or wwdr_errors)
        self._material = (
            SigningMaterial(signer_cert=signer_cert, private_key=private_key, wwdr_cert=wwdr_cert)
            if is_valid
            else None
        )
        self._report = CertificateDiagnostics(is_valid=is_valid, diagnostics=diagnostics)

        if is_valid:
            logger.info("Pass signing certificates loaded and verified")
        else:
            logger.warning("Pass signing unavailable: %s", "; ".join(diagnostics))
        return self._report

    def diagnostics(self) -> CertificateDiagnostics:
        if self._report is None:
            return self.load()
        return self._report

    def get_material(self) -> SigningMaterial:
        """Parsed key material, or CertificatesNotConfiguredError (retryable)."""
        if self._report is None:
            self.load()
        if self._material is None:
            raise CertificatesNotConfiguredError()
        return self._material

    def _load_signer_cert(self, now: datetime) -> tuple[Optional[x509.Certificate], list[str]]:
        source = self._sources["signer_cert"]
        if not source:
            return None, ["Not configured (set SIGNER_CERT_PEM or CERT_PATH)"]
        try:
            cert = x509.load_pem_x509_certificate(normalize_pem(source, "CERTIFICATE"))
        except ValueError as e:
            return None, [f"Signing certificate validation error: {e}"]

        errors = []
        validity_error = _validity_error(cert, now)
        if validity_error:
            errors.append(validity_error)
        if "pass." not in _common_name(cert.subject):
            errors.append("Certificate subject does not contain valid Pass Type ID")
        return cert, errors

    def _load_private_key(self, signer_cert: Optional[x509.Certificate]):
        source = self._sources["signer_key"]
        if not source:
            return None, ["Not configured (set SIGNER_KEY_PEM or KEY_PATH)"]
        try:
            pem = normalize_pem(source, "PRIVATE KEY", self._key_password)
            password = self._key_password.encode() if self._key_password and b"ENCRYPTED" in pem else None
            private_key = load_pem_private_key(pem, password)
        except (TypeError, ValueError) as e:
            return None, [f"Failed to parse private key: {e}"]

        errors = []
        try:
            _sign_verify(private_key, private_key.public_key())
        except (InvalidSignature, TypeError) as e:
            errors.append(f"Private key failed sign/verify check: {e or 'signature mismatch'}")
            return private_key, errors

        if signer_cert is not None:
            try:
                _sign_verify(private_key, signer_cert.public_key())
            except (InvalidSignature, TypeError, AttributeError):
                errors.append("Private key does not match the signing certificate")
        return private_key, errors

    def _load_wwdr_cert(self, now: datetime) -> tuple[Optional[x509.Certificate], list[str]]:
        source = self._sources["wwdr_cert"]
        if not source:
            return None, ["Not configured (set WWDR_PEM or WWDR_PATH)"]
        try:
            cert = x509.load_pem_x509_certificate(normalize_pem(source, "CERTIFICATE"))
        except ValueError as e:
            return None, [f"WWDR certificate validation error: {e}"]

        errors = []
        if self._expected_issuer not in _common_name(cert.issuer):
            errors.append(f"Not a valid {self._expected_issuer} WWDR certificate")
        validity_error = _validity_error(cert, now)
        if validity_error:
            errors.append(validity_error)
        return cert, errors


# Singleton
_provider: Optional[CertificateProvider] = None


def get_certificate_provider() -> CertificateProvider:
    """Get or create the singleton CertificateProvider."""
    global _provider
    if _provider is None:
        from app.core.config import settings

        _provider = CertificateProvider.from_settings(settings)
        _provider.load()
    return _provider


def reload_certificate_provider() -> CertificateProvider:
    """Re-read certificate sources (e.g. after rotation) and swap the singleton."""
    global _provider
    from app.core.config import settings

    provider = CertificateProvider.from_settings(settings)
    provider.load()
    _provider = provider
    return provider
