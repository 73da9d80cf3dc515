import shutil
import subprocess

import pytest
from cryptography.hazmat.primitives.serialization import pkcs7

from app.domain.errors import SigningError
from app.services.signing import sign_manifest

MANIFEST = b'{"icon.png":"0c1a2b","pass.json":"9f8e7d"}'

requires_openssl = pytest.mark.skipif(shutil.which("openssl") is None, reason="openssl CLI not installed")


def openssl_verify(tmp_path, root_pem: str, manifest: bytes, signature: bytes) -> subprocess.CompletedProcess:
    """Verify a detached signature with an independent implementation."""
    (tmp_path / "root.pem").write_text(root_pem)
    (tmp_path / "manifest.json").write_bytes(manifest)
    (tmp_path / "signature").write_bytes(signature)
    return subprocess.run(
        [
            "openssl", "smime", "-verify",
            "-binary",
            "-inform", "DER",
            "-in", str(tmp_path / "signature"),
            "-content", str(tmp_path / "manifest.json"),
            "-CAfile", str(tmp_path / "root.pem"),
            "-purpose", "any",
            "-out", str(tmp_path / "verified"),
        ],
        capture_output=True,
        text=True,
    )


def test_signature_embeds_leaf_and_intermediate(certificate_provider, cert_chain):
    signature = sign_manifest(MANIFEST, certificate_provider.get_material())

    embedded = pkcs7.load_der_pkcs7_certificates(signature)
    assert cert_chain.signer_cert in embedded
    assert cert_chain.wwdr_cert in embedded
    # Detached: the manifest itself is not inside the signature
    assert MANIFEST not in signature


@requires_openssl
def test_signature_verifies_with_openssl(certificate_provider, cert_chain, tmp_path):
    signature = sign_manifest(MANIFEST, certificate_provider.get_material())

    result = openssl_verify(tmp_path, cert_chain.root_pem, MANIFEST, signature)
    assert result.returncode == 0, result.stderr


@requires_openssl
def test_tampered_manifest_fails_verification(certificate_provider, cert_chain, tmp_path):
    signature = sign_manifest(MANIFEST, certificate_provider.get_material())
    tampered = MANIFEST.replace(b"0c1a2b", b"0c1a2c")

    result = openssl_verify(tmp_path, cert_chain.root_pem, tampered, signature)
    assert result.returncode != 0


def test_empty_manifest_is_rejected(certificate_provider):
    with pytest.raises(SigningError):
        sign_manifest(b"", certificate_provider.get_material())
