import logging

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.hazmat.primitives.serialization.pkcs7 import (
    PKCS7Options,
    PKCS7SignatureBuilder,
)

from app.domain.errors import SigningError
from app.services.certificate_provider import SigningMaterial

logger = logging.getLogger(__name__)


def sign_manifest(manifest_data: bytes, material: SigningMaterial) -> bytes:
    """Create a detached PKCS#7 signature (DER) over manifest.json.

    Signed with SHA-256 by the pass type certificate; both the leaf and the
    WWDR intermediate are embedded so the device can build the chain.
    """
    if not manifest_data:
        raise SigningError()

    try:
        builder = (
            PKCS7SignatureBuilder()
            .set_data(manifest_data)
            .add_signer(material.signer_cert, material.private_key, hashes.SHA256())
            .add_certificate(material.wwdr_cert)
        )
        signature = builder.sign(Encoding.DER, [PKCS7Options.DetachedSignature, PKCS7Options.Binary])
    except (TypeError, ValueError) as e:
        logger.error(f"Manifest signing failed: {e}")
        raise SigningError() from e

    if not signature:
        logger.error("Manifest signing produced an empty signature")
        raise SigningError()
    return signature
