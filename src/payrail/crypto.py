"""Entity secret encryption for Circle developer-controlled wallets.

Circle requires every mutating request to carry the entity secret encrypted
with the entity's RSA public key (RSA-OAEP, SHA-256). The ciphertext must be
fresh for each request, OAEP padding is randomized so re-encrypting is enough.
"""

import base64

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from payrail.errors import ConfigurationError

ENTITY_SECRET_BYTES = 32


def decode_entity_secret(entity_secret: str) -> bytes:
    """Decode and validate the hex entity secret.

    Raises:
        ConfigurationError: if the secret is not 32 bytes of hex
    """
    try:
        secret = bytes.fromhex(entity_secret.strip())
    except ValueError as e:
        raise ConfigurationError("CIRCLE_ENTITY_SECRET must be a hex string") from e

    if len(secret) != ENTITY_SECRET_BYTES:
        raise ConfigurationError(
            f"CIRCLE_ENTITY_SECRET must be {ENTITY_SECRET_BYTES} bytes, got {len(secret)}"
        )
    return secret


def load_public_key(pem: str) -> rsa.RSAPublicKey:
    """Load the entity public key returned by the provider."""
    key = serialization.load_pem_public_key(pem.encode())
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValueError("Entity public key is not an RSA key")
    return key


def encrypt_entity_secret(secret: bytes, public_key: rsa.RSAPublicKey) -> str:
    """Encrypt the entity secret for one request.

    Returns:
        Base64-encoded ciphertext
    """
    ciphertext = public_key.encrypt(
        secret,
        padding.OAEP(
            mgf=padding.MGF1(algorithm=hashes.SHA256()),
            algorithm=hashes.SHA256(),
            label=None,
        ),
    )
    return base64.b64encode(ciphertext).decode()
