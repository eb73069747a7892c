"""
RSA-OAEP encryption of location payloads.

Coordinates are small (a compact JSON object well under 100 bytes), so they
are encrypted directly with RSA-OAEP (MGF1/SHA-256) without a symmetric
layer. Keys travel as unencrypted PEM strings and ciphertexts as base64.

PRIVACY: Nothing in this module logs plaintexts, ciphertexts or keys.
"""

import base64
import binascii
import logging
from dataclasses import dataclass

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from app.core.errors import DecryptionError, EncryptionError
from app.core.geo import Coordinates

logger = logging.getLogger(__name__)

DEFAULT_KEY_SIZE = 2048
PUBLIC_EXPONENT = 65537

# OAEP overhead is 2 * hash length + 2 bytes
_OAEP_OVERHEAD_BYTES = 2 * hashes.SHA256.digest_size + 2


@dataclass(frozen=True)
class KeyPair:
    """PEM-encoded RSA key pair."""

    public_key: str
    private_key: str


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


def max_plaintext_bytes(key_size: int = DEFAULT_KEY_SIZE) -> int:
    """Largest plaintext (in bytes) OAEP/SHA-256 can encrypt for a key size."""
    return key_size // 8 - _OAEP_OVERHEAD_BYTES


def generate_key_pair(key_size: int = DEFAULT_KEY_SIZE) -> KeyPair:
    """
    Generate a fresh RSA key pair.

    Randomness comes from the OS CSPRNG via the cryptography backend.

    Args:
        key_size: Modulus size in bits (2048 by default)

    Returns:
        KeyPair with SubjectPublicKeyInfo and PKCS8 PEM strings
    """
    private_key = rsa.generate_private_key(
        public_exponent=PUBLIC_EXPONENT,
        key_size=key_size,
    )

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )

    logger.debug(f"Generated RSA-{key_size} key pair")
    return KeyPair(public_key=public_pem.decode("ascii"), private_key=private_pem.decode("ascii"))


def _load_public_key(public_key: str) -> rsa.RSAPublicKey:
    try:
        key = serialization.load_pem_public_key(public_key.encode("utf-8"))
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise EncryptionError(f"Malformed public key: {type(e).__name__}") from e

    if not isinstance(key, rsa.RSAPublicKey):
        raise EncryptionError("Public key is not an RSA key")
    return key


def _load_private_key(private_key: str) -> rsa.RSAPrivateKey:
    try:
        key = serialization.load_pem_private_key(
            private_key.encode("utf-8"), password=None
        )
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise DecryptionError(f"Malformed private key: {type(e).__name__}") from e

    if not isinstance(key, rsa.RSAPrivateKey):
        raise DecryptionError("Private key is not an RSA key")
    return key


def encrypt(plaintext: str, public_key: str) -> str:
    """
    Encrypt plaintext under an RSA public key.

    Args:
        plaintext: UTF-8 text, at most max_plaintext_bytes() once encoded
        public_key: PEM-encoded RSA public key

    Returns:
        Base64-encoded ciphertext

    Raises:
        EncryptionError: Payload too large or public key malformed
    """
    key = _load_public_key(public_key)
    data = plaintext.encode("utf-8")

    limit = max_plaintext_bytes(key.key_size)
    if len(data) > limit:
        raise EncryptionError(
            f"Plaintext is {len(data)} bytes, limit for RSA-{key.key_size} is {limit}"
        )

    ciphertext = key.encrypt(data, _oaep())
    return base64.b64encode(ciphertext).decode("ascii")


def decrypt(ciphertext: str, private_key: str) -> str:
    """
    Decrypt a base64 ciphertext with an RSA private key.

    Args:
        ciphertext: Base64 output of encrypt()
        private_key: PEM-encoded RSA private key

    Returns:
        The original plaintext

    Raises:
        DecryptionError: Wrong key, tampered/malformed ciphertext or bad key
    """
    key = _load_private_key(private_key)

    try:
        raw = base64.b64decode(ciphertext, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptionError("Ciphertext is not valid base64") from e

    try:
        data = key.decrypt(raw, _oaep())
    except ValueError as e:
        # OAEP padding check failed: not produced with the matching public key
        raise DecryptionError("Decryption failed") from e

    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionError("Decrypted payload is not UTF-8") from e


def encrypt_coordinates(coordinates: Coordinates, public_key: str) -> str:
    """Serialize and encrypt a position for transport."""
    return encrypt(coordinates.to_json(), public_key)


def decrypt_coordinates(ciphertext: str, private_key: str) -> Coordinates:
    """
    Decrypt and parse a position produced by encrypt_coordinates().

    Raises:
        DecryptionError: Decryption failed or the payload is not coordinates
    """
    plaintext = decrypt(ciphertext, private_key)
    try:
        return Coordinates.from_json(plaintext)
    except ValueError as e:
        raise DecryptionError("Decrypted payload is not a coordinate pair") from e
