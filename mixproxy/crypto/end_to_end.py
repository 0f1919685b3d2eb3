"""
End-to-end hybrid encryption of message payloads.

A payload is sealed with a fresh AES-GCM key, and that key is wrapped for the
recipient with RSA-OAEP. The three outputs travel together as one MessagePack
array of ``bin`` fields::

    [encrypted_symmetric_key, iv, cipher_text]

``cipher_text`` carries the GCM tag appended, as AEAD implementations
produce it. The layout is the interchange format with the mix-network
client, so it must not change.
"""
from __future__ import annotations

import base64
import binascii
import os
import re
from dataclasses import dataclass
from typing import Callable, NamedTuple, Tuple

import msgpack
from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from msgpack.exceptions import UnpackException

from mixproxy.errors import (
    CryptoAuthenticationFailure,
    CryptoConfigError,
    CryptoError,
    CryptoFormatError,
    KeyGenerationError,
)

SYMMETRIC_TRANSFORMATION = "AES/GCM/NoPadding"
ASYMMETRIC_TRANSFORMATION = "RSA/ECB/OAEPWithSHA-512AndMGF1Padding"

_OAEP_PATTERN = re.compile(r"^RSA/(?:ECB|NONE)/OAEPWith(SHA-?\d+)AndMGF1Padding$", re.IGNORECASE)
_HASHES = {
    "1": hashes.SHA1,
    "224": hashes.SHA224,
    "256": hashes.SHA256,
    "384": hashes.SHA384,
    "512": hashes.SHA512,
}
_AES_KEY_BITS = (128, 192, 256)


@dataclass(frozen=True)
class CryptoConfig:
    symmetric_key_bits: int = 128
    symmetric_transformation: str = SYMMETRIC_TRANSFORMATION
    gcm_tag_bits: int = 128
    gcm_iv_bits: int = 96
    asymmetric_key_bits: int = 4096
    asymmetric_transformation: str = ASYMMETRIC_TRANSFORMATION
    public_exponent: int = 65537

    @property
    def symmetric_key_bytes(self) -> int:
        return self.symmetric_key_bits // 8

    @property
    def iv_bytes(self) -> int:
        return self.gcm_iv_bits // 8

    @property
    def tag_bytes(self) -> int:
        return self.gcm_tag_bits // 8

    def oaep_hash(self) -> hashes.HashAlgorithm:
        match = _OAEP_PATTERN.match(self.asymmetric_transformation)
        if not match:
            raise CryptoConfigError(f"unsupported asymmetric transformation {self.asymmetric_transformation!r}")
        digits = re.sub(r"\D", "", match.group(1))
        if digits not in _HASHES:
            raise CryptoConfigError(f"unsupported OAEP hash {match.group(1)!r}")
        return _HASHES[digits]()

    def validate(self):
        if self.symmetric_transformation.upper() != SYMMETRIC_TRANSFORMATION.upper():
            raise CryptoConfigError(f"unsupported symmetric transformation {self.symmetric_transformation!r}")
        if self.symmetric_key_bits not in _AES_KEY_BITS:
            raise CryptoConfigError(f"AES key must be one of {_AES_KEY_BITS} bits")
        # AESGCM only emits full-length tags
        if self.gcm_tag_bits != 128:
            raise CryptoConfigError("GCM tag length must be 128 bits")
        if self.gcm_iv_bits % 8 or not 64 <= self.gcm_iv_bits <= 1024:
            raise CryptoConfigError("GCM IV must be a whole number of bytes between 64 and 1024 bits")
        if self.asymmetric_key_bits % 8 or self.asymmetric_key_bits < 1024:
            raise CryptoConfigError("RSA key must be at least 1024 bits")
        digest_size = self.oaep_hash().digest_size
        capacity = self.asymmetric_key_bits // 8 - 2 * digest_size - 2
        if capacity < self.symmetric_key_bytes:
            raise CryptoConfigError(
                f"RSA-{self.asymmetric_key_bits} with this OAEP hash cannot wrap a "
                f"{self.symmetric_key_bits}-bit key"
            )


DEFAULT_CONFIG = CryptoConfig()


class HybridEncryptionResult(NamedTuple):
    encrypted_symmetric_key: bytes
    iv: bytes
    cipher_text: bytes

    def pack(self) -> bytes:
        return msgpack.packb(
            [self.encrypted_symmetric_key, self.iv, self.cipher_text],
            use_bin_type=True,
        )

    @classmethod
    def unpack(cls, packed: bytes) -> "HybridEncryptionResult":
        try:
            fields = msgpack.unpackb(packed, raw=False)
        except (UnpackException, ValueError, TypeError) as e:
            raise CryptoFormatError(f"Failed to unpack the encryption result: {e}") from e
        if not isinstance(fields, list) or len(fields) != 3:
            raise CryptoFormatError("encryption result must be an array of exactly three fields")
        if not all(isinstance(field, bytes) for field in fields):
            raise CryptoFormatError("encryption result fields must be binary")
        return cls(*fields)


class HybridCrypto:
    """
    RSA-OAEP key wrapping plus AES-GCM payload encryption.

    ``random_bytes`` is the randomness source for symmetric keys and IVs and
    defaults to ``os.urandom``. RSA keypairs come from the cryptography
    backend's own CSPRNG.
    """

    def __init__(self, config: CryptoConfig = DEFAULT_CONFIG, random_bytes: Callable[[int], bytes] = os.urandom):
        config.validate()
        self.config = config
        self._random_bytes = random_bytes
        hash_cls = type(config.oaep_hash())
        self._oaep = padding.OAEP(mgf=padding.MGF1(algorithm=hash_cls()), algorithm=hash_cls(), label=None)

    # --- Public API ---

    def generate_asymmetric_keypair(self) -> Tuple[rsa.RSAPublicKey, rsa.RSAPrivateKey]:
        try:
            private_key = rsa.generate_private_key(
                public_exponent=self.config.public_exponent,
                key_size=self.config.asymmetric_key_bits,
            )
        except (ValueError, UnsupportedAlgorithm) as e:
            raise KeyGenerationError("Key gen failed") from e
        return private_key.public_key(), private_key

    def hybrid_encrypt(self, recipient_public_key: rsa.RSAPublicKey, plaintext: bytes) -> bytes:
        symmetric_key = self.generate_symmetric_key()
        iv, cipher_text = self.symmetric_encrypt(symmetric_key, plaintext)
        encrypted_symmetric_key = self.asymmetric_encrypt(recipient_public_key, symmetric_key)
        return HybridEncryptionResult(encrypted_symmetric_key, iv, cipher_text).pack()

    def hybrid_decrypt(self, private_key: rsa.RSAPrivateKey, packed: bytes) -> bytes:
        result = HybridEncryptionResult.unpack(packed)
        if len(result.iv) != self.config.iv_bytes:
            raise CryptoFormatError(f"IV must be {self.config.iv_bytes} bytes, got {len(result.iv)}")
        if len(result.cipher_text) < self.config.tag_bytes:
            raise CryptoFormatError("cipher text is shorter than the authentication tag")
        symmetric_key = self.asymmetric_decrypt(private_key, result.encrypted_symmetric_key)
        if len(symmetric_key) != self.config.symmetric_key_bytes:
            raise CryptoAuthenticationFailure("unwrapped symmetric key has the wrong length")
        return self.symmetric_decrypt(symmetric_key, result.iv, result.cipher_text)

    # --- Building blocks ---

    def generate_symmetric_key(self) -> bytes:
        return self._random_bytes(self.config.symmetric_key_bytes)

    def symmetric_encrypt(self, key: bytes, plaintext: bytes) -> Tuple[bytes, bytes]:
        iv = self._random_bytes(self.config.iv_bytes)
        try:
            cipher_text = AESGCM(key).encrypt(iv, bytes(plaintext), None)
        except (ValueError, TypeError, OverflowError) as e:
            raise CryptoError("Encryption failed") from e
        return iv, cipher_text

    def symmetric_decrypt(self, key: bytes, iv: bytes, cipher_text: bytes) -> bytes:
        try:
            return AESGCM(key).decrypt(iv, cipher_text, None)
        except InvalidTag as e:
            raise CryptoAuthenticationFailure("authentication tag did not verify") from e
        except ValueError as e:
            raise CryptoFormatError(f"Decryption failed: {e}") from e

    def asymmetric_encrypt(self, public_key: rsa.RSAPublicKey, data: bytes) -> bytes:
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise CryptoError(f"expected an RSA public key, got {type(public_key).__name__}")
        try:
            return public_key.encrypt(data, self._oaep)
        except ValueError as e:
            raise CryptoError("Encryption failed") from e

    def asymmetric_decrypt(self, private_key: rsa.RSAPrivateKey, data: bytes) -> bytes:
        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise CryptoError(f"expected an RSA private key, got {type(private_key).__name__}")
        try:
            return private_key.decrypt(data, self._oaep)
        except ValueError as e:
            # wrong key, tampered key block and bad padding all look the same
            raise CryptoAuthenticationFailure("Decryption failed") from e


# --- Key encoding ---

def encode_public_key(public_key: rsa.RSAPublicKey) -> str:
    """Base64 of the X.509 SubjectPublicKeyInfo DER, as mix nodes publish keys."""
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return base64.b64encode(der).decode("ascii")


def decode_public_key(encoded: str) -> rsa.RSAPublicKey:
    try:
        der = base64.b64decode(encoded, validate=True)
        key = serialization.load_der_public_key(der)
    except (binascii.Error, ValueError, UnsupportedAlgorithm) as e:
        raise CryptoFormatError("not a base64 DER public key") from e
    if not isinstance(key, rsa.RSAPublicKey):
        raise CryptoFormatError(f"expected an RSA public key, got {type(key).__name__}")
    return key


def private_key_to_pem(private_key: rsa.RSAPrivateKey) -> bytes:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def load_private_key_pem(data: bytes) -> rsa.RSAPrivateKey:
    try:
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CryptoFormatError("not an unencrypted PEM private key") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise CryptoFormatError(f"expected an RSA private key, got {type(key).__name__}")
    return key
