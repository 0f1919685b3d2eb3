from mixproxy.crypto.end_to_end import (
    DEFAULT_CONFIG,
    CryptoConfig,
    HybridCrypto,
    HybridEncryptionResult,
    decode_public_key,
    encode_public_key,
    load_private_key_pem,
    private_key_to_pem,
)

__all__ = (
    "DEFAULT_CONFIG", "CryptoConfig", "HybridCrypto", "HybridEncryptionResult",
    "decode_public_key", "encode_public_key", "load_private_key_pem", "private_key_to_pem",
)
