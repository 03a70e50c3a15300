"""SKU confidentiality codec backed by Tink AEAD."""

from sku_vault.codec import (
    DEFAULT_ASSOCIATED_DATA,
    DEFAULT_KEYSET,
    SCHEME,
    ConfigurationError,
    DecryptionError,
    KeysetConfig,
    KeysetRegistry,
    SKUCodec,
    SKUCodecError,
    generate_keyset,
)

__all__ = [
    "DEFAULT_ASSOCIATED_DATA",
    "DEFAULT_KEYSET",
    "SCHEME",
    "ConfigurationError",
    "DecryptionError",
    "KeysetConfig",
    "KeysetRegistry",
    "SKUCodec",
    "SKUCodecError",
    "generate_keyset",
]
