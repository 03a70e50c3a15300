"""Probabilistic SKU encryption using Google Tink AEAD."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
import io
from pathlib import Path
from typing import Any, Optional

import tink
from tink import JsonKeysetReader, JsonKeysetWriter, aead, cleartext_keyset_handle, read_keyset_handle


def _register_tink_primitives() -> None:
    aead.register()


_register_tink_primitives()

DEFAULT_KEYSET = "default"
DEFAULT_ASSOCIATED_DATA = b"product.sku"
SCHEME = "tink-aead"


class SKUCodecError(Exception):
    """Base class for codec failures."""


class ConfigurationError(SKUCodecError, RuntimeError):
    """Raised when keyset configuration is missing or invalid."""


class DecryptionError(SKUCodecError):
    """Raised when a stored ciphertext cannot be turned back into a SKU."""


def _ensure_bytes(value: Any) -> bytes:
    if value is None:
        return b""
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    raise TypeError("Associated data must be bytes or str.")


@dataclass(frozen=True)
class KeysetConfig:
    path: Optional[str] = None
    keyset_json: Optional[str] = None
    master_key_aead: Optional[aead.Aead] = None
    cleartext: bool = False

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if not self.path and not self.keyset_json:
            raise ConfigurationError("Keyset requires either `path` or `keyset_json`.")
        if self.path and self.keyset_json:
            raise ConfigurationError("Keyset accepts only one of `path` and `keyset_json`.")
        if self.path and not Path(self.path).exists():
            raise ConfigurationError(f"Keyset {self.path} does not exist.")
        if not self.cleartext and self.master_key_aead is None:
            raise ConfigurationError("Encrypted keysets must specify `master_key_aead`.")

    def read(self) -> str:
        if self.keyset_json:
            return self.keyset_json
        with open(self.path, "r", encoding="utf-8") as handle:
            return handle.read()


class KeysetRegistry:
    """Named keyset configurations with lazily loaded Tink handles.

    Expected format:
    {
        "default": {
            "path": "/path/to/keyset.json",   # or "keyset_json": "<json>"
            "cleartext": True,
            "master_key_aead": <tink.aead.Aead>,  # optional when cleartext=True
        }
    }
    """

    def __init__(self, config: Optional[dict[str, dict[str, Any]]] = None) -> None:
        self._config = dict(config or {})
        self._handles: dict[str, Any] = {}

    def __contains__(self, keyset_name: str) -> bool:
        return keyset_name in self._config

    def keyset_handle(self, keyset_name: str = DEFAULT_KEYSET) -> Any:
        handle = self._handles.get(keyset_name)
        if handle is not None:
            return handle

        if keyset_name not in self._config:
            raise ConfigurationError(f"Missing keyset configuration for '{keyset_name}'.")

        try:
            keyset_config = KeysetConfig(**self._config[keyset_name])
        except TypeError as exc:
            raise ConfigurationError(f"Invalid keyset configuration for '{keyset_name}'.") from exc

        try:
            reader = JsonKeysetReader(keyset_config.read())
            if keyset_config.cleartext:
                handle = cleartext_keyset_handle.read(reader)
            else:
                handle = read_keyset_handle(reader, keyset_config.master_key_aead)
        except (tink.TinkError, ValueError, OSError) as exc:
            raise ConfigurationError(f"Keyset '{keyset_name}' could not be loaded.") from exc

        self._handles[keyset_name] = handle
        return handle

    def aead_primitive(self, keyset_name: str = DEFAULT_KEYSET) -> aead.Aead:
        try:
            return self.keyset_handle(keyset_name).primitive(aead.Aead)
        except tink.TinkError as exc:
            raise ConfigurationError(f"Keyset '{keyset_name}' is not an AEAD keyset.") from exc


class SKUCodec:
    """Encodes plaintext SKUs into self-contained, algorithm-tagged ciphertext.

    Every call to :meth:`encode` uses a fresh random IV, so equal plaintexts
    never produce equal ciphertexts. Ciphertext equality must not be used to
    compare SKUs; decode first.
    """

    def __init__(
        self,
        registry: KeysetRegistry,
        *,
        keyset: str = DEFAULT_KEYSET,
        associated_data: Any = DEFAULT_ASSOCIATED_DATA,
    ) -> None:
        self.registry = registry
        self.keyset = keyset
        self.associated_data = _ensure_bytes(associated_data)

    @property
    def _primitive(self) -> aead.Aead:
        return self.registry.aead_primitive(self.keyset)

    def check(self) -> None:
        """Fail with ConfigurationError unless the key can be loaded."""
        _ = self._primitive

    def encode(self, plaintext: str) -> str:
        if not isinstance(plaintext, str):
            raise TypeError("SKU must be a string.")
        if not plaintext:
            raise ValueError("SKU must not be empty.")
        sealed = self._primitive.encrypt(plaintext.encode("utf-8"), self.associated_data)
        return f"{SCHEME}:{base64.b64encode(sealed).decode('ascii')}"

    def decode(self, ciphertext: str) -> str:
        primitive = self._primitive
        if not isinstance(ciphertext, str):
            raise DecryptionError("SKU ciphertext must be text.")

        scheme, sep, payload = ciphertext.partition(":")
        if not sep or scheme != SCHEME:
            raise DecryptionError("SKU ciphertext has an unknown scheme tag.")

        try:
            sealed = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise DecryptionError("SKU ciphertext is not valid base64.") from exc
        # Reject alternative encodings of the same bytes.
        if base64.b64encode(sealed).decode("ascii") != payload:
            raise DecryptionError("SKU ciphertext is not canonically encoded.")

        try:
            plaintext = primitive.decrypt(sealed, self.associated_data)
        except tink.TinkError as exc:
            raise DecryptionError("SKU ciphertext failed authentication.") from exc

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError("SKU plaintext is not valid UTF-8.") from exc


def generate_keyset() -> str:
    """Return a new cleartext AES256-GCM keyset serialized as JSON."""
    handle = tink.new_keyset_handle(aead.aead_key_templates.AES256_GCM)
    stream = io.StringIO()
    cleartext_keyset_handle.write(JsonKeysetWriter(stream), handle)
    return stream.getvalue()
