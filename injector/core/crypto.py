"""Hybrid public-key encryption for secrets stored in config documents.

Each message is encrypted with a fresh X25519 ephemeral key. The shared
secret is stretched with HKDF-SHA256 into an AES-256-GCM key, and the
optional context bytes are bound in as associated data.

Keys travel as JSON keysets so a document can rotate keys: the ciphertext
names the key id it was made for.
"""

from __future__ import annotations

import base64
import binascii
import json
import os
import struct
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from injector.core.exceptions import CryptoError, DecryptionError, EncryptionError

ALGORITHM = "X25519_HKDF_SHA256_AES256_GCM"
PRIVATE_MATERIAL = "ASYMMETRIC_PRIVATE"
PUBLIC_MATERIAL = "ASYMMETRIC_PUBLIC"

_VERSION = 1
_HEADER = struct.Struct(">BI")
_KEY_LEN = 32
_NONCE_LEN = 12
_HKDF_INFO = b"injector hybrid encryption v1"


@dataclass
class KeysetKey:
    key_id: int
    status: str
    material_type: str
    value: bytes


def _raw_public(key: X25519PublicKey) -> bytes:
    return key.public_bytes(encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw)


def _raw_private(key: X25519PrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _derive_key(shared: bytes, ephemeral_pub: bytes, recipient_pub: bytes) -> bytes:
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=ephemeral_pub + recipient_pub,
        info=_HKDF_INFO,
    )
    return hkdf.derive(shared)


def _dump_keyset(primary: int, keys: list[KeysetKey]) -> str:
    return json.dumps(
        {
            "primaryKeyId": primary,
            "key": [
                {
                    "keyId": k.key_id,
                    "status": k.status,
                    "keyMaterialType": k.material_type,
                    "algorithm": ALGORITHM,
                    "value": base64.b64encode(k.value).decode("ascii"),
                }
                for k in keys
            ],
        },
        indent=2,
    )


def _load_keyset(keyset_json: str | bytes, material_type: str) -> tuple[int, list[KeysetKey]]:
    try:
        doc = json.loads(keyset_json)
        primary = int(doc["primaryKeyId"])
        keys = [
            KeysetKey(
                key_id=int(entry["keyId"]),
                status=entry.get("status", "ENABLED"),
                material_type=entry["keyMaterialType"],
                value=base64.b64decode(entry["value"], validate=True),
            )
            for entry in doc["key"]
        ]
    except (ValueError, KeyError, TypeError, binascii.Error) as e:
        raise CryptoError(f"invalid keyset: {e}") from e

    for key in keys:
        if key.material_type != material_type:
            raise CryptoError(f"invalid keyset: key {key.key_id} is {key.material_type}, expected {material_type}")
        if len(key.value) != _KEY_LEN:
            raise CryptoError(f"invalid keyset: key {key.key_id} has the wrong length")
    return primary, keys


def generate_keyset() -> str:
    """Generate a private keyset holding one new key."""
    key_id = struct.unpack(">I", os.urandom(4))[0]
    private = X25519PrivateKey.generate()
    return _dump_keyset(key_id, [KeysetKey(key_id, "ENABLED", PRIVATE_MATERIAL, _raw_private(private))])


def public_keyset(private_keyset_json: str | bytes) -> str:
    """Derive the public keyset to publish for a private keyset."""
    primary, keys = _load_keyset(private_keyset_json, PRIVATE_MATERIAL)
    public = [
        KeysetKey(
            k.key_id,
            k.status,
            PUBLIC_MATERIAL,
            _raw_public(X25519PrivateKey.from_private_bytes(k.value).public_key()),
        )
        for k in keys
    ]
    return _dump_keyset(primary, public)


class Encryptor:
    """Encrypts to the primary key of a public keyset."""

    def __init__(self, public_keyset_json: str | bytes) -> None:
        primary, keys = _load_keyset(public_keyset_json, PUBLIC_MATERIAL)
        for key in keys:
            if key.key_id == primary:
                self._key_id = key.key_id
                self._recipient = X25519PublicKey.from_public_bytes(key.value)
                break
        else:
            raise CryptoError(f"invalid keyset: primary key {primary} not found")

    def encrypt(self, plaintext: bytes, context: bytes | None = None) -> bytes:
        try:
            ephemeral = X25519PrivateKey.generate()
            ephemeral_pub = _raw_public(ephemeral.public_key())
            shared = ephemeral.exchange(self._recipient)
            key = _derive_key(shared, ephemeral_pub, _raw_public(self._recipient))
            nonce = os.urandom(_NONCE_LEN)
            sealed = AESGCM(key).encrypt(nonce, plaintext, context or b"")
        except ValueError as e:
            raise EncryptionError(f"encryption failed: {e}") from e
        return _HEADER.pack(_VERSION, self._key_id) + ephemeral_pub + nonce + sealed


class Decryptor:
    """Decrypts messages made for any key in a private keyset."""

    def __init__(self, private_keyset_json: str | bytes) -> None:
        _, keys = _load_keyset(private_keyset_json, PRIVATE_MATERIAL)
        self._keys = {k.key_id: X25519PrivateKey.from_private_bytes(k.value) for k in keys}

    def decrypt(self, ciphertext: bytes, context: bytes | None = None) -> bytes:
        prefix = _HEADER.size + _KEY_LEN + _NONCE_LEN
        if len(ciphertext) < prefix:
            raise DecryptionError()
        version, key_id = _HEADER.unpack_from(ciphertext)
        private = self._keys.get(key_id)
        if version != _VERSION or private is None:
            raise DecryptionError()

        ephemeral_pub = ciphertext[_HEADER.size : _HEADER.size + _KEY_LEN]
        nonce = ciphertext[_HEADER.size + _KEY_LEN : prefix]
        try:
            shared = private.exchange(X25519PublicKey.from_public_bytes(ephemeral_pub))
            key = _derive_key(shared, ephemeral_pub, _raw_public(private.public_key()))
            return AESGCM(key).decrypt(nonce, ciphertext[prefix:], context or b"")
        except (InvalidTag, ValueError) as e:
            raise DecryptionError() from e
