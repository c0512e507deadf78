"""
Signature verification for downloaded skill artifacts.

Two modes sit behind :meth:`SignatureVerifier.verify`:

* **bundle** - a transparency-log bundle: an ECDSA P-256 signature over the
  artifact, the public-key hint naming the signing key, and a log entry with
  a Merkle inclusion proof (RFC 6962) anchored in a checkpoint signed by a
  pinned log key.
* **detached** - the registry publishes ``hash``, ``signature`` and
  ``keyId``; the signature covers the raw SHA-256 digest and is checked with
  an Ed25519 key resolved by ``keyId``.

Both modes operate on the artifact bytes exactly as downloaded. A version
with neither is refused.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from vett.errors import (
    MissingSignatureError,
    SignatureInvalidError,
    UnknownSigningKeyError,
)
from vett.registry.schemas import ApiSkillVersion, SigningKey

logger = logging.getLogger(__name__)

# Production signing key. Rotating it requires a client release.
PRODUCTION_KEY_ID = "v1-ecdsa-2025-02-04"
PRODUCTION_PUBLIC_KEY = """-----BEGIN PUBLIC KEY-----
MFkwEwYHKoZIzj0CAQYIKoZIzj0DAQcDQgAEpLgag/JqlL70ydbJb5xZOFANSzdV
TShO8PIRRUhkmIhHkxyBS2KOIkev+jc2xerSjQqRcDGxdrUmRMKuCMtADw==
-----END PUBLIC KEY-----
"""
TRUSTED_BUNDLE_KEYS: Mapping[str, str] = {PRODUCTION_KEY_ID: PRODUCTION_PUBLIC_KEY}

# Public transparency log whose checkpoints anchor bundle inclusion proofs
REKOR_LOG_NAME = "rekor.sigstore.dev"
REKOR_PUBLIC_KEY = """-----BEGIN PUBLIC KEY-----
MFkwEwYHKoZIzj0CAQYIKoZIzj0DAQcDQgAE2G2Y+2tabdTV5BcGiBIx0a9fAFwr
kBbmLSGtks4L3qX6yYY0zufBnhC8Ur/iy55GhWP/9A/bY2LhC30M9+RYtw==
-----END PUBLIC KEY-----
"""
TRUSTED_LOG_KEYS: Mapping[str, str] = {REKOR_LOG_NAME: REKOR_PUBLIC_KEY}

NOTE_SIGNATURE_PREFIX = "\u2014 "


@dataclass(frozen=True)
class SignatureMeta:
    """The registry's signature claim for one skill version."""

    hash: str | None = None
    signature: str | None = None
    key_id: str | None = None
    created_at: datetime | None = None
    bundle: Any = None

    @classmethod
    def from_version(cls, version: ApiSkillVersion) -> SignatureMeta:
        return cls(
            hash=version.hash,
            signature=version.signature,
            key_id=version.signature_key_id,
            created_at=version.signed_at,
            bundle=version.sigstore_bundle,
        )


def load_public_key(material: str | bytes) -> Any:
    """Load a public key from PEM text, base64 PEM/DER, or a base64 raw Ed25519 key.

    Raises:
        SignatureInvalidError: If the material is not a usable public key
    """
    if isinstance(material, str):
        material = material.strip().encode("utf-8")
    try:
        if b"-----BEGIN" not in material:
            material = base64.b64decode(material, validate=True)
        if material.lstrip().startswith(b"-----BEGIN"):
            return serialization.load_pem_public_key(material)
        if len(material) == 32:
            return Ed25519PublicKey.from_public_bytes(material)
        return serialization.load_der_public_key(material)
    except (ValueError, TypeError, binascii.Error, UnsupportedAlgorithm) as e:
        raise SignatureInvalidError("Signing key material could not be loaded") from e


def _b64decode(value: Any) -> bytes:
    if not isinstance(value, str):
        raise ValueError("expected a base64 string")
    return base64.b64decode(value, validate=True)


def verify_detached(data: bytes, meta: SignatureMeta, public_key: Any) -> None:
    """Verify a detached signature over the SHA-256 digest of ``data``.

    Raises:
        SignatureInvalidError: On a hash mismatch or a bad signature
    """
    actual = hashlib.sha256(data).hexdigest()
    if not meta.hash or actual != meta.hash.lower():
        raise SignatureInvalidError("Signature verification failed: content hash mismatch")

    try:
        signature = _b64decode(meta.signature)
        digest = bytes.fromhex(actual)
        if isinstance(public_key, Ed25519PublicKey):
            public_key.verify(signature, digest)
        elif isinstance(public_key, ec.EllipticCurvePublicKey):
            public_key.verify(signature, digest, ec.ECDSA(hashes.SHA256()))
        else:
            raise SignatureInvalidError("Signature verification failed: unsupported key type")
    except (InvalidSignature, ValueError, binascii.Error) as e:
        raise SignatureInvalidError("Signature verification failed: signature does not match") from e


def _leaf_hash(data: bytes) -> bytes:
    return hashlib.sha256(b"\x00" + data).digest()


def _node_hash(left: bytes, right: bytes) -> bytes:
    return hashlib.sha256(b"\x01" + left + right).digest()


def verify_inclusion(
    leaf_hash: bytes,
    index: int,
    tree_size: int,
    proof: list[bytes],
    root_hash: bytes,
) -> bool:
    """Check a Merkle audit path (RFC 6962 / RFC 9162 section 2.1.3.2)."""
    if index < 0 or index >= tree_size:
        return False

    fn, sn = index, tree_size - 1
    r = leaf_hash
    for p in proof:
        if sn == 0:
            return False
        if fn & 1 or fn == sn:
            r = _node_hash(p, r)
            if not fn & 1:
                while not fn & 1 and fn != 0:
                    fn >>= 1
                    sn >>= 1
        else:
            r = _node_hash(r, p)
        fn >>= 1
        sn >>= 1
    return sn == 0 and r == root_hash


def _key_hint(public_key: ec.EllipticCurvePublicKey) -> bytes:
    der = public_key.public_bytes(serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo)
    return hashlib.sha256(der).digest()[:4]


def verify_checkpoint(envelope: str, log_keys: Mapping[str, str] = TRUSTED_LOG_KEYS) -> tuple[int, bytes]:
    """Verify a signed checkpoint note and return its tree size and root hash.

    The note text (origin, tree size, base64 root hash, optional extension
    lines) is followed by a blank line and one or more signature lines of the
    form ``<em dash> <name> <base64(key hint + signature)>``. One of them must
    come from a pinned log key: the name selects the key, the 4-byte hint must
    match the SHA-256 of its DER encoding, and the ECDSA signature must cover
    the note text.

    Raises:
        SignatureInvalidError: If the note is malformed or not signed by a
            trusted log
    """
    text, separator, signature_block = envelope.partition("\n\n")
    if not separator:
        raise SignatureInvalidError("Transparency log checkpoint is not a signed note")
    text += "\n"
    lines = text.split("\n")
    if len(lines) < 4:
        raise SignatureInvalidError("Transparency log checkpoint is malformed")
    tree_size = int(lines[1])
    root_hash = _b64decode(lines[2])

    for line in signature_block.split("\n"):
        if not line.startswith(NOTE_SIGNATURE_PREFIX):
            continue
        name, _, encoded = line[len(NOTE_SIGNATURE_PREFIX):].rpartition(" ")
        material = log_keys.get(name)
        if material is None:
            continue
        public_key = load_public_key(material)
        if not isinstance(public_key, ec.EllipticCurvePublicKey):
            continue
        raw = _b64decode(encoded)
        if raw[:4] != _key_hint(public_key):
            continue
        try:
            public_key.verify(raw[4:], text.encode("utf-8"), ec.ECDSA(hashes.SHA256()))
        except InvalidSignature as e:
            raise SignatureInvalidError("Transparency log checkpoint signature is invalid") from e
        return tree_size, root_hash

    raise SignatureInvalidError("Transparency log checkpoint is not signed by a trusted log")


def _verify_tlog_entry(
    entry: Mapping[str, Any],
    digest: bytes,
    signature: bytes,
    log_keys: Mapping[str, str],
) -> None:
    body_bytes = _b64decode(entry["canonicalizedBody"])
    body = json.loads(body_bytes)
    spec = body["spec"]
    if spec["data"]["hash"]["value"].lower() != digest.hex():
        raise SignatureInvalidError("Transparency log entry does not match the artifact digest")
    if _b64decode(spec["signature"]["content"]) != signature:
        raise SignatureInvalidError("Transparency log entry does not match the bundle signature")

    proof = entry["inclusionProof"]
    index = int(proof["logIndex"])
    tree_size = int(proof["treeSize"])
    root_hash = _b64decode(proof["rootHash"])
    path = [_b64decode(h) for h in proof.get("hashes", [])]

    envelope = (proof.get("checkpoint") or {}).get("envelope")
    if not envelope:
        raise SignatureInvalidError("Transparency log entry has no signed checkpoint")
    checkpoint_size, checkpoint_root = verify_checkpoint(envelope, log_keys)
    if checkpoint_size != tree_size or checkpoint_root != root_hash:
        raise SignatureInvalidError("Transparency log checkpoint does not match the inclusion proof")

    if not verify_inclusion(_leaf_hash(body_bytes), index, tree_size, path, root_hash):
        raise SignatureInvalidError("Transparency log inclusion proof is invalid")


def verify_bundle(
    data: bytes,
    bundle: Any,
    trusted_keys: Mapping[str, str] = TRUSTED_BUNDLE_KEYS,
    log_keys: Mapping[str, str] = TRUSTED_LOG_KEYS,
) -> None:
    """Verify a transparency-log bundle against the artifact bytes.

    Args:
        data: Artifact bytes exactly as downloaded
        bundle: The bundle, as a mapping or its JSON serialization
        trusted_keys: Key hint to PEM public key
        log_keys: Log name to PEM public key for checkpoint signatures

    Raises:
        UnknownSigningKeyError: If the bundle's key hint is not trusted
        SignatureInvalidError: If any part of the bundle fails to verify
    """
    try:
        if isinstance(bundle, (str, bytes)):
            bundle = json.loads(bundle)
        material = bundle["verificationMaterial"]
        hint = material["publicKey"]["hint"]
        message = bundle["messageSignature"]
        claimed_digest = _b64decode(message["messageDigest"]["digest"])
        signature = _b64decode(message["signature"])
        entries = material.get("tlogEntries") or []
    except (KeyError, TypeError, ValueError, binascii.Error) as e:
        raise SignatureInvalidError("Transparency-log bundle is malformed") from e

    if hint not in trusted_keys:
        expected = ", ".join(trusted_keys) or None
        raise UnknownSigningKeyError(str(hint), expected)

    digest = hashlib.sha256(data).digest()
    if claimed_digest != digest:
        raise SignatureInvalidError("Signature verification failed: content hash mismatch")

    public_key = load_public_key(trusted_keys[hint])
    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        raise SignatureInvalidError("Signature verification failed: unsupported key type")
    try:
        public_key.verify(signature, data, ec.ECDSA(hashes.SHA256()))
    except InvalidSignature as e:
        raise SignatureInvalidError("Signature verification failed: signature does not match") from e

    if not entries:
        raise SignatureInvalidError("Transparency-log bundle has no log entries")
    try:
        for entry in entries:
            _verify_tlog_entry(entry, digest, signature, log_keys)
    except (KeyError, TypeError, ValueError, binascii.Error, AttributeError) as e:
        raise SignatureInvalidError("Transparency log entry is malformed") from e


class SignatureVerifier:
    """Verifies skill artifacts before anything is written to disk.

    Args:
        key_source: Coroutine returning the registry's published signing keys
        key_override: ``(key_id, key_material)`` taken from the environment
        trusted_bundle_keys: Key hints accepted in bundle mode
        trusted_log_keys: Transparency logs whose signed checkpoints are accepted
    """

    def __init__(
        self,
        key_source: Callable[[], Awaitable[list[SigningKey]]] | None = None,
        key_override: tuple[str, str] | None = None,
        trusted_bundle_keys: Mapping[str, str] = TRUSTED_BUNDLE_KEYS,
        trusted_log_keys: Mapping[str, str] = TRUSTED_LOG_KEYS,
    ) -> None:
        self.key_source = key_source
        self.key_override = key_override
        self.trusted_bundle_keys = trusted_bundle_keys
        self.trusted_log_keys = trusted_log_keys
        self._registry_keys: dict[str, str] | None = None

    async def resolve_key(self, key_id: str) -> Any:
        """Find the public key for ``key_id``: env override first, then the registry.

        Raises:
            UnknownSigningKeyError: If no source knows the key id
        """
        if self.key_override and self.key_override[0] == key_id:
            return load_public_key(self.key_override[1])

        if self._registry_keys is None and self.key_source is not None:
            keys = await self.key_source()
            self._registry_keys = {k.key_id: k.public_key for k in keys}

        material = (self._registry_keys or {}).get(key_id)
        if material is None:
            raise UnknownSigningKeyError(key_id)
        return load_public_key(material)

    async def verify(self, data: bytes, meta: SignatureMeta) -> str:
        """Verify ``data`` against the version's signature claim.

        Args:
            data: Artifact bytes exactly as downloaded, never re-serialized
            meta: Signature claim from the registry

        Returns:
            The mode used, ``"bundle"`` or ``"detached"``

        Raises:
            MissingSignatureError: If the version carries no signature material
            UnknownSigningKeyError: If the signing key is not known
            SignatureInvalidError: If verification fails
        """
        if meta.bundle:
            verify_bundle(data, meta.bundle, self.trusted_bundle_keys, self.trusted_log_keys)
            logger.debug("Verified transparency-log bundle")
            return "bundle"

        if not (meta.hash and meta.signature and meta.key_id):
            raise MissingSignatureError(
                "No signature found: this skill version is unsigned and will not be installed"
            )

        public_key = await self.resolve_key(meta.key_id)
        verify_detached(data, meta, public_key)
        logger.debug(f"Verified detached signature (key {meta.key_id})")
        return "detached"
