"""Artifact signature verification."""

from vett.signing.verifier import (
    PRODUCTION_KEY_ID,
    TRUSTED_BUNDLE_KEYS,
    TRUSTED_LOG_KEYS,
    SignatureMeta,
    SignatureVerifier,
    load_public_key,
    verify_bundle,
    verify_checkpoint,
    verify_detached,
    verify_inclusion,
)

__all__ = [
    "PRODUCTION_KEY_ID",
    "TRUSTED_BUNDLE_KEYS",
    "TRUSTED_LOG_KEYS",
    "SignatureMeta",
    "SignatureVerifier",
    "load_public_key",
    "verify_bundle",
    "verify_checkpoint",
    "verify_detached",
    "verify_inclusion",
]
