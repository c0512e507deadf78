"""Exception hierarchy for vett.

Security-perimeter and signature errors are never retried automatically.
Messages never echo attacker-controlled values (paths, URLs, response bodies).
"""

from __future__ import annotations


class VettError(Exception):
    """Base class for all vett errors."""


class InvalidSourceError(VettError):
    """A skill source string could not be resolved to an identity."""


class PathTraversalError(VettError):
    """A candidate path escapes its base directory."""

    def __init__(self, message: str = "Path traversal detected: path escapes base directory"):
        super().__init__(message)


class SymlinkTraversalError(VettError):
    """An existing path component inside an install tree is a symlink."""

    def __init__(self, path: str):
        self.path = path
        super().__init__("Symlink traversal detected: refusing to write through a symlink")


class InvalidResponseError(VettError):
    """A registry payload failed validation.

    Only field paths are reported, never field values.
    """

    def __init__(self, fields: list[str] | None = None):
        self.fields = fields or []
        if self.fields:
            message = (
                "Registry returned an invalid response "
                f"(invalid fields: {', '.join(self.fields)})."
            )
        else:
            message = "Registry returned an invalid response."
        super().__init__(message)


class InvalidManifestError(VettError):
    """A downloaded skill manifest failed structural or size validation."""


class InsecureUrlError(VettError):
    """A download URL is malformed or does not use https."""


class SignatureError(VettError):
    """Base class for signature verification failures. Install is refused."""


class SignatureInvalidError(SignatureError):
    """The signature, hash or transparency-log proof does not verify."""


class MissingSignatureError(SignatureError):
    """The skill version carries no signature material."""


class UnknownSigningKeyError(SignatureError):
    """The signature refers to a key this client does not know."""

    def __init__(self, key_id: str, expected: str | None = None):
        self.key_id = key_id
        self.expected = expected
        # key_id comes from the registry or bundle and stays out of the message
        message = "Signature refers to an unknown signing key."
        if expected:
            message += f" Expected: {expected!r}."
        message += " This may indicate a key rotation - try updating the vett CLI."
        super().__init__(message)


class LockTimeoutError(VettError):
    """Timed out waiting for a state-store lock file."""

    def __init__(self, lock_path: str, timeout: float):
        self.lock_path = lock_path
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:.1f}s waiting for lock: {lock_path}")


class RegistryError(VettError):
    """The registry returned an error response."""

    def __init__(self, message: str, status: int = 0):
        self.status = status
        super().__init__(message)


class RateLimitedError(RegistryError):
    """The registry asked us to back off. The caller decides when to retry."""

    def __init__(self, retry_after: float | None, status: int = 429):
        self.retry_after = retry_after
        if retry_after is not None:
            message = f"Rate limit exceeded. Please wait {int(retry_after)} seconds and try again."
        else:
            message = "Rate limit exceeded. Please wait and try again."
        super().__init__(message, status=status)


class UpgradeRequiredError(RegistryError):
    """The client is below the registry's minimum supported version."""

    def __init__(self, min_version: str | None, current_version: str | None, status: int = 426):
        self.min_version = min_version
        self.current_version = current_version
        if min_version:
            message = f"This version of vett is no longer supported. Upgrade to {min_version} or newer"
            if current_version:
                message += f" (current: {current_version})"
            message += "."
        else:
            message = "This version of vett is no longer supported. Please upgrade."
        super().__init__(message, status=status)


class JobTimeoutError(VettError):
    """A registry analysis job did not finish in time. Safe to retry later."""

    retryable = True

    def __init__(self, job_id: str, timeout: float):
        self.job_id = job_id
        self.timeout = timeout
        super().__init__(
            f"Analysis job {job_id} did not finish within {int(timeout)}s; "
            "it may still complete - try again shortly."
        )


class SkillNotFoundError(VettError):
    """The registry has no such skill or version."""


class AlreadyInstalledError(VettError):
    """The skill is already installed and replacing it was not requested."""

    def __init__(self, ref: str, version: str):
        self.ref = ref
        self.version = version
        super().__init__(f"{ref} is already installed ({version}). Use --force to replace it.")


class RiskRefusedError(VettError):
    """The registry's analysis rates the skill too risky to install."""

    def __init__(self, risk: str, message: str):
        self.risk = risk
        super().__init__(message)
