"""
Validation of untrusted registry responses.

The registry is not a trust boundary: its data can be poisoned by third-party
skill submissions. Every owner/repo/name field is re-checked with the same
safe-segment predicate used for local paths before it can reach the
filesystem. Unknown fields are preserved for forward compatibility, and
validation errors name field paths but never echo field values.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, TypeVar
from urllib.parse import urlsplit
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from vett.errors import InsecureUrlError, InvalidResponseError
from vett.safety.paths import is_path_safe

RiskLevel = Literal["none", "low", "medium", "high", "critical"]
ScanStatus = Literal["pending", "analyzing", "completed", "failed"]
M = TypeVar("M", bound=BaseModel)


def _check_segment(v: str) -> str:
    if not is_path_safe(v):
        raise ValueError("must be a safe path segment")
    return v


SafeSegment = Annotated[str, AfterValidator(_check_segment)]


class _RegistryModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class ApiSkill(_RegistryModel):
    """A skill record as served by the registry."""

    slug: str = Field(min_length=1)
    owner: SafeSegment
    repo: SafeSegment | None
    name: SafeSegment

    id: UUID | None = None
    description: str | None = Field(default=None, max_length=1000)
    source_url: str | None = None
    install_count: int = Field(default=0, ge=0)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ApiSkillVersion(_RegistryModel):
    """One published version of a skill, with its signature material."""

    version: str = Field(min_length=1, max_length=50)
    hash: str = Field(min_length=64, max_length=64)
    risk: RiskLevel | None
    analysis: Any = None
    sigstore_bundle: Any = None

    id: UUID | None = None
    skill_id: UUID | None = None
    size: int = Field(default=0, ge=0)
    summary: str | None = None
    git_ref: str | None = Field(default=None, max_length=255)
    commit_sha: str | None = Field(default=None, min_length=40, max_length=40)
    source_url: str | None = None
    source_fingerprint: str | None = Field(default=None, max_length=64)
    artifact_url: str | None = None
    signature: str | None = None
    signature_key_id: str | None = None
    signed_at: datetime | None = None
    analyzed_at: datetime | None = None
    scan_status: ScanStatus = "pending"
    created_at: datetime | None = None


class ApiVersionSummary(_RegistryModel):
    """Lightweight version summary used in search results."""

    version: str = Field(min_length=1, max_length=50)
    risk: RiskLevel | None
    scan_status: ScanStatus = "pending"


class ApiSkillDetail(ApiSkill):
    versions: list[ApiSkillVersion]

    def select_version(self, version: str | None = None) -> ApiSkillVersion | None:
        """Return the requested version, or the newest one when unspecified.

        The registry lists versions newest first.
        """
        if version is None:
            return self.versions[0] if self.versions else None
        for candidate in self.versions:
            if candidate.version == version:
                return candidate
        return None


class ApiSkillWithLatestVersion(ApiSkill):
    latest_version: ApiVersionSummary | None


class ApiPagination(_RegistryModel):
    limit: int = Field(ge=0)
    offset: int = Field(ge=0)
    total: int = Field(ge=0)


class ApiSkillsListResponse(_RegistryModel):
    skills: list[ApiSkillWithLatestVersion]
    pagination: ApiPagination | None = None


class ResolveReady(_RegistryModel):
    """The skill exists and is fresh; full detail is included."""

    status: Literal["ready"]
    skill: ApiSkillDetail


class ResolveProcessing(_RegistryModel):
    """Ingestion has started; poll ``job_id``."""

    status: Literal["processing"]
    job_id: str = Field(min_length=1)
    slug: str | None = Field(default=None, min_length=1)


class ResolveNotFound(_RegistryModel):
    status: Literal["not_found"]
    message: str = "Skill not found"


ResolveResult = ResolveReady | ResolveProcessing | ResolveNotFound

_RESOLVE_VARIANTS: dict[str, type[_RegistryModel]] = {
    "ready": ResolveReady,
    "processing": ResolveProcessing,
    "not_found": ResolveNotFound,
}


class ApiJob(_RegistryModel):
    """Status of a registry ingestion/analysis job."""

    id: str = Field(min_length=1)
    status: Literal["pending", "processing", "complete", "failed"]
    error: str | None = None
    slug: str | None = None

    @property
    def finished(self) -> bool:
        return self.status in ("complete", "failed")


class SigningKey(_RegistryModel):
    key_id: str = Field(min_length=1)
    public_key: str = Field(min_length=1)


class SigningKeysResponse(_RegistryModel):
    keys: list[SigningKey]


def _field_paths(error: ValidationError) -> list[str]:
    paths: list[str] = []
    for issue in error.errors():
        path = ".".join(str(part) for part in issue["loc"])
        if path and path not in paths:
            paths.append(path)
    return paths


def _validate(model: type[M], raw: Any) -> M:
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        # from None: pydantic's own message includes input values
        raise InvalidResponseError(_field_paths(e)) from None


def validate_skill_detail(raw: Any) -> ApiSkillDetail:
    """Validate a skill-detail payload.

    Raises:
        InvalidResponseError: Naming the offending field paths
    """
    return _validate(ApiSkillDetail, raw)


def validate_skills_list(raw: Any) -> list[ApiSkillWithLatestVersion]:
    """Validate a list/search payload and return its skills."""
    return _validate(ApiSkillsListResponse, raw).skills


def validate_resolve_response(raw: Any) -> ResolveResult:
    """Validate a resolve payload into one of its three variants.

    An unrecognised ``status`` is rejected rather than treated as any known
    case.
    """
    status = raw.get("status") if isinstance(raw, dict) else None
    variant = _RESOLVE_VARIANTS.get(status) if isinstance(status, str) else None
    if variant is None:
        raise InvalidResponseError(["status"])
    return _validate(variant, raw)


def validate_job(raw: Any) -> ApiJob:
    return _validate(ApiJob, raw)


def validate_signing_keys(raw: Any) -> list[SigningKey]:
    return _validate(SigningKeysResponse, raw).keys


def assert_https_url(url: str, context: str) -> None:
    """Refuse any download URL that is malformed or not https.

    The URL itself is never included in the error message.

    Raises:
        InsecureUrlError: If the URL cannot be parsed or its scheme is not https
    """
    try:
        parts = urlsplit(url)
        host = parts.hostname
    except (TypeError, ValueError):
        raise InsecureUrlError(f"Invalid {context} URL: could not be parsed") from None
    if not parts.scheme or not host:
        raise InsecureUrlError(f"Invalid {context} URL: missing scheme or host")
    if parts.scheme.lower() != "https":
        raise InsecureUrlError(f"Refusing insecure {context} URL: only https is allowed")
