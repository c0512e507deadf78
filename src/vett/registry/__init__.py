"""Registry client and response validation."""

from vett.registry.client import RegistryClient, parse_retry_after, poll_interval
from vett.registry.schemas import (
    ApiJob,
    ApiSkill,
    ApiSkillDetail,
    ApiSkillVersion,
    ApiSkillWithLatestVersion,
    ResolveNotFound,
    ResolveProcessing,
    ResolveReady,
    ResolveResult,
    SigningKey,
    assert_https_url,
    validate_resolve_response,
    validate_skill_detail,
    validate_skills_list,
)

__all__ = [
    "ApiJob",
    "ApiSkill",
    "ApiSkillDetail",
    "ApiSkillVersion",
    "ApiSkillWithLatestVersion",
    "RegistryClient",
    "ResolveNotFound",
    "ResolveProcessing",
    "ResolveReady",
    "ResolveResult",
    "SigningKey",
    "assert_https_url",
    "parse_retry_after",
    "poll_interval",
    "validate_resolve_response",
    "validate_skill_detail",
    "validate_skills_list",
]
