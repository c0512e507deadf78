"""Skill identities and manifests."""

from vett.skills.identity import (
    DEFAULT_REGISTRY_HOSTS,
    GIT_HOSTS,
    SkillIdentity,
    SkillRef,
    parse_skill_ref,
    parse_source,
    registrable_domain,
)
from vett.skills.manifest import (
    ManifestFile,
    SkillManifest,
    parse_manifest,
    replace_skill_directory,
    write_manifest_files,
)

__all__ = [
    "DEFAULT_REGISTRY_HOSTS",
    "GIT_HOSTS",
    "ManifestFile",
    "SkillIdentity",
    "SkillManifest",
    "SkillRef",
    "parse_manifest",
    "parse_skill_ref",
    "parse_source",
    "registrable_domain",
    "replace_skill_directory",
    "write_manifest_files",
]
