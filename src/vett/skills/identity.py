"""Identity Resolver.

Normalizes heterogeneous skill sources into one canonical ``SkillIdentity``:

- git-host URLs (``https://github.com/acme/tools/tree/main/skills/hello``)
- SSH remotes (``git@github.com:acme/tools.git``)
- bare refs (``acme/tools/hello``)
- registry URLs (``https://clawhub.ai/publisher/slug`` or ``?slug=...&tag=...``)
- arbitrary HTTP URLs (``https://docs.example.com/guides/skill.md``)

Every identity field is lowercased and checked with ``is_path_safe`` before an
identity is returned, so identities can later be used to build store paths.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from posixpath import splitext
from urllib.parse import parse_qs, unquote, urlsplit

import tldextract

from vett.errors import InvalidSourceError
from vett.safety.paths import is_path_safe, is_safe_relative_path

logger = logging.getLogger(__name__)

GIT_HOSTS: tuple[str, ...] = ("github.com", "gitlab.com")
DEFAULT_GIT_HOST = "github.com"
DEFAULT_REGISTRY_HOSTS: tuple[str, ...] = ("clawhub.ai", "clawdhub.com")

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
_SSH_RE = re.compile(r"^[\w.-]+@([^:/\s]+):(?!//)(.+)$", re.ASCII)
_SHORTHAND_RE = re.compile(r"^[\w-]+/[\w-]+", re.ASCII)
_SKILL_REF_RE = re.compile(
    r"^([A-Za-z0-9_-]+)/([A-Za-z0-9_-]+)/([A-Za-z0-9_-]+)(?:@([A-Za-z0-9._-]+))?$"
)
_WELL_KNOWN_PREFIX = [".well-known", "skills"]


@dataclass(frozen=True)
class SkillIdentity:
    """Canonical identity of a skill.

    Attributes:
        host: Normalized host (lowercase, no ``www.``)
        owner: Owning namespace; registrable domain for generic HTTP hosts,
            the registry's own domain for registry URLs
        repo: Repository or collection name, if any
        skill: Skill name within the repository, if any
        path: Case-preserved path inside the repository, for fetching
        ref: Branch, tag or commit, case-preserved
        id: ``host/owner/[repo]/[skill]``, lowercase, stable dictionary key
        publisher: Registry publisher, kept apart from the identity owner
        source_url: The string the identity was parsed from
    """

    host: str
    owner: str
    id: str
    repo: str | None = None
    skill: str | None = None
    path: str | None = None
    ref: str | None = None
    publisher: str | None = None
    source_url: str = ""

    @property
    def commit_sha(self) -> str | None:
        """The ref, if it is a full 40-character commit SHA."""
        if self.ref and re.fullmatch(r"[0-9a-fA-F]{40}", self.ref):
            return self.ref.lower()
        return None


@dataclass(frozen=True)
class SkillRef:
    """A registry reference of the form ``owner/repo/name[@version]``."""

    owner: str
    repo: str
    name: str
    version: str | None = None

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}/{self.name}"


def parse_skill_ref(value: str) -> SkillRef | None:
    """Parse ``owner/repo/name[@version]``; return None for anything else."""
    if not isinstance(value, str):
        return None
    match = _SKILL_REF_RE.fullmatch(value.strip())
    if not match:
        return None
    owner, repo, name, version = match.groups()
    return SkillRef(owner=owner, repo=repo, name=name, version=version)


@lru_cache(maxsize=1)
def _domain_extractor() -> tldextract.TLDExtract:
    # Bundled public suffix snapshot, private section included so hosting
    # platforms such as github.io and vercel.app stay separate registrants.
    return tldextract.TLDExtract(suffix_list_urls=(), include_psl_private_domains=True)


def registrable_domain(host: str) -> str:
    """Return the public-suffix-aware registrable domain of ``host``.

    ``docs.cdp.example.com`` becomes ``example.com``; ``foo.github.io`` stays
    ``foo.github.io``. Hosts without a known suffix (``localhost``, IPs) are
    returned unchanged.
    """
    extracted = _domain_extractor()(host)
    if extracted.domain and extracted.suffix:
        return f"{extracted.domain}.{extracted.suffix}"
    return host


def parse_source(
    raw: str,
    *,
    registry_hosts: tuple[str, ...] | list[str] = DEFAULT_REGISTRY_HOSTS,
    git_hosts: tuple[str, ...] | list[str] = GIT_HOSTS,
) -> SkillIdentity:
    """Parse a source string into a canonical ``SkillIdentity``.

    Args:
        raw: URL, SSH remote or ``owner/repo[/skill]`` shorthand
        registry_hosts: Hosts served by a skill registry
        git_hosts: Hosts using ``owner/repo/tree/<ref>/...`` paths

    Returns:
        The resolved identity

    Raises:
        InvalidSourceError: If the source cannot be parsed or any produced
            field fails the safe-segment check
    """
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidSourceError("Invalid skill source: empty")

    git_hosts = tuple(h.lower() for h in git_hosts)
    registry_hosts = tuple(_normalize_host(h) for h in registry_hosts)

    normalized = raw.strip()
    if not _SCHEME_RE.match(normalized):
        ssh = _SSH_RE.match(normalized)
        if ssh:
            normalized = f"https://{ssh.group(1)}/{ssh.group(2)}"
        else:
            normalized = _infer_scheme(normalized, git_hosts)

    try:
        parts = urlsplit(normalized)
        hostname = parts.hostname
    except ValueError as e:
        raise InvalidSourceError("Invalid skill source: not a URL") from e

    if parts.scheme.lower() not in ("http", "https") or not hostname:
        raise InvalidSourceError("Invalid skill source: not a URL")

    host = _normalize_host(hostname)
    path_parts = [unquote(p) for p in parts.path.split("/") if p]

    if host in git_hosts:
        identity = _parse_git_host(host, path_parts)
    elif host in registry_hosts:
        identity = _parse_registry(host, path_parts, parts.query)
    else:
        identity = _parse_http(host, path_parts, directory_only=parts.path.endswith("/"))

    return _finalize(identity, raw)


def _infer_scheme(value: str, git_hosts: tuple[str, ...]) -> str:
    lowered = value.lower()
    for host in git_hosts:
        if lowered == host or lowered.startswith(host + "/"):
            return f"https://{value}"
    if _SHORTHAND_RE.match(value):
        return f"https://{DEFAULT_GIT_HOST}/{value}"
    return f"https://{value}"


def _normalize_host(host: str) -> str:
    host = host.strip().lower().rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    return host


def _parse_git_host(host: str, path_parts: list[str]) -> dict:
    if len(path_parts) < 2:
        raise InvalidSourceError(f"Invalid {host} source: need at least owner/repo")

    owner = path_parts[0]
    repo = re.sub(r"\.git$", "", path_parts[1], flags=re.IGNORECASE)

    rest = path_parts[2:]
    # GitLab separates repository routes with a "-" segment.
    if rest and rest[0] == "-":
        rest = rest[1:]

    ref: str | None = None
    if rest and rest[0] in ("tree", "blob"):
        ref = rest[1] if len(rest) > 1 else None
        sub_path = rest[2:]
    else:
        sub_path = rest

    return {
        "host": host,
        "owner": owner,
        "repo": repo,
        "skill": _skill_from_repo_path(sub_path),
        "path": "/".join(sub_path) or None,
        "ref": ref,
    }


def _skill_from_repo_path(sub_path: list[str]) -> str | None:
    parts = [p.lower() for p in sub_path]
    if not parts:
        return None

    if parts[-1] == "skill.md":
        parts = parts[:-1]
    elif parts[-1].endswith(".md"):
        parts[-1] = parts[-1][: -len(".md")]

    # Skills conventionally live under a top-level skills/ folder.
    if len(parts) > 1 and parts[0] == "skills":
        parts = parts[1:]

    return "-".join(p for p in parts if p) or None


def _parse_registry(host: str, path_parts: list[str], query: str) -> dict:
    params = parse_qs(query)
    publisher: str | None = None
    tag: str | None = None

    if params.get("slug"):
        slug = params["slug"][0]
        tag = params["tag"][0] if params.get("tag") else None
    elif len(path_parts) == 2:
        publisher, slug = path_parts
    else:
        raise InvalidSourceError(f"Invalid {host} source: expected publisher/slug")

    return {
        "host": host,
        "owner": host,
        "repo": None,
        "skill": slug,
        "ref": tag,
        "publisher": publisher,
    }


def _parse_http(host: str, path_parts: list[str], directory_only: bool) -> dict:
    owner = registrable_domain(host)
    label = owner.split(".")[0]

    parts = [p.lower() for p in path_parts]
    if parts[: len(_WELL_KNOWN_PREFIX)] == _WELL_KNOWN_PREFIX:
        parts = parts[len(_WELL_KNOWN_PREFIX) :]

    if directory_only or not parts:
        directories = parts
        skill = label
    else:
        directories = parts[:-1]
        stem = splitext(parts[-1])[0] or parts[-1]
        if stem == "skill":
            # skill.md convention: the containing directory names the skill.
            skill = directories[-1] if directories else label
        else:
            skill = stem

    return {
        "host": host,
        "owner": owner,
        "repo": "-".join(directories) if directories else label,
        "skill": skill,
    }


def _finalize(fields: dict, raw: str) -> SkillIdentity:
    host = fields["host"]
    if not is_path_safe(host):
        raise InvalidSourceError("Invalid skill source: unsafe host")

    identity_values: dict[str, str | None] = {}
    for name in ("owner", "repo", "skill", "publisher"):
        value = fields.get(name)
        if value is None:
            identity_values[name] = None
            continue
        value = value.lower()
        if not is_path_safe(value):
            raise InvalidSourceError(f"Invalid skill source: unsafe {name}")
        identity_values[name] = value

    ref = fields.get("ref")
    if ref is not None and not is_path_safe(ref):
        raise InvalidSourceError("Invalid skill source: unsafe ref")
    path = fields.get("path")
    if path is not None and not is_safe_relative_path(path):
        raise InvalidSourceError("Invalid skill source: unsafe path")

    owner = identity_values["owner"]
    if owner is None:
        raise InvalidSourceError("Invalid skill source: missing owner")

    id_parts = [host, owner]
    for name in ("repo", "skill"):
        if identity_values[name]:
            id_parts.append(identity_values[name])

    return SkillIdentity(
        host=host,
        owner=owner,
        repo=identity_values["repo"],
        skill=identity_values["skill"],
        path=path,
        ref=ref,
        publisher=identity_values["publisher"],
        id="/".join(id_parts),
        source_url=raw,
    )
