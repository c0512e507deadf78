"""Tests for skill source parsing and canonical identities."""

import pytest

from vett.errors import InvalidSourceError
from vett.skills.identity import (
    SkillRef,
    parse_skill_ref,
    parse_source,
    registrable_domain,
)

pytestmark = pytest.mark.unit


class TestGitHostSources:
    """Tests for GitHub and GitLab URLs."""

    def test_tree_url(self) -> None:
        identity = parse_source("https://github.com/acme/tools/tree/main/skills/hello")

        assert identity.host == "github.com"
        assert identity.owner == "acme"
        assert identity.repo == "tools"
        assert identity.skill == "hello"
        assert identity.ref == "main"
        assert identity.path == "skills/hello"
        assert identity.id == "github.com/acme/tools/hello"

    def test_ssh_remote(self) -> None:
        identity = parse_source("git@github.com:acme/tools.git")

        assert identity.owner == "acme"
        assert identity.repo == "tools"
        assert identity.skill is None
        assert identity.id == "github.com/acme/tools"

    def test_shorthand_defaults_to_github(self) -> None:
        identity = parse_source("acme/tools/hello")

        assert identity.host == "github.com"
        assert identity.id == "github.com/acme/tools/hello"

    def test_identity_fields_lowercased_ref_and_path_preserved(self) -> None:
        identity = parse_source("https://GitHub.com/Acme/Tools/tree/Main/Skills/Hello")

        assert identity.id == "github.com/acme/tools/hello"
        assert identity.ref == "Main"
        assert identity.path == "Skills/Hello"

    def test_www_prefix_is_dropped(self) -> None:
        assert parse_source("https://www.github.com/acme/tools").host == "github.com"

    def test_gitlab_dash_segment(self) -> None:
        identity = parse_source("https://gitlab.com/acme/tools/-/tree/v1/skills/lint")

        assert identity.id == "gitlab.com/acme/tools/lint"
        assert identity.ref == "v1"

    def test_nested_skill_path_is_hyphen_joined(self) -> None:
        identity = parse_source("https://github.com/acme/tools/tree/main/skills/group/hello")

        assert identity.skill == "group-hello"

    def test_skill_md_names_containing_directory(self) -> None:
        identity = parse_source("https://github.com/acme/tools/blob/main/review/SKILL.md")

        assert identity.skill == "review"
        assert identity.path == "review/SKILL.md"

    def test_commit_sha(self) -> None:
        sha = "A" * 40
        identity = parse_source(f"https://github.com/acme/tools/tree/{sha}/hello")

        assert identity.commit_sha == "a" * 40
        assert parse_source("acme/tools").commit_sha is None

    def test_source_url_is_kept(self) -> None:
        raw = "git@github.com:acme/tools.git"
        assert parse_source(raw).source_url == raw


class TestHttpSources:
    """Tests for arbitrary HTTP hosts."""

    def test_skill_md_under_directory(self) -> None:
        identity = parse_source("https://docs.example.com/guides/skill.md")

        assert identity.host == "docs.example.com"
        assert identity.owner == "example.com"
        assert identity.repo == "guides"
        assert identity.skill == "guides"
        assert identity.id == "docs.example.com/example.com/guides/guides"

    def test_hosting_platform_subdomain_not_collapsed(self) -> None:
        identity = parse_source("https://foo.github.io/my-skill.md")

        assert identity.owner == "foo.github.io"
        assert identity.repo == "foo"
        assert identity.skill == "my-skill"

    def test_trailing_slash_is_directory_only(self) -> None:
        identity = parse_source("https://example.com/a/b/")

        assert identity.repo == "a-b"
        assert identity.skill == "example"

    def test_well_known_prefix_is_stripped(self) -> None:
        identity = parse_source("https://example.com/.well-known/skills/deploy.md")

        assert identity.repo == "example"
        assert identity.skill == "deploy"


class TestRegistrySources:
    """Tests for registry URLs."""

    def test_publisher_slug_path(self) -> None:
        identity = parse_source("https://clawhub.ai/Alice/weather")

        assert identity.owner == "clawhub.ai"
        assert identity.publisher == "alice"
        assert identity.skill == "weather"
        assert identity.repo is None
        assert identity.id == "clawhub.ai/clawhub.ai/weather"

    def test_query_form(self) -> None:
        identity = parse_source("https://www.clawdhub.com/?slug=weather&tag=1.0.0")

        assert identity.host == "clawdhub.com"
        assert identity.skill == "weather"
        assert identity.ref == "1.0.0"

    def test_custom_registry_hosts(self) -> None:
        identity = parse_source("https://skills.internal/team/lint", registry_hosts=["skills.internal"])

        assert identity.owner == "skills.internal"
        assert identity.publisher == "team"

    def test_registry_path_needs_two_segments(self) -> None:
        with pytest.raises(InvalidSourceError):
            parse_source("https://clawhub.ai/only")


class TestInvalidSources:
    """Tests for sources that must be refused."""

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "   ",
            "ftp://example.com/skill.md",
            "https://github.com/acme",
            "https://github.com/acme/tools/tree/main/../../etc",
            "https://github.com/acme/to%2Fols",
        ],
    )
    def test_refused(self, raw: str) -> None:
        with pytest.raises(InvalidSourceError):
            parse_source(raw)

    def test_non_string(self) -> None:
        with pytest.raises(InvalidSourceError):
            parse_source(None)  # type: ignore[arg-type]


class TestRegistrableDomain:
    def test_collapses_subdomains(self) -> None:
        assert registrable_domain("docs.cdp.example.com") == "example.com"

    def test_multi_part_suffix(self) -> None:
        assert registrable_domain("shop.example.co.uk") == "example.co.uk"

    def test_unknown_suffix_unchanged(self) -> None:
        assert registrable_domain("localhost") == "localhost"


class TestParseSkillRef:
    def test_with_version(self) -> None:
        ref = parse_skill_ref("acme/tools/hello@1.2.0")

        assert ref == SkillRef(owner="acme", repo="tools", name="hello", version="1.2.0")
        assert ref.slug == "acme/tools/hello"

    def test_without_version(self) -> None:
        ref = parse_skill_ref(" acme/tools/hello ")
        assert ref is not None
        assert ref.version is None

    @pytest.mark.parametrize(
        "value",
        ["acme/tools", "acme/tools/hello/extra", "https://github.com/a/b/c", "a/b/c@", ""],
    )
    def test_rejects(self, value: str) -> None:
        assert parse_skill_ref(value) is None
