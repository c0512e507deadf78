"""Tests for the config/index state store."""

import json
import os
import time
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from vett.errors import LockTimeoutError
from vett.storage.state import InstalledSkill, StateStore, file_lock, write_atomic

pytestmark = pytest.mark.unit


def make_skill(name: str = "hello", owner: str = "acme", repo: str | None = "tools", **kwargs) -> InstalledSkill:
    return InstalledSkill(
        owner=owner,
        repo=repo,
        name=name,
        version=kwargs.pop("version", "1.0.0"),
        canonical_path=kwargs.pop("canonical_path", f"/tmp/skills/{owner}/{name}"),
        **kwargs,
    )


class TestFileLock:
    """Tests for the lock-file primitive."""

    def test_acquire_and_release(self, temp_dir: Path) -> None:
        lock = temp_dir / "index.json.lock"
        with file_lock(lock):
            assert lock.exists()
            assert lock.read_text() == str(os.getpid())
        assert not lock.exists()

    def test_released_on_error(self, temp_dir: Path) -> None:
        lock = temp_dir / "index.json.lock"
        with pytest.raises(RuntimeError):
            with file_lock(lock):
                raise RuntimeError("boom")
        assert not lock.exists()

    def test_timeout(self, temp_dir: Path) -> None:
        lock = temp_dir / "index.json.lock"
        lock.write_text("12345")

        with pytest.raises(LockTimeoutError) as exc_info:
            with file_lock(lock, timeout=0.05, retry_interval=0.01):
                pass

        assert exc_info.value.lock_path == str(lock)
        assert lock.exists()

    def test_stale_lock_taken_over(self, temp_dir: Path) -> None:
        lock = temp_dir / "index.json.lock"
        lock.write_text("12345")
        old = time.time() - 60
        os.utime(lock, (old, old))

        with file_lock(lock, timeout=0.05, stale_after=10.0):
            assert lock.read_text() == str(os.getpid())
        assert not lock.exists()


class TestWriteAtomic:
    def test_writes_and_leaves_no_temp_files(self, temp_dir: Path) -> None:
        target = temp_dir / "nested" / "index.json"
        write_atomic(target, "one")
        write_atomic(target, "two")

        assert target.read_text() == "two"
        assert os.listdir(target.parent) == ["index.json"]

    def test_failed_write_keeps_original(self, temp_dir: Path) -> None:
        target = temp_dir / "index.json"
        target.write_text("original")

        with patch("vett.storage.state.os.replace", side_effect=OSError("rename failed")):
            with pytest.raises(OSError):
                write_atomic(target, "new")

        assert target.read_text() == "original"
        assert os.listdir(temp_dir) == ["index.json"]


class TestInstalledSkill:
    def test_dedupes_agents(self) -> None:
        assert make_skill(agents=["cursor", "cursor", "claude-code"]).agents == ["cursor", "claude-code"]

    def test_ref(self) -> None:
        assert make_skill().ref == "acme/tools/hello"
        assert make_skill(repo=None).ref == "acme/hello"

    def test_accepts_legacy_path_key(self) -> None:
        skill = InstalledSkill.model_validate(
            {"owner": "acme", "repo": "tools", "name": "hello", "version": "1", "path": "/x"}
        )
        assert skill.canonical_path == "/x"

    def test_rejects_unsafe_segments(self) -> None:
        with pytest.raises(ValueError):
            make_skill(name="../evil")


class TestConfig:
    """Tests for config.yaml handling."""

    def test_creates_default_config(self, store: StateStore, vett_home: Path) -> None:
        config = store.load_config()

        assert config.install_dir == str(vett_home / "skills")
        assert config.registry_url == "https://vett.sh"
        assert config.telemetry.enabled is True
        assert len(config.telemetry.device_id) == 36
        assert yaml.safe_load(store.config_path.read_text())["telemetry"]["device_id"] == config.telemetry.device_id

    def test_device_id_is_stable(self, store: StateStore) -> None:
        assert store.load_config().telemetry.device_id == store.load_config().telemetry.device_id

    def test_invalid_device_id_regenerated(self, store: StateStore) -> None:
        store.config_path.write_text(
            yaml.safe_dump({"schema_version": 1, "install_dir": "/skills", "telemetry": {"device_id": "nope"}})
        )

        config = store.load_config()

        assert config.telemetry.device_id != "nope"
        assert len(config.telemetry.device_id) == 36
        assert config.install_dir == "/skills"

    def test_camel_case_keys_accepted(self, store: StateStore) -> None:
        store.config_path.write_text(
            yaml.safe_dump(
                {
                    "schemaVersion": 1,
                    "installDir": "/opt/skills",
                    "registryUrl": "https://registry.example/",
                    "telemetry": {"enabled": False},
                }
            )
        )

        config = store.load_config()

        assert config.install_dir == "/opt/skills"
        assert config.registry_url == "https://registry.example"
        assert config.telemetry.enabled is False

    def test_corrupt_config_falls_back_to_defaults(self, store: StateStore, vett_home: Path) -> None:
        store.config_path.write_text("{ not: yaml: at all")
        assert store.load_config().install_dir == str(vett_home / "skills")

    def test_save_config_round_trip(self, store: StateStore) -> None:
        config = store.load_config()
        config.telemetry.enabled = False
        store.save_config(config)

        assert store.load_config().telemetry.enabled is False


class TestLegacyMigration:
    """Tests for moving installed skills out of config.yaml."""

    def _write_legacy(self, store: StateStore) -> None:
        store.config_path.write_text(
            yaml.safe_dump(
                {
                    "schema_version": 1,
                    "install_dir": "/skills",
                    "installed_skills": [
                        {"owner": "acme", "repo": "tools", "name": "hello", "version": "1.0.0", "path": "/skills/h"},
                        {"owner": "../bad", "name": "x", "version": "1", "path": "/x"},
                    ],
                }
            )
        )

    def test_load_index_migrates(self, store: StateStore) -> None:
        self._write_legacy(store)

        skills = store.list_installed()

        assert [s.ref for s in skills] == ["acme/tools/hello"]
        assert store.index_path.exists()
        assert "installed_skills" not in yaml.safe_load(store.config_path.read_text())

    def test_load_config_migrates(self, store: StateStore) -> None:
        self._write_legacy(store)

        store.load_config()

        raw = json.loads(store.index_path.read_text())
        assert raw["schema_version"] == 1
        assert raw["installed_skills"][0]["canonical_path"] == "/skills/h"

    def test_existing_index_wins(self, store: StateStore) -> None:
        store.add_installed_skill(make_skill(name="current"))
        self._write_legacy(store)

        store.load_config()

        assert [s.name for s in store.list_installed()] == ["current"]


class TestIndex:
    """Tests for install index operations."""

    def test_empty(self, store: StateStore) -> None:
        assert store.list_installed() == []
        assert not store.index_path.exists()

    def test_add_replaces_same_identity(self, store: StateStore) -> None:
        store.add_installed_skill(make_skill(version="1.0.0"))
        store.add_installed_skill(make_skill(name="other"))
        store.add_installed_skill(make_skill(version="2.0.0"))

        skills = store.list_installed()
        assert [(s.name, s.version) for s in skills] == [("hello", "2.0.0"), ("other", "1.0.0")]

    def test_remove(self, store: StateStore) -> None:
        store.add_installed_skill(make_skill())
        store.add_installed_skill(make_skill(repo=None))

        store.remove_installed_skill("acme", "tools", "hello")

        assert [s.ref for s in store.list_installed()] == ["acme/hello"]

    def test_get(self, store: StateStore) -> None:
        store.add_installed_skill(make_skill())
        assert store.get_installed_skill("acme", "tools", "hello").version == "1.0.0"
        assert store.get_installed_skill("acme", None, "hello") is None

    def test_malformed_entries_skipped(self, store: StateStore) -> None:
        store.index_path.write_text(
            json.dumps(
                {
                    "schema_version": 1,
                    "installed_skills": [
                        {"owner": "acme", "repo": "tools", "name": "ok", "version": "1", "canonicalPath": "/a"},
                        {"owner": "acme", "name": "missing-version", "canonicalPath": "/b"},
                        "garbage",
                    ],
                }
            )
        )
        assert [s.name for s in store.list_installed()] == ["ok"]

    def test_corrupt_index_reads_empty(self, store: StateStore) -> None:
        store.index_path.write_text("{")
        assert store.list_installed() == []

    def test_update_index_reloads(self, store: StateStore) -> None:
        store.add_installed_skill(make_skill())
        other = StateStore(store.home)
        other.add_installed_skill(make_skill(name="second"))

        store.update_index(lambda index: index.installed_skills.reverse())

        assert [s.name for s in store.list_installed()] == ["second", "hello"]


class TestFindInstalled:
    """Tests for find_installed."""

    @pytest.fixture(autouse=True)
    def _populate(self, store: StateStore) -> None:
        store.add_installed_skill(make_skill(owner="acme", repo="tools", name="lint"))
        store.add_installed_skill(make_skill(owner="other", repo="kit", name="lint"))
        store.add_installed_skill(make_skill(owner="solo", repo=None, name="notes"))

    def test_full_ref(self, store: StateStore) -> None:
        result = store.find_installed("acme/tools/lint")
        assert result.status == "found"
        assert result.skill.owner == "acme"

    def test_owner_name_for_repo_less_skill(self, store: StateStore) -> None:
        assert store.find_installed("solo/notes").status == "found"

    def test_stored_slug(self, store: StateStore) -> None:
        store.add_installed_skill(make_skill(owner="pub", repo="docs", name="guide", slug="pub/docs-guide"))

        result = store.find_installed("pub/docs-guide")

        assert result.status == "found"
        assert result.skill.name == "guide"

    def test_bare_name_case_insensitive(self, store: StateStore) -> None:
        assert store.find_installed("NOTES").skill.name == "notes"

    def test_ambiguous(self, store: StateStore) -> None:
        result = store.find_installed("lint")
        assert result.status == "ambiguous"
        assert {m.owner for m in result.matches} == {"acme", "other"}

    @pytest.mark.parametrize("ref", ["missing", "acme/tools/nope", "a/b/c/d", "acme//lint", ""])
    def test_not_found(self, store: StateStore, ref: str) -> None:
        assert store.find_installed(ref).status == "not_found"
