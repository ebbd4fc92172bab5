"""Tests for the persistent template registry and its backup."""

from __future__ import annotations

from pathlib import Path

import pytest

from trellis.dcf import dump_records
from trellis.definitions import UNCONFIGURED, Registry, Unconfigured
from trellis.errors import (
    DuplicateTemplateName,
    InvalidFieldValue,
    InvalidLocationType,
    InvalidTemplateType,
    NoDefaultTemplate,
    RegistryCorrupted,
    TemplateIndexOutOfRange,
    TemplateNotFound,
)
from trellis.store import RegistryStore, StoreConfig

TWO_DEFAULTS = (
    "template_type: root\n"
    "template_name: beta\n"
    "content_location: local:/t/beta\n"
    "target_dir: .\n"
    "default: TRUE\n"
    "\n"
    "template_type: root\n"
    "template_name: alpha\n"
    "content_location: local:/t/alpha\n"
    "target_dir: .\n"
    "default: TRUE\n"
)


def _registered(store: RegistryStore, *names: str) -> Registry:
    for name in names:
        store.add(f"local:/srv/templates/{name}")
    registry = store.read()
    assert isinstance(registry, Registry)
    return registry


class TestInitialization:
    def test_ensure_initialized_writes_sentinel(self, store: RegistryStore) -> None:
        store.ensure_initialized()
        assert store.primary_path.exists()
        assert store.backup_path.exists()
        assert store.read() is UNCONFIGURED

    def test_ensure_initialized_idempotent(self, store: RegistryStore) -> None:
        store.ensure_initialized()
        store.add("local:/srv/templates/a")
        before = store.primary_path.read_text()
        store.ensure_initialized()
        assert store.primary_path.read_text() == before

    def test_read_on_fresh_store_is_unconfigured(self, store: RegistryStore) -> None:
        assert store.read() is UNCONFIGURED

    def test_legacy_null_marker(self, store: RegistryStore) -> None:
        store.primary_path.parent.mkdir(parents=True)
        store.primary_path.write_text("content_location: NULL\n")
        assert isinstance(store.read(), Unconfigured)

    def test_from_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TRELLIS_HOME", str(tmp_path / "h"))
        monkeypatch.setenv("TRELLIS_BACKUP_DIR", str(tmp_path / "b"))
        config = StoreConfig.from_env()
        assert config.primary_path == tmp_path / "h" / "templates.dcf"
        assert config.backup_path == tmp_path / "b" / "templates.dcf.bak"


class TestReadNormalization:
    def test_default_coerced_and_written_back(self, store: RegistryStore) -> None:
        store.primary_path.parent.mkdir(parents=True)
        store.primary_path.write_text(TWO_DEFAULTS)
        registry = store.read()
        assert isinstance(registry, Registry)
        assert [(r.template_name, r.default) for r in registry.records] == [("beta", True), ("alpha", False)]
        on_disk = store.primary_path.read_text()
        assert on_disk.count("default: TRUE") == 1
        assert store.backup_path.read_text() == on_disk

    def test_read_write_fixed_point(self, store: RegistryStore) -> None:
        store.primary_path.parent.mkdir(parents=True)
        store.primary_path.write_text(TWO_DEFAULTS)
        store.write(store.read())
        first = store.primary_path.read_bytes()
        store.write(store.read())
        assert store.primary_path.read_bytes() == first

    def test_clean_file_not_rewritten(self, store: RegistryStore) -> None:
        _registered(store, "a", "b")
        mtime = store.primary_path.stat().st_mtime_ns
        store.read()
        assert store.primary_path.stat().st_mtime_ns == mtime

    def test_duplicate_names_are_fatal(self, store: RegistryStore) -> None:
        store.primary_path.parent.mkdir(parents=True)
        store.primary_path.write_text(TWO_DEFAULTS.replace("alpha", "beta"))
        with pytest.raises(DuplicateTemplateName):
            store.read()

    def test_invalid_values_are_fatal_not_corruption(self, store: RegistryStore) -> None:
        store.primary_path.parent.mkdir(parents=True)
        store.primary_path.write_text(TWO_DEFAULTS.replace("template_type: root", "template_type: site"))
        with pytest.raises(InvalidTemplateType):
            store.read()


class TestWrite:
    def test_writes_primary_and_backup(self, store: RegistryStore) -> None:
        registry = _registered(store, "a")
        store.write(registry)
        assert store.primary_path.read_text() == store.backup_path.read_text()

    def test_creates_backup_dir(self, store: RegistryStore) -> None:
        assert not store.backup_path.parent.exists()
        store.write(UNCONFIGURED)
        assert store.backup_path.parent.is_dir()

    def test_skips_backup_when_dir_creation_disabled(self, tmp_path: Path) -> None:
        config = StoreConfig(
            primary_path=tmp_path / "home" / "templates.dcf",
            backup_path=tmp_path / "missing" / "templates.dcf.bak",
            create_backup_dir=False,
        )
        RegistryStore(config).write(UNCONFIGURED)
        assert config.primary_path.exists()
        assert not config.backup_path.exists()

    def test_only_root_fields_persisted(self, store: RegistryStore) -> None:
        _registered(store, "a")
        text = store.primary_path.read_text()
        assert "location_type" not in text
        assert "file_location" not in text
        assert "merge" not in text


class TestBackupRestore:
    def test_missing_primary_restored(self, store: RegistryStore) -> None:
        _registered(store, "a", "b")
        store.primary_path.unlink()
        registry = store.read()
        assert isinstance(registry, Registry)
        assert registry.names() == ["a", "b"]
        assert store.primary_path.exists()

    def test_restore_from_backup_without_backup(self, store: RegistryStore) -> None:
        assert store.restore_from_backup() is False

    def test_unreadable_primary_restored(self, store: RegistryStore) -> None:
        _registered(store, "a")
        store.primary_path.write_text("this is not a definition file\n")
        registry = store.read()
        assert isinstance(registry, Registry)
        assert registry.names() == ["a"]
        assert store.primary_path.read_text() == store.backup_path.read_text()

    def test_unreadable_without_backup_is_corrupted(self, store: RegistryStore) -> None:
        store.primary_path.parent.mkdir(parents=True)
        store.primary_path.write_bytes(b"\xff\xfe not utf-8")
        with pytest.raises(RegistryCorrupted):
            store.read()

    def test_both_unreadable_is_corrupted(self, store: RegistryStore) -> None:
        _registered(store, "a")
        store.primary_path.write_text("garbage\n")
        store.backup_path.write_text("more garbage\n")
        with pytest.raises(RegistryCorrupted) as exc_info:
            store.read()
        assert exc_info.value.path == str(store.primary_path)


class TestClear:
    def test_clear_resets_to_unconfigured(self, store: RegistryStore) -> None:
        _registered(store, "a", "b")
        store.clear()
        assert store.read() is UNCONFIGURED

    def test_clear_survives_primary_loss(self, store: RegistryStore) -> None:
        _registered(store, "a")
        store.clear()
        store.primary_path.unlink()
        assert store.read() is UNCONFIGURED

    def test_unconfigured_differs_from_empty(self, store: RegistryStore) -> None:
        _registered(store, "a")
        store.remove("a")
        registry = store.read()
        assert isinstance(registry, Registry)
        assert len(registry) == 0
        assert registry is not UNCONFIGURED


class TestAdd:
    def test_first_added_becomes_default(self, store: RegistryStore) -> None:
        registry = _registered(store, "one", "two")
        assert registry.default is not None
        assert registry.default.template_name == "one"

    def test_name_from_last_path_segment(self, store: RegistryStore, tmp_path: Path) -> None:
        record = store.add(f"local:{tmp_path}/templates/knitr/")
        assert record.template_name == "knitr"

    def test_explicit_name(self, store: RegistryStore) -> None:
        record = store.add("local:/srv/templates/template2", name="Template_2")
        assert record.template_name == "Template_2"

    def test_bare_path_is_local(self, store: RegistryStore, tmp_path: Path) -> None:
        record = store.add(str(tmp_path / "plain"))
        assert record.content_location == f"local:{tmp_path.resolve() / 'plain'}"
        assert record.location_type == "local"

    def test_github_name_from_repo(self, store: RegistryStore) -> None:
        record = store.add("github:someone/analysis-template@main")
        assert record.template_name == "analysis-template"
        assert record.repo_ref == "someone/analysis-template@main"

    def test_duplicate_name_rejected(self, store: RegistryStore) -> None:
        store.add("local:/a/knitr")
        with pytest.raises(DuplicateTemplateName):
            store.add("local:/b/knitr")

    def test_unknown_scheme_rejected(self, store: RegistryStore) -> None:
        with pytest.raises(InvalidLocationType):
            store.add("svn:/repo/trunk")

    @pytest.mark.parametrize("name", ["a\n\nb", "two\nlines", " padded", "trailing ", "   "])
    def test_unstorable_name_rejected(self, store: RegistryStore, name: str) -> None:
        with pytest.raises(InvalidFieldValue, match="template_name"):
            store.add("local:/srv/templates/x", name=name)
        assert store.read() is UNCONFIGURED

    def test_rejected_name_leaves_registry_readable(self, store: RegistryStore) -> None:
        _registered(store, "a")
        with pytest.raises(InvalidFieldValue):
            store.add("local:/srv/templates/b", name="b\n\nc")
        registry = store.read()
        assert isinstance(registry, Registry)
        assert registry.names() == ["a"]


class TestMutations:
    def test_remove_by_index(self, store: RegistryStore) -> None:
        _registered(store, "a", "b", "c")
        removed = store.remove(3)
        assert removed.template_name == "c"
        registry = store.read()
        assert isinstance(registry, Registry)
        assert registry.names() == ["a", "b"]

    def test_remove_default_moves_default(self, store: RegistryStore) -> None:
        _registered(store, "a", "b")
        store.remove("a")
        registry = store.read()
        assert isinstance(registry, Registry)
        assert registry.default is not None
        assert registry.default.template_name == "b"

    def test_remove_unknown(self, store: RegistryStore) -> None:
        _registered(store, "a")
        with pytest.raises(TemplateNotFound):
            store.remove("zzz")

    def test_set_default(self, store: RegistryStore) -> None:
        _registered(store, "a", "b")
        store.set_default("b")
        registry = store.read()
        assert isinstance(registry, Registry)
        assert registry.default is not None
        assert registry.default.template_name == "b"
        assert sum(r.default for r in registry.records) == 1

    def test_set_default_out_of_range(self, store: RegistryStore) -> None:
        _registered(store, "a")
        with pytest.raises(TemplateIndexOutOfRange):
            store.set_default(5)

    def test_no_default_reverts_to_first_registered(self, store: RegistryStore) -> None:
        _registered(store, "a", "b")
        store.set_default("b")
        registry = store.no_default()
        assert registry.default is not None
        assert registry.default.template_name == "a"
        reread = store.read()
        assert isinstance(reread, Registry)
        assert reread.default == registry.default

    def test_no_default_unconfigured(self, store: RegistryStore) -> None:
        with pytest.raises(NoDefaultTemplate):
            store.no_default()


class TestLoadFrom:
    def test_load_definition(self, store: RegistryStore, tmp_path: Path) -> None:
        source = tmp_path / "RootConfig.dcf"
        source.write_text(TWO_DEFAULTS)
        registry = store.load_from(source)
        assert isinstance(registry, Registry)
        assert registry.names() == ["beta", "alpha"]
        assert store.primary_path.read_text() == dump_records(r.to_raw() for r in registry.records)

    def test_load_invalid_leaves_registry_untouched(self, store: RegistryStore, tmp_path: Path) -> None:
        _registered(store, "a")
        before = store.primary_path.read_text()
        source = tmp_path / "bad.dcf"
        source.write_text(TWO_DEFAULTS.replace("local:", "ftp:"))
        with pytest.raises(InvalidLocationType):
            store.load_from(source)
        assert store.primary_path.read_text() == before
