"""Config store, validator, backups and the SQLite index."""

from pathlib import Path

import pytest

from moonfrp.engine.models import IndexUnavailable, TargetFilter
from moonfrp.store import (
    BackupManager,
    ConfigIndex,
    ConfigStore,
    ConfigValidator,
    get_field,
    parse_value,
    set_field,
)
from moonfrp.store import backup as backup_module
from tests._utils.frp import client_toml, server_toml


@pytest.fixture
def populated(config_dir: Path) -> Path:
    (config_dir / "frps.toml").write_text(server_toml())
    (config_dir / "frpc-eu-1.toml").write_text(client_toml("10.0.0.1"))
    (config_dir / "frpc-eu-2.toml").write_text(client_toml("10.0.0.2"))
    (config_dir / "frpc-us-1.toml").write_text(client_toml("10.1.0.1"))
    (config_dir / "visitor-db.toml").write_text(client_toml("10.2.0.1"))
    (config_dir / "README.md").write_text("not a config")
    return config_dir


# --- filters ---------------------------------------------------------------


def test_resolve_all_and_type(populated):
    store = ConfigStore(populated)

    assert [p.name for p in store.resolve_by_filter(TargetFilter.parse("all"))] == [
        "frpc-eu-1.toml",
        "frpc-eu-2.toml",
        "frpc-us-1.toml",
        "frps.toml",
        "visitor-db.toml",
    ]
    assert [p.name for p in store.resolve_by_filter(TargetFilter.parse("type:server"))] == [
        "frps.toml"
    ]


def test_resolve_name_substring_and_glob(populated):
    store = ConfigStore(populated)

    assert len(store.resolve_by_filter(TargetFilter.parse("name:eu"))) == 2
    assert [p.name for p in store.resolve_by_filter(TargetFilter.parse("name:frpc-*-1.toml"))] == [
        "frpc-eu-1.toml",
        "frpc-us-1.toml",
    ]


def test_tag_filter_needs_index(populated):
    with pytest.raises(ValueError, match="index"):
        ConfigStore(populated).resolve_by_filter(TargetFilter.parse("tag:env"))


def test_status_filter_does_not_apply_to_files(populated):
    with pytest.raises(ValueError):
        ConfigStore(populated).resolve_by_filter(TargetFilter.parse("status:active"))


def test_missing_config_dir_is_empty(tmp_path):
    assert ConfigStore(tmp_path / "nope").list_configs() == []


@pytest.mark.parametrize(
    "text, kind, value, tag_value",
    [
        ("all", "all", None, None),
        ("type:client", "type", "client", None),
        ("tag:env", "tag", "env", None),
        ("tag:env:prod", "tag", "env", "prod"),
        ("name:eu-*", "name", "eu-*", None),
    ],
)
def test_filter_parse(text, kind, value, tag_value):
    parsed = TargetFilter.parse(text)
    assert (parsed.kind.value, parsed.value, parsed.tag_value) == (kind, value, tag_value)
    assert str(parsed) == text


@pytest.mark.parametrize("text", ["bogus", "color:red", "type:"])
def test_filter_parse_rejects(text):
    with pytest.raises(ValueError):
        TargetFilter.parse(text)


# --- field helpers ---------------------------------------------------------


def test_dotted_field_paths():
    doc = {"auth": {"token": "x"}}
    assert get_field(doc, "auth.token") == "x"
    assert get_field(doc, "auth.missing") is None

    set_field(doc, "transport.tls.enable", True)
    assert doc["transport"] == {"tls": {"enable": True}}

    with pytest.raises(ValueError, match="not a table"):
        set_field(doc, "auth.token.value", 1)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("7000", 7000),
        ("true", True),
        ('"quoted"', "quoted"),
        ("1.2.3.4", "1.2.3.4"),
        ("frp.example.com", "frp.example.com"),
    ],
)
def test_parse_value(text, expected):
    assert parse_value(text) == expected


# --- validator -------------------------------------------------------------


def test_valid_server_and_client():
    validator = ConfigValidator()
    assert validator.validate(server_toml(), "server").ok
    outcome = validator.validate(client_toml(), "client")
    assert outcome.ok
    assert outcome.warnings == []


def test_server_rules():
    validator = ConfigValidator()
    short = validator.validate(server_toml(token="short"), "server")
    assert not short.ok
    assert "too short" in short.reason

    bad_port = validator.validate(server_toml(port=0), "server")
    assert "bindPort" in bad_port.reason


def test_client_rules():
    validator = ConfigValidator()
    bad_addr = validator.validate(client_toml(addr="not a host!"), "client")
    assert "serverAddr" in bad_addr.reason

    no_token = validator.validate('serverAddr = "10.0.0.1"\nserverPort = 7000\n', "client")
    assert not no_token.ok
    assert "auth.token" in no_token.reason
    assert "No [[proxies]] defined" in no_token.warnings


def test_syntax_error_is_invalid():
    outcome = ConfigValidator().validate("serverPort = = 1", "client")
    assert not outcome.ok
    assert outcome.reason.startswith("TOML syntax error")


def test_unknown_type_checks_syntax_only():
    assert ConfigValidator().validate("anything = 1\n", "unknown").ok


# --- backups ---------------------------------------------------------------


def test_backups_are_rotated(tmp_path):
    config = tmp_path / "frpc.toml"
    config.write_text(client_toml())
    backups = BackupManager(tmp_path / "backups", max_per_file=3)

    made = [backups.backup(config) for _ in range(5)]

    kept = backups.list_backups(config)
    assert len(kept) == 3
    assert kept[0] == made[-1]
    assert all(path.name.startswith("frpc.toml.") and path.suffix == ".bak" for path in kept)


def test_restore_from_backup_renames_into_place(tmp_path, monkeypatch):
    config = tmp_path / "frps.toml"
    config.write_text(server_toml())
    backups = BackupManager(tmp_path / "backups")
    saved = backups.backup(config)
    config.write_text("garbage")
    renamed = []
    real_replace = backup_module.os.replace

    def recording_replace(src, dst):
        renamed.append(Path(dst))
        real_replace(src, dst)

    monkeypatch.setattr(backup_module.os, "replace", recording_replace)

    backups.restore(saved, config)

    assert config.read_text() == server_toml()
    assert renamed == [config]
    assert list(tmp_path.glob(".frps.toml.*.tmp")) == []


# --- index -----------------------------------------------------------------


def test_index_rebuild_and_queries(populated, tmp_path):
    index = ConfigIndex(tmp_path / "index.db")

    assert index.rebuild(populated) == 5
    assert index.stats() == (5, 4)
    assert [p.name for p in index.query_by_type("client")] == [
        "frpc-eu-1.toml",
        "frpc-eu-2.toml",
        "frpc-us-1.toml",
    ]
    assert index.resolve_endpoint(populated / "frpc-us-1.toml") == ("10.1.0.1", 7000)
    assert index.resolve_endpoint(populated / "frps.toml") is None
    assert index.get(populated / "frps.toml").bind_port == 7000


def test_tags_survive_reindex(populated, tmp_path):
    index = ConfigIndex(tmp_path / "index.db")
    index.rebuild(populated)
    target = populated / "frpc-eu-2.toml"

    index.add_tag(target, "env", "prod")
    index.add_tag(populated / "frpc-us-1.toml", "env", "staging")
    index.reindex(target)

    assert index.query_by_tag("env", "prod") == [target.resolve()]
    assert len(index.query_by_tag("env")) == 2
    assert index.tags(target) == {"env": "prod"}

    index.remove_tag(target, "env")
    assert index.query_by_tag("env", "prod") == []


def test_refresh_picks_up_new_and_deleted_files(populated, tmp_path):
    index = ConfigIndex(tmp_path / "index.db")
    index.rebuild(populated)

    (populated / "frpc-new.toml").write_text(client_toml("10.9.0.1"))
    (populated / "frpc-eu-1.toml").unlink()

    assert index.refresh(populated) == 2
    assert index.stats()[0] == 5
    assert index.get(populated / "frpc-new.toml") is not None


def test_broken_config_is_indexed_with_error(populated, tmp_path):
    (populated / "frpc-broken.toml").write_text("serverAddr = [\n")
    index = ConfigIndex(tmp_path / "index.db")
    index.rebuild(populated)

    entry = index.get(populated / "frpc-broken.toml")
    assert entry.parse_error
    assert entry.config_type == "client"


def test_unopenable_index_raises(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(IndexUnavailable):
        ConfigIndex(blocker / "index.db")
