from csvbench.config.loader import (
    CONFIG_PATH_ENV_VAR,
    SOURCE_OVERRIDE,
    SOURCE_PACKAGED,
    load_override,
    packaged_defaults,
    read_config_file,
    resolve_override_path,
)


def test_packaged_defaults_come_from_package_resources():
    document = packaged_defaults()

    assert document.ok
    assert document.source == SOURCE_PACKAGED
    assert document.path.endswith("defaults.toml")
    assert document.payload["meta"]["schema_version"] == 1
    assert document.payload["options"]["max_processes"] == 3
    assert set(document.payload["datasets"]) == {"very_small", "small", "medium", "large"}
    assert document.payload["queries"][0] == {"Name": "Alice"}


def test_packaged_defaults_are_read_once():
    assert packaged_defaults() is packaged_defaults()


def test_override_path_prefers_explicit_over_environment(tmp_path, monkeypatch):
    monkeypatch.setenv(CONFIG_PATH_ENV_VAR, str(tmp_path / "env.toml"))

    assert resolve_override_path(tmp_path / "explicit.toml") == tmp_path / "explicit.toml"
    assert resolve_override_path("  ") == tmp_path / "env.toml"
    assert resolve_override_path() == tmp_path / "env.toml"


def test_no_override_without_path_or_environment():
    assert resolve_override_path() is None
    assert load_override() is None


def test_override_from_environment_is_parsed(tmp_path, monkeypatch):
    path = tmp_path / "env.toml"
    path.write_text("[options]\niterations = 9\n", encoding="utf-8")
    monkeypatch.setenv(CONFIG_PATH_ENV_VAR, str(path))

    document = load_override()

    assert document.ok
    assert document.source == SOURCE_OVERRIDE
    assert document.payload == {"options": {"iterations": 9}}


def test_missing_override_reports_error_kind(tmp_path):
    document = load_override(tmp_path / "absent.toml")

    assert not document.ok
    assert document.error_kind == "missing"
    assert document.source == SOURCE_OVERRIDE
    assert document.payload == {}


def test_invalid_toml_reports_error_kind(tmp_path):
    path = tmp_path / "broken.toml"
    path.write_text("[options\n", encoding="utf-8")

    document = read_config_file(path)

    assert document.error_kind == "invalid_toml"
    assert document.payload == {}


def test_directory_is_unreadable(tmp_path):
    assert read_config_file(tmp_path).error_kind == "unreadable"


def test_oversized_override_is_rejected(tmp_path):
    override = tmp_path / "large.toml"
    override.write_text('[options]\ncomment = "' + ("x" * 1_100_000) + '"\n', encoding="utf-8")

    document = read_config_file(override)

    assert document.error_kind == "oversized"
    assert document.payload == {}


def test_override_changes_are_picked_up(tmp_path):
    path = tmp_path / "override.toml"
    path.write_text("[options]\niterations = 3\n", encoding="utf-8")
    first = read_config_file(path)

    path.write_text("[options]\niterations = 9\n", encoding="utf-8")
    second = read_config_file(path)

    assert first.payload["options"]["iterations"] == 3
    assert second.payload["options"]["iterations"] == 9
