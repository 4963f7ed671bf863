import pytest

from node_rebooter.settings import SettingsError, apply_overrides, defaults, load_settings


def write(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return str(path)


def test_missing_default_file_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    settings = load_settings()

    assert settings == defaults
    assert settings is not defaults


def test_missing_named_file_is_an_error(tmp_path):
    with pytest.raises(SettingsError):
        load_settings(str(tmp_path / "missing.yaml"))


def test_loads_yaml(tmp_path):
    path = write(
        tmp_path,
        """
max_unavailable: 2
resync_period_seconds: 30
reboot_method: amt
amt_nodes:
  worker-1:
    address: 10.0.0.1
    username: admin
    password: secret
""",
    )

    settings = load_settings(path)

    assert settings["max_unavailable"] == 2
    assert settings["resync_period_seconds"] == 30
    assert settings["reboot_method"] == "amt"
    assert settings["amt_nodes"]["worker-1"]["address"] == "10.0.0.1"
    assert settings["reboot_command"] == ["systemctl", "reboot"]


def test_empty_file_uses_defaults(tmp_path):
    assert load_settings(write(tmp_path, "")) == defaults


@pytest.mark.parametrize(
    "text",
    [
        "max_unavailable: 0",
        "max_unavailable: two",
        "max_unavailable: true",
        "resync_period_seconds: -1",
        "reboot_method: ipmi",
        "reboot_command: systemctl reboot",
        "verify_boot_id: maybe",
        "amt_nodes: [worker-1]",
        "unknown_key: 1",
        "- just a list",
        "max_unavailable: [",
    ],
)
def test_invalid_settings(tmp_path, text):
    with pytest.raises(SettingsError):
        load_settings(write(tmp_path, text))


def test_overrides_ignore_unset_values(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    settings = apply_overrides(load_settings(), max_unavailable=3, resync_period_seconds=None)

    assert settings["max_unavailable"] == 3
    assert settings["resync_period_seconds"] == defaults["resync_period_seconds"]


def test_overrides_are_validated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    with pytest.raises(SettingsError):
        apply_overrides(load_settings(), max_unavailable=0)
