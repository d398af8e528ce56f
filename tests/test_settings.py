from __future__ import annotations

from pathlib import Path

import pytest

from tg_transmission import config as config_module
from tg_transmission.config import ConfigError, read_config, resolve_config_path
from tg_transmission.model import Location
from tg_transmission.settings import load_settings

BASIC = (
    "[telegram]\n"
    'api_token = "123:abc"\n'
    'allow_users = ["alice", "bob"]\n'
)


@pytest.fixture(autouse=True)
def _no_home_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(config_module, "HOME_CONFIG_PATH", tmp_path / "missing.toml")
    for name in (
        "TG_TRANSMISSION__TELEGRAM__API_TOKEN",
        "TG_TRANSMISSION__TELEGRAM__ALLOW_USERS",
        "TG_TRANSMISSION__SET_COMMANDS",
    ):
        monkeypatch.delenv(name, raising=False)


def test_load_settings_from_toml(tmp_path: Path) -> None:
    config_path = tmp_path / "tg.toml"
    config_path.write_text(
        "set_commands = false\n"
        + BASIC
        + "\n[transmission]\n"
        'url = "http://nas:9091/transmission/rpc"\n'
        'username = "admin"\n'
        "\n[[locations]]\n"
        'name = "movies"\n'
        'path = "/data/movies"\n'
        "\n[[locations]]\n"
        'name = "tv"\n'
        'path = "/data/tv"\n',
        encoding="utf-8",
    )

    settings, loaded_path = load_settings(config_path)

    assert loaded_path == config_path
    assert settings.set_commands is False
    assert settings.poll_timeout_s == 10
    assert settings.telegram.api_token == "123:abc"
    assert settings.telegram.allow_users == ["alice", "bob"]
    assert settings.transmission.url == "http://nas:9091/transmission/rpc"
    assert settings.transmission.username == "admin"
    assert settings.transmission.timeout_s == 30
    assert settings.to_locations() == (
        Location(name="movies", path="/data/movies"),
        Location(name="tv", path="/data/tv"),
    )


def test_env_overrides_toml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "tg.toml"
    config_path.write_text(BASIC, encoding="utf-8")
    monkeypatch.setenv("TG_TRANSMISSION__TELEGRAM__API_TOKEN", "999:zzz")

    settings, _ = load_settings(config_path)

    assert settings.telegram.api_token == "999:zzz"
    assert settings.telegram.allow_users == ["alice", "bob"]


def test_overrides_win_and_merge(tmp_path: Path) -> None:
    config_path = tmp_path / "tg.toml"
    config_path.write_text(BASIC, encoding="utf-8")

    settings, _ = load_settings(
        config_path,
        overrides={"telegram": {"allow_users": ["carol"]}, "set_commands": False},
    )

    assert settings.telegram.api_token == "123:abc"
    assert settings.telegram.allow_users == ["carol"]
    assert settings.set_commands is False


def test_settings_without_file(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TG_TRANSMISSION__TELEGRAM__API_TOKEN", "1:x")
    monkeypatch.setenv("TG_TRANSMISSION__TELEGRAM__ALLOW_USERS", '["alice"]')

    settings, loaded_path = load_settings()

    assert loaded_path is None
    assert settings.telegram.allow_users == ["alice"]
    assert settings.locations == []


def test_missing_telegram_section_is_config_error() -> None:
    with pytest.raises(ConfigError, match="Invalid config"):
        load_settings()


def test_explicit_missing_path(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Missing config file"):
        load_settings(tmp_path / "nope.toml")


def test_config_path_must_be_a_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not a file"):
        resolve_config_path(tmp_path)


def test_malformed_toml(tmp_path: Path) -> None:
    config_path = tmp_path / "tg.toml"
    config_path.write_text("[telegram\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="Malformed TOML"):
        read_config(config_path)
    with pytest.raises(ConfigError, match="Malformed TOML"):
        load_settings(config_path)


@pytest.mark.parametrize(
    "locations",
    [
        '[[locations]]\nname = "Other"\npath = "/x"\n',
        '[[locations]]\nname = "cancel"\npath = "/x"\n',
        '[[locations]]\nname = "a"\npath = "/x"\n[[locations]]\nname = "a"\npath = "/y"\n',
        f'[[locations]]\nname = "{"n" * 29}"\npath = "/x"\n',
        '[[locations]]\nname = ""\npath = "/x"\n',
    ],
    ids=["reserved", "reserved-lower", "duplicate", "too-long", "empty"],
)
def test_invalid_locations(tmp_path: Path, locations: str) -> None:
    config_path = tmp_path / "tg.toml"
    config_path.write_text(BASIC + "\n" + locations, encoding="utf-8")

    with pytest.raises(ConfigError):
        load_settings(config_path)


def test_location_name_at_payload_limit(tmp_path: Path) -> None:
    config_path = tmp_path / "tg.toml"
    config_path.write_text(
        BASIC + f'\n[[locations]]\nname = "{"n" * 28}"\npath = "/x"\n',
        encoding="utf-8",
    )

    settings, _ = load_settings(config_path)

    assert settings.locations[0].name == "n" * 28


def test_empty_allow_list_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "tg.toml"
    config_path.write_text(
        '[telegram]\napi_token = "1:x"\nallow_users = []\n', encoding="utf-8"
    )

    with pytest.raises(ConfigError):
        load_settings(config_path)
