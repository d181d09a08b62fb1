from __future__ import annotations

from pathlib import Path

from auto_containers.m1 import db as db_mod
from auto_containers.m1.paths import default_config_path, default_db_path
from auto_containers.m1.store import (
    DEFAULT_STYLE,
    ContainerStyle,
    SettingsStore,
    TempContainerStyle,
)


def test_connect_migrates_schema(tmp_path: Path) -> None:
    conn = db_mod.connect(tmp_path / "nested" / "x.sqlite3")
    row = conn.execute("SELECT value FROM meta WHERE key='schema_version'").fetchone()
    assert row["value"] == str(db_mod.SCHEMA_VERSION)
    tables = {r["name"] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    assert {"meta", "settings"} <= tables

    # reconnecting is a no-op
    conn.close()
    conn = db_mod.connect(tmp_path / "nested" / "x.sqlite3")
    row = conn.execute("SELECT value FROM meta WHERE key='schema_version'").fetchone()
    assert row["value"] == str(db_mod.SCHEMA_VERSION)


def test_defaults(tmp_path: Path) -> None:
    store = SettingsStore(db_mod.connect(tmp_path / "x.sqlite3"))
    assert store.get_rules() == ""
    assert store.get_temp_style() == TempContainerStyle()
    assert store.get_container_styles() == {}
    assert store.get_container_style("YT") is None
    assert store.get_notifications() is True


def test_roundtrip_values(tmp_path: Path) -> None:
    store = SettingsStore(db_mod.connect(tmp_path / "x.sqlite3"))
    store.set_rules("youtube.com, YT")
    store.set_temp_style(TempContainerStyle(color=None, icon="pet", random_color=True))
    store.set_container_style("YT", ContainerStyle(color="red", icon="fruit"))
    store.set_container_style("Work", DEFAULT_STYLE)
    store.set_notifications(False)

    assert store.get_rules() == "youtube.com, YT"
    assert store.get_temp_style() == TempContainerStyle(
        color=None, icon="pet", random_color=True, random_icon=False
    )
    assert store.get_container_style("YT") == ContainerStyle(color="red", icon="fruit")
    assert set(store.get_container_styles()) == {"YT", "Work"}
    assert store.get_notifications() is False


def test_corrupt_values_fall_back(tmp_path: Path) -> None:
    conn = db_mod.connect(tmp_path / "x.sqlite3")
    conn.execute("INSERT INTO settings(key, value) VALUES ('rules', 'not json')")
    conn.execute("INSERT INTO settings(key, value) VALUES ('containerStyles', '[1, 2]')")
    conn.commit()

    store = SettingsStore(conn)
    assert store.get_rules() == ""
    assert store.get_container_styles() == {}


def test_temp_style_json_keys() -> None:
    style = TempContainerStyle(color=None, icon=None, random_color=True, random_icon=True)
    assert style.to_json() == {
        "color": None,
        "icon": None,
        "randomColor": True,
        "randomIcon": True,
    }
    assert TempContainerStyle.from_json(style.to_json()) == style
    assert TempContainerStyle.from_json("junk") == TempContainerStyle()


def test_xdg_paths(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    assert default_db_path() == tmp_path / "data" / "auto-containers" / "auto-containers.sqlite3"
    assert default_config_path() == tmp_path / "config" / "auto-containers" / "config.json"
