from __future__ import annotations

import json
from pathlib import Path

import pytest

from auto_containers.m1.config import DEFAULT_MULTI_PART_TLDS, Settings, load_settings


def test_missing_file_gives_defaults(tmp_path: Path) -> None:
    s = load_settings(tmp_path / "nope.json")
    assert s == Settings()
    assert s.quiet_seconds == 300.0
    assert s.max_processing_per_tab == 3
    assert "co.uk" in s.multi_part_tlds


def test_load_overrides(tmp_path: Path) -> None:
    p = tmp_path / "config.json"
    p.write_text(
        json.dumps(
            {
                "quiet_seconds": 5,
                "max_processing_per_tab": 2,
                "multi_part_tlds": ["Co.NZ ", "", "com.au"],
                "unknown": "ignored",
            }
        ),
        encoding="utf-8",
    )
    s = load_settings(p)
    assert s.quiet_seconds == 5.0
    assert s.max_processing_per_tab == 2
    assert s.multi_part_tlds == ("co.nz", "com.au")


def test_partial_config_keeps_other_defaults(tmp_path: Path) -> None:
    p = tmp_path / "config.json"
    p.write_text(json.dumps({"quiet_seconds": 1.5}), encoding="utf-8")
    s = load_settings(p)
    assert s.quiet_seconds == 1.5
    assert s.multi_part_tlds == DEFAULT_MULTI_PART_TLDS


@pytest.mark.parametrize(
    ("obj", "key"),
    [
        ([], "object"),
        ({"quiet_seconds": "soon"}, "quiet_seconds"),
        ({"quiet_seconds": -1}, "quiet_seconds"),
        ({"max_processing_per_tab": True}, "max_processing_per_tab"),
        ({"max_processing_per_tab": 0}, "max_processing_per_tab"),
        ({"multi_part_tlds": "co.uk"}, "multi_part_tlds"),
    ],
)
def test_invalid_config_raises(tmp_path: Path, obj: object, key: str) -> None:
    p = tmp_path / "config.json"
    p.write_text(json.dumps(obj), encoding="utf-8")
    with pytest.raises(ValueError, match=key):
        load_settings(p)
