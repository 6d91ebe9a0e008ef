from pathlib import Path

import pytest

from aiogranolaa.cli import build_config, parse_args
from aiogranolaa.models import MAX_FRAME_SIZE
from aiogranolaa.server import OversizePolicy


def test_serve_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PORT", "8080")
    config = build_config(parse_args(["serve"]))
    assert config.host == "0.0.0.0"
    assert config.port == 8080
    assert config.max_frame_size == MAX_FRAME_SIZE
    assert config.oversize_policy is OversizePolicy.RESYNC
    assert config.idle_timeout is None
    assert not config.advertise


def test_serve_without_port_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PORT", raising=False)
    assert build_config(parse_args(["serve"])).port == 3000


def test_serve_options() -> None:
    args = parse_args(
        [
            "--log-level",
            "DEBUG",
            "serve",
            "--port",
            "4000",
            "--static-dir",
            "public",
            "--oversize-policy",
            "close",
            "--idle-timeout",
            "30",
            "--advertise",
        ]
    )
    config = build_config(args)
    assert args.log_level == "DEBUG"
    assert config.port == 4000
    assert config.static_dir == Path("public")
    assert config.oversize_policy is OversizePolicy.CLOSE
    assert config.idle_timeout == 30
    assert config.advertise


def test_invalid_settings_are_rejected() -> None:
    with pytest.raises(ValueError):
        build_config(parse_args(["serve", "--port", "1", "--idle-timeout", "0"]))
    with pytest.raises(ValueError):
        build_config(parse_args(["serve", "--port", "1", "--max-frame-size", "-1"]))


def test_push_options() -> None:
    args = parse_args(["push", "frames", "--type", "webcam", "--id", "cam", "--fps", "5"])
    assert args.command == "push"
    assert args.source == Path("frames")
    assert args.type == "webcam"
    assert args.id == "cam"
    assert args.fps == 5
    assert args.url is None
