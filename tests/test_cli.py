"""Tests for the command line entry point."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from atlas import __version__
from atlas.cli import main


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(f"persist_state: false\ndata_dir: {tmp_path}\n", encoding="utf-8")
    return path


def _fake_assistant(ok: bool = True, text: str = "Paused.") -> MagicMock:
    reply = MagicMock(ok=ok, awaiting_confirmation=False, text=text)
    assistant = MagicMock()
    assistant.handle = AsyncMock(return_value=reply)
    return assistant


def test_version(capsys):
    with pytest.raises(SystemExit) as exc:
        main(["--version"])
    assert exc.value.code == 0
    assert __version__ in capsys.readouterr().out


def test_single_turn(config_file, capsys):
    assistant = _fake_assistant()
    with patch("atlas.cli.build_assistant", return_value=assistant) as build:
        code = main(["--config", str(config_file), "--no-llm", "--once", "pause"])
    assert code == 0
    assistant.handle.assert_awaited_once_with("pause")
    assistant.save.assert_called_once()
    assert build.call_args[0][0].llm.enabled is False
    assert "Paused." in capsys.readouterr().out


def test_failed_turn_exit_code(config_file):
    with patch("atlas.cli.build_assistant", return_value=_fake_assistant(ok=False, text="No.")):
        assert main(["--config", str(config_file), "--once", "open nothing"]) == 1


def test_config_error(tmp_path, capsys):
    assert main(["--config", str(tmp_path / "missing.yaml"), "--once", "pause"]) == 2
    assert "Config error" in capsys.readouterr().err
