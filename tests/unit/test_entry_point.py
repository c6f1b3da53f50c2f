"""Tests for the command-line config check."""

from pathlib import Path

from vip_gate.__main__ import check_config
from vip_gate.config import ENV_OVERRIDES

EXAMPLE_CONFIG = Path(__file__).resolve().parents[2] / "config" / "vip_gate.yaml"


def test_check_config_reports_without_secrets(tmp_path, monkeypatch, capsys):
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    path = tmp_path / "vip_gate.yaml"
    path.write_text(
        "database:\n"
        "  url: postgresql://vip:hunter2@db/vip\n"
        "gateway:\n"
        "  access_token: APP_USR-secret\n"
        "admins: [7]\n",
        encoding="utf-8",
    )

    assert check_config(str(path)) == 0

    out = capsys.readouterr().out
    assert "Mercado Pago token: set" in out
    assert "Telegram bot token: MISSING" in out
    assert "Admins: 1" in out
    assert "APP_USR-secret" not in out
    assert "hunter2" not in out


def test_check_config_example_file(capsys):
    assert check_config(str(EXAMPLE_CONFIG)) == 0
    assert "Bootstrap settings: yes" in capsys.readouterr().out


def test_check_config_invalid_file(tmp_path, capsys):
    assert check_config(str(tmp_path / "missing.yaml")) == 1
    assert "Invalid configuration" in capsys.readouterr().err
