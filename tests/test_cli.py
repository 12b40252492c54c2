from pathlib import Path

from site_monitor import cli


def test_show_config_masks_password(tmp_path: Path, capsys) -> None:
    config_path = tmp_path / "site-monitor.cfg"
    config_path.write_text(
        "[cloud]\ndevice_id = site-7\npassword = hunter2\n", encoding="utf-8"
    )

    assert cli.main(["-c", str(config_path), "show-config"]) == 0

    output = capsys.readouterr().out
    assert f"Configuration loaded from {config_path}" in output
    assert "device_id = site-7" in output
    assert "hunter2" not in output
    assert "password = ********" in output


def test_start_rejects_invalid_config(tmp_path: Path, monkeypatch) -> None:
    started = []
    monkeypatch.setattr(cli.SiteMonitorApp, "start", classmethod(lambda cls, c: started.append(c)))

    assert cli.main(["-c", str(tmp_path / "missing.cfg"), "start"]) == 1
    assert started == []


def test_start_runs_app(tmp_path: Path, monkeypatch) -> None:
    config_path = tmp_path / "site-monitor.cfg"
    config_path.write_text("[cloud]\ndevice_id = site-7\n", encoding="utf-8")
    started = []
    monkeypatch.setattr(cli.SiteMonitorApp, "start", classmethod(lambda cls, c: started.append(c)))

    assert cli.main(["-c", str(config_path), "start"]) == 0
    assert started[0].cloud.device_id == "site-7"


def test_malformed_config_returns_error(tmp_path: Path) -> None:
    config_path = tmp_path / "site-monitor.cfg"
    config_path.write_text("[display]\nline_count = many\n", encoding="utf-8")

    assert cli.main(["-c", str(config_path), "show-config"]) == 1
