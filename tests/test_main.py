"""Tests for main module."""

from whatsapp_gateway import main as main_module


def test_main_serves_app_on_configured_port(monkeypatch, tmp_path) -> None:
    calls: list[dict[str, object]] = []

    def fake_run(app, host: str, port: int) -> None:
        calls.append({"app": app, "host": host, "port": port})

    monkeypatch.setenv("BRIDGE_URL", "http://bridge.test")
    monkeypatch.setenv("SESSIONS_ROOT", str(tmp_path))
    monkeypatch.setenv("PORT", "48600")
    monkeypatch.setattr(main_module.uvicorn, "run", fake_run)

    main_module.main()

    assert calls[0]["port"] == 48600
    assert calls[0]["host"] == "0.0.0.0"
