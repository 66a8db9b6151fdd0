from __future__ import annotations

import json
from typing import Callable, List

import pytest
import requests

from blueprint_relay.client import config as console_config
from blueprint_relay.client.config import BrowserConfig, ConsoleConfig, fetch_browser_config
from blueprint_relay.client.console import ConsoleSession
from blueprint_relay.client.reconnect import ConnectionState
from blueprint_relay.client.snapshot import JsonFileBlueprintSource, devices_from_blueprints
from blueprint_relay.client.state_model import Severity, SyncStatus
from blueprint_relay.errors import ConfigError

SAFARI = "Mozilla/5.0 (Macintosh) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15"

CONFIG_PAYLOAD = {
    "colonies": {"host": "10.0.0.4", "port": 50080, "tls": False},
    "colonyName": "dev",
    "colonyPrvKey": "colony-key",
    "reconcilerWsUrl": "ws://10.0.0.4:3000/ws",
}

BLUEPRINT = {
    "kind": "DataLogger",
    "metadata": {"name": "data-logger-1"},
    "spec": {"name": "data-logger-1", "appName": "DataCollector", "appVersion": "2.9"},
    "status": {"appVersion": "2.8"},
}


class _Timer:
    def __init__(self, due: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class _Scheduler:
    def __init__(self) -> None:
        self.now = 0.0
        self.timers: List[_Timer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> _Timer:
        timer = _Timer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    def advance(self, delta: float) -> None:
        target = self.now + delta
        while True:
            due = sorted((t for t in self.timers if not t.cancelled and t.due <= target), key=lambda t: t.due)
            if not due:
                break
            self.now = due[0].due
            due[0].cancelled = True
            due[0].callback()
        self.now = target


class _Transport:
    def __init__(self, url: str) -> None:
        self.url = url
        self.closed = False

    def close(self) -> None:
        self.closed = True


class _Source:
    def __init__(self, blueprints=None, error: Exception | None = None) -> None:
        self.blueprints = blueprints or []
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def get_blueprints(self, colony: str, kind: str):
        self.calls.append((colony, kind))
        if self.error is not None:
            raise self.error
        return list(self.blueprints)


def _session(identity: str = "python-test", source=None):
    transports: List[_Transport] = []
    scheduler = _Scheduler()

    def open_transport(url, listener):
        transport = _Transport(url)
        transports.append(transport)
        return transport

    session = ConsoleSession(
        BrowserConfig.from_dict(CONFIG_PAYLOAD),
        ConsoleConfig(identity=identity),
        source=source,
        open_transport=open_transport,
        scheduler=scheduler,
    )
    return session, transports, scheduler


def test_bootstrap_applies_snapshot() -> None:
    source = _Source([BLUEPRINT])
    session, _, _ = _session(source=source)
    assert session.bootstrap() is True
    assert source.calls == [("dev", "DataLogger")]
    view = session.model.view("data-logger-1")
    assert view is not None
    assert view.sync_status is SyncStatus.PENDING


def test_bootstrap_survives_source_failure() -> None:
    session, _, _ = _session(source=_Source(error=OSError("platform down")))
    assert session.bootstrap() is False
    assert session.model.devices == {}


def test_connection_lifecycle_and_frames() -> None:
    session, transports, _ = _session()
    states: list[bool] = []
    session.add_connection_listener(states.append)

    assert session.start() is True
    transport = transports[-1]
    assert transport.url == "ws://10.0.0.4:3000/ws"

    session.controller.transport_opened(transport)
    assert session.connected is True
    assert session.model.log.head.message == "Connected to reconciler"
    assert session.model.log.head.severity is Severity.SUCCESS

    init = {"type": "init", "devices": {"d1": {"spec": {"appVersion": "2.0"}, "status": {"appVersion": "1.0"}}}}
    session.controller.transport_message(transport, json.dumps(init))
    session.controller.transport_message(
        transport,
        json.dumps({"type": "update", "device": "d1", "spec": {"appVersion": "2.0"}, "status": {"appVersion": "2.0"}}),
    )
    assert session.model.sync_status("d1") is SyncStatus.SYNCED
    assert session.model.log.head.message == "Deployed v2.0 ✓"

    session.controller.transport_closed(transport, 1006, "")
    assert session.connected is False
    assert session.model.log.head.message == "Disconnected from reconciler"
    assert session.model.log.head.severity is Severity.ERROR
    assert states == [True, False]


def test_malformed_and_unknown_frames() -> None:
    session, _, _ = _session()
    session.handle_frame("{not json")
    head = session.model.log.head
    assert head.severity is Severity.ERROR
    assert head.message.startswith("Error: ")

    before = len(session.model.log)
    session.handle_frame(json.dumps({"type": "heartbeat"}))
    assert len(session.model.log) == before
    assert session.controller.state is ConnectionState.IDLE


def test_watchdog_reload_for_phantom_prone_identity() -> None:
    source = _Source([BLUEPRINT])
    session, transports, scheduler = _session(identity=SAFARI, source=source)
    session.start()
    session.handle_frame(json.dumps({"type": "update", "device": "extra", "spec": {}, "status": None}))

    scheduler.advance(1.5)
    assert session.reloads == 1
    assert transports[0].closed
    assert len(transports) == 2
    assert session.controller.state is ConnectionState.CONNECTING
    assert set(session.model.devices) == {"data-logger-1"}
    assert len(source.calls) == 2


def test_resume_reconnects_immediately() -> None:
    session, transports, scheduler = _session()
    session.start()
    session.controller.transport_opened(transports[-1])
    assert session.resume() is True
    assert transports[0].closed
    assert len(transports) == 2
    assert scheduler.now == 0.0


def test_browser_config_parsing() -> None:
    cfg = BrowserConfig.from_dict({**CONFIG_PAYLOAD, "executorPrvKey": "exec-key"})
    assert cfg.colonies.host == "10.0.0.4"
    assert cfg.reconciler_ws_url == "ws://10.0.0.4:3000/ws"
    assert cfg.signing_key == "exec-key"
    assert BrowserConfig.from_dict(CONFIG_PAYLOAD).signing_key == "colony-key"

    with pytest.raises(ConfigError):
        BrowserConfig.from_dict({"colonies": {"port": "https"}})
    with pytest.raises(ConfigError):
        BrowserConfig.from_dict([])


def test_console_config_from_env() -> None:
    cfg = ConsoleConfig.from_env({"BLUEPRINT_CONSOLE_RECONNECT_S": "0.5", "BLUEPRINT_CONSOLE_IDENTITY": "kiosk"})
    assert cfg.reconnect_delay_s == pytest.approx(0.5)
    assert cfg.connect_timeout_s == pytest.approx(1.5)
    assert cfg.history_capacity == 50
    assert cfg.identity == "kiosk"
    assert ConsoleConfig.from_env({}, identity="cli").identity == "cli"


class _Response:
    def __init__(self, payload, status: int = 200) -> None:
        self._payload = payload
        self.status_code = status

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._payload


def test_fetch_browser_config(monkeypatch) -> None:
    calls = []

    def fake_get(url, **kwargs):
        calls.append(url)
        return _Response(CONFIG_PAYLOAD)

    monkeypatch.setattr(console_config.requests, "get", fake_get)
    cfg = fetch_browser_config("http://relay:3000/api/config")
    assert calls == ["http://relay:3000/api/config"]
    assert cfg.colony_name == "dev"


def test_fetch_browser_config_maps_http_errors(monkeypatch) -> None:
    monkeypatch.setattr(console_config.requests, "get", lambda url, **kwargs: _Response({}, status=502))
    with pytest.raises(ConfigError):
        fetch_browser_config("http://relay:3000/api/config")

    def refused(url, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(console_config.requests, "get", refused)
    with pytest.raises(ConfigError):
        fetch_browser_config("http://relay:3000/api/config")


def test_json_file_blueprint_source(tmp_path) -> None:
    other = {**BLUEPRINT, "kind": "Medical", "metadata": {"name": "pump-1"}}
    nameless = {"kind": "DataLogger", "spec": {}}
    path = tmp_path / "blueprints.json"
    path.write_text(json.dumps({"blueprints": [BLUEPRINT, other, nameless]}), encoding="utf-8")

    blueprints = JsonFileBlueprintSource(path).get_blueprints("dev", "DataLogger")
    devices = devices_from_blueprints(blueprints)
    assert list(devices) == ["data-logger-1"]
    assert devices["data-logger-1"].desired_version == "2.9"


def test_failing_state_listener_keeps_session_processing_frames() -> None:
    session, transports, _ = _session()
    calls: list[str] = []

    def flaky(view) -> None:
        calls.append(view.device_id)
        if view.device_id == "bad":
            raise KeyError(view.device_id)

    session.model.add_listener(flaky)
    session.start()
    transport = transports[-1]
    session.controller.transport_opened(transport)

    session.controller.transport_message(
        transport, json.dumps({"type": "update", "device": "bad", "spec": {"appVersion": "1.0"}, "status": None})
    )
    assert session.model.log.head.severity is Severity.ERROR
    assert session.model.log.head.message.startswith("Error: ")
    assert session.controller.state is ConnectionState.OPEN

    session.controller.transport_message(
        transport,
        json.dumps({"type": "update", "device": "good", "spec": {"appVersion": "1.0"}, "status": {"appVersion": "1.0"}}),
    )
    assert calls == ["bad", "good"]
    assert session.model.sync_status("good") is SyncStatus.SYNCED
    assert session.model.log.head.message == "State updated: good"
