from __future__ import annotations

import base64
import io
import json
import logging
import types
from datetime import datetime, timedelta, timezone

import pytest
from rich.console import Console

from reservation_watch import cli
from reservation_watch.auth.providers import GRAPH_MAIL_SEND_SCOPE, Sessions
from reservation_watch.azure.clients import Subscription
from reservation_watch.config import AuthMode, RunConfig
from reservation_watch.export import log_analytics
from reservation_watch.logging import setup_logging
from reservation_watch.models import Reservation
from reservation_watch.notify import mailer
from reservation_watch.util.errors import AuthResolutionError

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
KEY = base64.b64encode(b"k").decode("ascii")


class FakeCredential:
    def get_token(self, scope: str):
        return types.SimpleNamespace(token="tok")


class FakeResponse:
    def raise_for_status(self) -> None:
        return None


class RecordingHttp:
    def __init__(self, exc: Exception | None = None) -> None:
        self.calls: list[dict] = []
        self._exc = exc

    def post(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        if self._exc is not None:
            raise self._exc
        return FakeResponse()


def _sessions(mode: AuthMode = AuthMode.INTERACTIVE) -> Sessions:
    cred = FakeCredential()
    return Sessions(
        auth_mode=mode,
        cloud_credential=cred,
        subscription=Subscription(subscription_id="sub-1", display_name="Prod"),
        mail_credential=cred,
        mail_scope=GRAPH_MAIL_SEND_SCOPE,
    )


class FakeEstablisher:
    def __init__(self, cfg: RunConfig) -> None:
        self.cfg = cfg

    def ensure(self) -> Sessions:
        return _sessions(self.cfg.auth_mode)


class FailingEstablisher(FakeEstablisher):
    def ensure(self) -> Sessions:
        raise AuthResolutionError("Failed to authenticate to Azure Resource Manager: login cancelled")


def _res(rid: str, days: int) -> Reservation:
    return Reservation(
        reservation_id=rid,
        sku_name="Standard_D2s_v5",
        effective_date=NOW - timedelta(days=365),
        expiry_date=NOW + timedelta(days=days, hours=1),
        quantity=1,
    )


def _console() -> tuple[Console, io.StringIO]:
    buf = io.StringIO()
    return Console(file=buf, width=120, color_system=None), buf


@pytest.fixture(autouse=True)
def _reset_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    setattr(setup_logging, "_configured", False)
    yield
    root.handlers = handlers
    root.setLevel(level)
    setattr(setup_logging, "_configured", False)


@pytest.fixture
def mail_http(monkeypatch) -> RecordingHttp:
    http = RecordingHttp()
    monkeypatch.setattr(mailer, "requests", http)
    return http


def test_empty_inventory_short_circuits(monkeypatch, mail_http) -> None:
    monkeypatch.setattr(cli, "fetch_reservations", lambda sessions: [])
    emitter = types.SimpleNamespace(emit=lambda metrics: pytest.fail("telemetry must not be sent"))
    console, buf = _console()

    rc = cli.cmd_report(RunConfig(), emitter=emitter, establisher=FakeEstablisher(RunConfig()), console=console, now=NOW)

    assert rc == 0
    assert "No reservations found." in buf.getvalue()
    assert mail_http.calls == []


def test_exact_180_days_sends_one_warning_and_survives_failure(monkeypatch) -> None:
    http = RecordingHttp(exc=ConnectionError("graph unreachable"))
    monkeypatch.setattr(mailer, "requests", http)
    monkeypatch.setattr(cli, "fetch_reservations", lambda sessions: [_res("r-180", 180), _res("r-200", 200)])
    console, buf = _console()

    rc = cli.cmd_report(RunConfig(), establisher=FakeEstablisher(RunConfig()), console=console, now=NOW)

    assert rc == 0
    assert len(http.calls) == 1
    assert "6 months" in http.calls[0]["json"]["message"]["subject"]
    assert "r-200" in buf.getvalue()


@pytest.mark.parametrize(
    "cfg,expected",
    [
        (RunConfig(active_only=True), ["Active"]),
        (RunConfig(expired_only=True), ["Expired"]),
        (RunConfig(), ["Active", "Expired"]),
    ],
)
def test_filter_flags_select_partitions(monkeypatch, mail_http, cfg: RunConfig, expected: list) -> None:
    monkeypatch.setattr(cli, "fetch_reservations", lambda sessions: [_res("live", 400), _res("gone", -10)])
    console, buf = _console()

    cli.cmd_report(cfg, establisher=FakeEstablisher(cfg), console=console, now=NOW)

    out = buf.getvalue()
    headings = [label for label in ("Active", "Expired") if f"{label} reservations (" in out]
    assert headings == expected
    if expected == ["Active", "Expired"]:
        assert out.index("Active reservations (") < out.index("Expired reservations (")
    assert ("live" in out) == ("Active" in expected)
    assert ("gone" in out) == ("Expired" in expected)


def test_success_metrics_emitted_once(monkeypatch, mail_http) -> None:
    emitted = []
    emitter = types.SimpleNamespace(emit=lambda metrics: emitted.append(metrics) or types.SimpleNamespace(ok=True))
    monkeypatch.setattr(cli, "fetch_reservations", lambda sessions: [_res("a", 90), _res("b", 400), _res("c", -3)])
    console, _ = _console()

    cli.cmd_report(RunConfig(), emitter=emitter, establisher=FakeEstablisher(RunConfig()), console=console, now=NOW)

    assert len(emitted) == 1
    assert emitted[0].to_payload() == {"TotalActive": 2, "TotalExpired": 1, "ExpiringSoon": 1, "Success": 1}
    assert len(mail_http.calls) == 1


def test_managed_identity_without_workspace_warns_and_completes(monkeypatch, capsys, mail_http) -> None:
    monkeypatch.setattr(cli, "SessionEstablisher", FakeEstablisher)
    monkeypatch.setattr(cli, "fetch_reservations", lambda sessions: [_res("a", 400)])

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--use-managed-identity"])

    assert excinfo.value.code == 0
    err = capsys.readouterr().err
    assert err.count("run metrics will not be published") == 1


def test_auth_failure_exits_1_before_fetch(monkeypatch, capsys) -> None:
    def _fetch(sessions):
        pytest.fail("inventory must not be fetched")

    telemetry_http = RecordingHttp()
    monkeypatch.setattr(cli, "SessionEstablisher", FailingEstablisher)
    monkeypatch.setattr(cli, "fetch_reservations", _fetch)
    monkeypatch.setattr(log_analytics, "requests", telemetry_http)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(
            [
                "--use-managed-identity",
                "--log-analytics-workspace-id",
                "ws",
                "--log-analytics-shared-key",
                KEY,
            ]
        )

    assert excinfo.value.code == 1
    err = capsys.readouterr().err
    assert "Execution failed" in err
    assert "login cancelled" in err
    assert "Traceback" in err
    assert len(telemetry_http.calls) == 1
    assert json.loads(telemetry_http.calls[0]["data"]) == [{"Success": 0}]


def test_help_exits_zero_without_work(monkeypatch) -> None:
    monkeypatch.setattr(cli, "SessionEstablisher", FailingEstablisher)
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--help"])
    assert excinfo.value.code == 0


def test_usage_error_exits_1(monkeypatch, capsys) -> None:
    monkeypatch.setattr(cli, "SessionEstablisher", FailingEstablisher)
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--no-such-flag"])
    assert excinfo.value.code == 1
    assert "unrecognized arguments" in capsys.readouterr().err
