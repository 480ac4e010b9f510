from __future__ import annotations

import pytest

from reservation_watch.config import (
    DEFAULT_SENDER_EMAIL,
    AuthMode,
    RunConfig,
    dump_config,
    load_run_config,
    telemetry_configured,
)
from reservation_watch.util.serialization import REDACTED_VALUE


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in (
        "ACTIVE_ONLY",
        "EXPIRED_ONLY",
        "SENDER_EMAIL",
        "RECIPIENTS",
        "USE_MANAGED_IDENTITY",
        "TENANT_ID",
        "CLIENT_ID",
        "WORKSPACE_ID",
        "SHARED_KEY",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(f"RESV_WATCH_{name}", raising=False)


def test_defaults() -> None:
    cfg = load_run_config(argv=[])
    assert isinstance(cfg, RunConfig)
    assert cfg.sender_email == DEFAULT_SENDER_EMAIL == "noreply@yourdomain.com"
    assert cfg.auth_mode is AuthMode.INTERACTIVE
    assert cfg.active_only is False
    assert cfg.expired_only is False
    assert cfg.mail_recipients == (DEFAULT_SENDER_EMAIL,)
    assert telemetry_configured(cfg) is False


def test_flags_parsed() -> None:
    cfg = load_run_config(
        argv=[
            "--active-only",
            "--sender-email",
            "ops@example.com",
            "--use-managed-identity",
            "--log-analytics-workspace-id",
            "ws-1",
            "--log-analytics-shared-key",
            "a2V5",
        ]
    )
    assert cfg.active_only is True
    assert cfg.sender_email == "ops@example.com"
    assert cfg.auth_mode is AuthMode.TRUSTED_IDENTITY
    assert cfg.workspace_id == "ws-1"
    assert telemetry_configured(cfg) is True


def test_help_exits_zero(capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        load_run_config(argv=["--help"])
    assert excinfo.value.code == 0
    assert "--expired-only" in capsys.readouterr().out


def test_workspace_without_managed_identity_is_not_telemetry() -> None:
    cfg = load_run_config(argv=["--log-analytics-workspace-id", "ws", "--log-analytics-shared-key", "a2V5"])
    assert telemetry_configured(cfg) is False


def test_recipients_repeatable() -> None:
    cfg = load_run_config(argv=["--recipient", "a@example.com", "--recipient", "b@example.com"])
    assert cfg.mail_recipients == ("a@example.com", "b@example.com")


def test_config_file_used_when_env_and_cli_missing(tmp_path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("sender_email: file@example.com\nrecipients: x@example.com, y@example.com\n", encoding="utf-8")

    cfg = load_run_config(argv=["--config", str(cfg_path)])
    assert cfg.sender_email == "file@example.com"
    assert cfg.recipients == ("x@example.com", "y@example.com")


def test_env_overrides_config_file(monkeypatch, tmp_path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("sender_email: file@example.com\n", encoding="utf-8")
    monkeypatch.setenv("RESV_WATCH_SENDER_EMAIL", "env@example.com")

    cfg = load_run_config(argv=["--config", str(cfg_path)])
    assert cfg.sender_email == "env@example.com"


def test_cli_overrides_env_and_config(monkeypatch, tmp_path) -> None:
    cfg_path = tmp_path / "config.json"
    cfg_path.write_text('{"sender_email": "file@example.com", "use_managed_identity": true}', encoding="utf-8")
    monkeypatch.setenv("RESV_WATCH_SENDER_EMAIL", "env@example.com")

    cfg = load_run_config(argv=["--config", str(cfg_path), "--sender-email", "cli@example.com"])
    assert cfg.sender_email == "cli@example.com"
    assert cfg.auth_mode is AuthMode.TRUSTED_IDENTITY


def test_env_boolean(monkeypatch) -> None:
    monkeypatch.setenv("RESV_WATCH_EXPIRED_ONLY", "yes")
    cfg = load_run_config(argv=[])
    assert cfg.expired_only is True


def test_unknown_config_keys_warn(tmp_path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("sender_email: a@example.com\nunknown_key: value\n", encoding="utf-8")

    with pytest.warns(UserWarning):
        cfg = load_run_config(argv=["--config", str(cfg_path)])
    assert cfg.sender_email == "a@example.com"


def test_invalid_config_type_raises(tmp_path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("active_only: maybe\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_run_config(argv=["--config", str(cfg_path)])


def test_dump_config_redacts_shared_key() -> None:
    cfg = RunConfig(auth_mode=AuthMode.TRUSTED_IDENTITY, workspace_id="ws", shared_key="c2VjcmV0")
    dumped = dump_config(cfg)
    assert dumped["shared_key"] == REDACTED_VALUE
    assert dumped["auth_mode"] == "trusted_identity"
    assert dumped["workspace_id"] == "ws"


def test_interactive_sign_in_tenant_and_client_layers(monkeypatch, tmp_path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("tenant_id: file-tenant\nclient_id: file-app\n", encoding="utf-8")
    monkeypatch.setenv("RESV_WATCH_TENANT_ID", "env-tenant")

    cfg = load_run_config(argv=["--config", str(cfg_path), "--client-id", "cli-app"])
    assert cfg.tenant_id == "env-tenant"
    assert cfg.client_id == "cli-app"
    assert RunConfig().tenant_id is None
    assert RunConfig().client_id is None


def test_subscription_help_says_it_does_not_filter(capsys) -> None:
    with pytest.raises(SystemExit):
        load_run_config(argv=["--help"])
    help_text = " ".join(capsys.readouterr().out.split())
    assert "not filtered by this value" in help_text
