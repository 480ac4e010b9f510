from __future__ import annotations

import argparse
import json
import os
import warnings
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .util.serialization import sanitize_for_json

# --------
# Defaults
# --------
DEFAULT_SENDER_EMAIL = "noreply@yourdomain.com"
DEFAULT_LOG_TYPE = "ReservationExpiry"
ENV_PREFIX = "RESV_WATCH_"
ALLOWED_CONFIG_KEYS = {
    "active_only",
    "expired_only",
    "sender_email",
    "recipients",
    "use_managed_identity",
    "managed_identity_client_id",
    "tenant_id",
    "client_id",
    "subscription",
    "workspace_id",
    "shared_key",
    "log_type",
    "json_logs",
    "log_level",
}
BOOL_CONFIG_KEYS = {"active_only", "expired_only", "use_managed_identity", "json_logs"}
STR_CONFIG_KEYS = {
    "sender_email",
    "managed_identity_client_id",
    "tenant_id",
    "client_id",
    "subscription",
    "workspace_id",
    "shared_key",
    "log_type",
    "log_level",
}


class AuthMode(str, Enum):
    INTERACTIVE = "interactive"
    TRUSTED_IDENTITY = "trusted_identity"


@dataclass(frozen=True)
class RunConfig:
    # Report filters
    active_only: bool = False
    expired_only: bool = False

    # Mail
    sender_email: str = DEFAULT_SENDER_EMAIL
    recipients: Tuple[str, ...] = ()

    # Auth
    auth_mode: AuthMode = AuthMode.INTERACTIVE
    managed_identity_client_id: Optional[str] = None
    tenant_id: Optional[str] = None  # interactive sign-in tenant
    client_id: Optional[str] = None  # public client app consented for Mail.Send
    subscription: Optional[str] = None  # id or display name; prompts when unset

    # Telemetry
    workspace_id: Optional[str] = None
    shared_key: Optional[str] = None
    log_type: str = DEFAULT_LOG_TYPE

    # Logging
    json_logs: bool = False
    log_level: str = "INFO"

    @property
    def use_managed_identity(self) -> bool:
        return self.auth_mode is AuthMode.TRUSTED_IDENTITY

    @property
    def mail_recipients(self) -> Tuple[str, ...]:
        return self.recipients or (self.sender_email,)


def telemetry_configured(cfg: RunConfig) -> bool:
    return bool(cfg.use_managed_identity and cfg.workspace_id and cfg.shared_key)


def _parse_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text) or {}
    except Exception as e:
        raise ValueError(f"Failed to parse config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Top-level config must be an object")
    return data


def _env_str(name: str) -> Optional[str]:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None:
        return None
    raw = raw.strip()
    if not raw:
        return None
    return raw


def _env_bool(name: str) -> Optional[bool]:
    raw = _env_str(name)
    if raw is None:
        return None
    return raw.lower() in {"1", "true", "yes", "on"}


def _split_addresses(value: Any, key: str) -> List[str]:
    if isinstance(value, str):
        return [a.strip() for a in value.split(",") if a.strip()]
    if isinstance(value, (list, tuple)) and all(isinstance(a, str) for a in value):
        return [a.strip() for a in value if a.strip()]
    raise ValueError(f"Config field '{key}' must be a list of strings or comma-separated string")


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        raw = value.strip().lower()
        if raw in {"1", "true", "yes", "on"}:
            return True
        if raw in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Config field '{key}' must be a boolean")


def _normalize_config_file(data: Dict[str, Any]) -> Dict[str, Any]:
    unknown = sorted(set(data.keys()) - ALLOWED_CONFIG_KEYS)
    if unknown:
        warnings.warn(f"Unknown config keys ignored: {', '.join(unknown)}")
    normalized: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in ALLOWED_CONFIG_KEYS or value is None:
            continue
        if key == "recipients":
            normalized[key] = _split_addresses(value, key)
        elif key in BOOL_CONFIG_KEYS:
            normalized[key] = _coerce_bool(key, value)
        elif key in STR_CONFIG_KEYS:
            if not isinstance(value, str):
                raise ValueError(f"Config field '{key}' must be a string")
            normalized[key] = value
    return normalized


def _compact_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Drop keys with None values so they don't override lower-precedence config.
    """
    return {k: v for k, v in data.items() if v is not None}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="resv-watch",
        description=(
            "Report Azure reservations as active or expired and email expiry warnings "
            "at 180, 90, 30, 15, 10, 5 and 1 days remaining."
        ),
    )
    parser.add_argument("--config", type=Path, help="Optional YAML/JSON config file")
    parser.add_argument(
        "--active-only",
        action="store_true",
        default=None,
        help="Report only reservations that have not expired",
    )
    parser.add_argument(
        "--expired-only",
        action="store_true",
        default=None,
        help="Report only reservations that have expired",
    )
    parser.add_argument(
        "--sender-email",
        default=None,
        help=f"Mailbox that sends expiry warnings (default {DEFAULT_SENDER_EMAIL})",
    )
    parser.add_argument(
        "--recipient",
        dest="recipients",
        action="append",
        default=None,
        help="Warning recipient; repeatable (default: the sender address)",
    )
    parser.add_argument(
        "--use-managed-identity",
        action="store_true",
        default=None,
        help="Authenticate with the managed identity instead of an interactive login",
    )
    parser.add_argument(
        "--managed-identity-client-id",
        default=None,
        help="Client id of a user-assigned managed identity",
    )
    parser.add_argument(
        "--tenant-id",
        default=None,
        help="Entra ID tenant for the interactive sign-in (default: the account's home tenant)",
    )
    parser.add_argument(
        "--client-id",
        default=None,
        help="Public client application id for the interactive sign-in; must be consented for Mail.Send",
    )
    parser.add_argument(
        "--subscription",
        default=None,
        help=(
            "Subscription id or name for the session context; skips the interactive prompt. "
            "Reservations are listed across the tenant, not filtered by this value"
        ),
    )
    parser.add_argument(
        "--log-analytics-workspace-id",
        dest="workspace_id",
        default=None,
        help="Log Analytics workspace id for run metrics (managed identity runs only)",
    )
    parser.add_argument(
        "--log-analytics-shared-key",
        dest="shared_key",
        default=None,
        help="Log Analytics workspace shared key",
    )
    parser.add_argument("--log-type", default=None, help=f"Log Analytics record type (default {DEFAULT_LOG_TYPE})")
    parser.add_argument(
        "--json-logs",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Enable JSON logs",
    )
    parser.add_argument("--log-level", default=None, help="Log level (INFO, DEBUG, ...)")
    return parser


def load_run_config(argv: Optional[List[str]] = None) -> RunConfig:
    """
    Build RunConfig by merging defaults, optional config file, env vars, and CLI args.
    Precedence (low -> high): defaults < config file < env < CLI.
    """
    ns = build_parser().parse_args(argv)

    base: Dict[str, Any] = {
        "active_only": False,
        "expired_only": False,
        "sender_email": DEFAULT_SENDER_EMAIL,
        "recipients": None,
        "use_managed_identity": False,
        "managed_identity_client_id": None,
        "tenant_id": None,
        "client_id": None,
        "subscription": None,
        "workspace_id": None,
        "shared_key": None,
        "log_type": DEFAULT_LOG_TYPE,
        "json_logs": False,
        "log_level": "INFO",
    }

    file_cfg: Dict[str, Any] = {}
    if ns.config:
        file_cfg = _normalize_config_file(_parse_config_file(Path(ns.config)))

    recipients_env = _env_str("RECIPIENTS")
    env_cfg: Dict[str, Any] = _compact_dict(
        {
            "active_only": _env_bool("ACTIVE_ONLY"),
            "expired_only": _env_bool("EXPIRED_ONLY"),
            "sender_email": _env_str("SENDER_EMAIL"),
            "recipients": _split_addresses(recipients_env, "recipients") if recipients_env else None,
            "use_managed_identity": _env_bool("USE_MANAGED_IDENTITY"),
            "managed_identity_client_id": _env_str("MANAGED_IDENTITY_CLIENT_ID"),
            "tenant_id": _env_str("TENANT_ID"),
            "client_id": _env_str("CLIENT_ID"),
            "subscription": _env_str("SUBSCRIPTION"),
            "workspace_id": _env_str("WORKSPACE_ID"),
            "shared_key": _env_str("SHARED_KEY"),
            "log_type": _env_str("LOG_TYPE"),
            "json_logs": _env_bool("JSON_LOGS"),
            "log_level": _env_str("LOG_LEVEL"),
        }
    )

    cli_cfg: Dict[str, Any] = _compact_dict(
        {
            "active_only": ns.active_only,
            "expired_only": ns.expired_only,
            "sender_email": ns.sender_email,
            "recipients": ns.recipients,
            "use_managed_identity": ns.use_managed_identity,
            "managed_identity_client_id": ns.managed_identity_client_id,
            "tenant_id": ns.tenant_id,
            "client_id": ns.client_id,
            "subscription": ns.subscription,
            "workspace_id": ns.workspace_id,
            "shared_key": ns.shared_key,
            "log_type": ns.log_type,
            "json_logs": ns.json_logs,
            "log_level": ns.log_level,
        }
    )

    merged = dict(base)
    merged.update(file_cfg)
    merged.update(env_cfg)
    merged.update(cli_cfg)

    auth_mode = AuthMode.TRUSTED_IDENTITY if merged["use_managed_identity"] else AuthMode.INTERACTIVE
    return RunConfig(
        active_only=bool(merged["active_only"]),
        expired_only=bool(merged["expired_only"]),
        sender_email=str(merged["sender_email"] or DEFAULT_SENDER_EMAIL),
        recipients=tuple(merged["recipients"] or ()),
        auth_mode=auth_mode,
        managed_identity_client_id=merged["managed_identity_client_id"],
        tenant_id=merged["tenant_id"],
        client_id=merged["client_id"],
        subscription=merged["subscription"],
        workspace_id=merged["workspace_id"],
        shared_key=merged["shared_key"],
        log_type=str(merged["log_type"] or DEFAULT_LOG_TYPE),
        json_logs=bool(merged["json_logs"]),
        log_level=str(merged["log_level"] or "INFO").upper(),
    )


def dump_config(cfg: RunConfig) -> Dict[str, Any]:
    return sanitize_for_json(
        {
            "active_only": cfg.active_only,
            "expired_only": cfg.expired_only,
            "sender_email": cfg.sender_email,
            "recipients": list(cfg.mail_recipients),
            "auth_mode": cfg.auth_mode,
            "managed_identity_client_id": cfg.managed_identity_client_id,
            "tenant_id": cfg.tenant_id,
            "client_id": cfg.client_id,
            "subscription": cfg.subscription,
            "workspace_id": cfg.workspace_id,
            "shared_key": cfg.shared_key,
            "log_type": cfg.log_type,
            "json_logs": cfg.json_logs,
            "log_level": cfg.log_level,
        }
    )
