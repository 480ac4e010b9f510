from __future__ import annotations

import base64
import hashlib
import hmac
import json
from datetime import datetime
from typing import Any, Dict, Optional

import requests

from ..config import RunConfig, telemetry_configured
from ..logging import get_logger
from ..models import SummaryMetrics
from ..util.errors import Outcome
from ..util.time import rfc1123_date

LOG = get_logger(__name__)

RESOURCE_PATH = "/api/logs"
API_VERSION = "2016-04-01"
CONTENT_TYPE = "application/json"
POST_TIMEOUT = (10, 30)


def build_signature(
    workspace_id: str,
    shared_key: str,
    date: str,
    content_length: int,
    *,
    method: str = "POST",
    content_type: str = CONTENT_TYPE,
    resource: str = RESOURCE_PATH,
) -> str:
    """
    SharedKey authorization value for the HTTP Data Collector API.
    The key is base64 encoded; the digest is HMAC-SHA256 over the canonical string.
    """
    string_to_hash = f"{method}\n{content_length}\n{content_type}\nx-ms-date:{date}\n{resource}"
    decoded_key = base64.b64decode(shared_key)
    digest = hmac.new(decoded_key, string_to_hash.encode("utf-8"), digestmod=hashlib.sha256).digest()
    return f"SharedKey {workspace_id}:{base64.b64encode(digest).decode('utf-8')}"


def ingestion_url(workspace_id: str) -> str:
    return f"https://{workspace_id}.ods.opinsights.azure.com{RESOURCE_PATH}?api-version={API_VERSION}"


class TelemetryEmitter:
    def __init__(
        self,
        workspace_id: str,
        shared_key: str,
        *,
        log_type: str,
        http: Optional[Any] = None,
    ) -> None:
        self._workspace_id = workspace_id
        self._shared_key = shared_key
        self._log_type = log_type
        self._http = http or requests
        self.emitted = 0

    @classmethod
    def from_config(cls, cfg: RunConfig, *, http: Optional[Any] = None) -> Optional[TelemetryEmitter]:
        """
        Return an emitter when the run may publish metrics, else None.
        Warns once when managed identity is on but the workspace is not configured.
        """
        if not cfg.use_managed_identity:
            return None
        if not telemetry_configured(cfg):
            LOG.warning(
                "Managed identity is enabled but Log Analytics workspace id/shared key are not set; "
                "run metrics will not be published",
                extra={"workspace_id_set": bool(cfg.workspace_id), "key_set": bool(cfg.shared_key)},
            )
            return None
        return cls(str(cfg.workspace_id), str(cfg.shared_key), log_type=cfg.log_type, http=http)

    def build_request(self, metrics: SummaryMetrics, now: Optional[datetime] = None) -> Dict[str, Any]:
        body = json.dumps([metrics.to_payload()])
        date = rfc1123_date(now)
        signature = build_signature(
            self._workspace_id,
            self._shared_key,
            date,
            len(body.encode("utf-8")),
        )
        return {
            "url": ingestion_url(self._workspace_id),
            "data": body,
            "headers": {
                "Content-Type": CONTENT_TYPE,
                "Authorization": signature,
                "Log-Type": self._log_type,
                "x-ms-date": date,
            },
        }

    def emit(self, metrics: SummaryMetrics) -> Outcome:
        try:
            request = self.build_request(metrics)
            resp = self._http.post(timeout=POST_TIMEOUT, **request)
            resp.raise_for_status()
        except Exception as e:
            return Outcome.failure(f"{type(e).__name__}: {e}")
        self.emitted += 1
        LOG.info("Run metrics sent to Log Analytics", extra={"log_type": self._log_type, **metrics.to_payload()})
        return Outcome.success()
