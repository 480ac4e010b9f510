from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from ..models import Reservation, ReservationSet
from ..util.errors import CloudClientError, map_azure_error
from ..util.time import to_utc
from .clients import get_reservation_client


def _to_dict(obj: Any) -> Dict[str, Any]:
    """
    Convert an Azure SDK model to a dict with snake_case keys.
    ReservationResponse nests most fields under 'properties'.
    """
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    as_dict = getattr(obj, "as_dict", None)
    if callable(as_dict):
        try:
            data = as_dict()
            if isinstance(data, dict):
                return data
        except Exception:
            pass
    data = getattr(obj, "__dict__", None)
    if isinstance(data, dict):
        return {k: v for k, v in data.items() if not k.startswith("_")}
    return {}


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def reservation_from_model(obj: Any) -> Reservation:
    """
    Build a Reservation from a ReservationResponse (SDK model or its dict form).
    Both snake_case (as_dict) and camelCase (REST payload) keys are accepted.
    """
    data = _to_dict(obj)
    props = _to_dict(data.get("properties"))
    sku = data.get("sku")
    sku_name = _to_dict(sku).get("name") if not isinstance(sku, str) else sku

    expiry_raw = _first(props, "expiry_date_time", "expiryDateTime", "expiry_date", "expiryDate")
    expiry = to_utc(expiry_raw)
    if expiry is None:
        raise CloudClientError(f"Reservation {data.get('id') or data.get('name')} has no expiry date")

    quantity = _first(props, "quantity")
    return Reservation(
        reservation_id=str(_first(data, "id", "name") or ""),
        sku_name=str(sku_name or props.get("sku_description") or "Unknown"),
        effective_date=to_utc(
            _first(props, "effective_date_time", "effectiveDateTime", "benefit_start_time", "benefitStartTime")
        ),
        expiry_date=expiry,
        quantity=int(quantity) if quantity is not None else 0,
        display_name=_first(props, "display_name", "displayName"),
        provisioning_state=_first(props, "provisioning_state", "provisioningState"),
    )


def fetch_reservations(
    sessions: Any,
    *,
    client_factory: Optional[Callable[[Any], Any]] = None,
) -> List[Reservation]:
    """
    List every reservation visible to the cloud session, in API order.
    The inventory is read once per run; nothing is cached.
    """
    client = (client_factory or get_reservation_client)(sessions.cloud_credential)
    try:
        models: Iterable[Any] = list(client.reservation.list_all())
    except Exception as e:
        mapped = map_azure_error(e, "Azure SDK error while listing reservations")
        if mapped:
            raise mapped from e
        raise
    return [reservation_from_model(m) for m in models]


def partition_reservations(reservations: Sequence[Reservation], now: datetime) -> ReservationSet:
    active: List[Reservation] = []
    expired: List[Reservation] = []
    for r in reservations:
        if r.expiry_date < now:
            expired.append(r)
        else:
            active.append(r)
    return ReservationSet(active=tuple(active), expired=tuple(expired), reference_time=now)
