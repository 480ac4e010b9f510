from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from ..util.errors import AuthResolutionError, map_azure_error

try:
    from azure.mgmt.reservations import AzureReservationAPI  # type: ignore
    from azure.mgmt.subscription import SubscriptionClient  # type: ignore
except Exception:  # pragma: no cover - surfaced when the client is first needed
    AzureReservationAPI = None  # type: ignore
    SubscriptionClient = None  # type: ignore


ARM_SCOPE = "https://management.azure.com/.default"


@dataclass(frozen=True)
class Subscription:
    subscription_id: str
    display_name: str
    tenant_id: Optional[str] = None
    state: Optional[str] = None


def _require(client_cls: Any, package: str) -> Any:
    if client_cls is None:
        raise AuthResolutionError(f"{package} not installed. Install dependencies and try again: pip install .")
    return client_cls


def get_subscription_client(credential: Any) -> Any:
    return _require(SubscriptionClient, "azure-mgmt-subscription")(credential)


def get_reservation_client(credential: Any) -> Any:
    return _require(AzureReservationAPI, "azure-mgmt-reservations")(credential)


def list_subscriptions(
    credential: Any,
    client_factory: Optional[Callable[[Any], Any]] = None,
) -> List[Subscription]:
    """
    Return the subscriptions visible to the credential, ordered by display name.
    Disabled subscriptions are dropped.
    """
    client = (client_factory or get_subscription_client)(credential)
    try:
        items = list(client.subscriptions.list())
    except Exception as e:
        mapped = map_azure_error(e, "Azure SDK error while listing subscriptions")
        if mapped:
            raise AuthResolutionError(str(mapped)) from e
        raise
    subs: List[Subscription] = []
    for it in items:
        state = getattr(it, "state", None)
        state = getattr(state, "value", state)
        if state and str(state).lower() == "disabled":
            continue
        subs.append(
            Subscription(
                subscription_id=str(it.subscription_id),
                display_name=str(getattr(it, "display_name", None) or it.subscription_id),
                tenant_id=getattr(it, "tenant_id", None),
                state=str(state) if state else None,
            )
        )
    return sorted(subs, key=lambda s: (s.display_name.lower(), s.subscription_id))
