from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..azure.clients import ARM_SCOPE, Subscription, list_subscriptions
from ..config import AuthMode, RunConfig
from ..logging import get_logger
from ..util.errors import AuthResolutionError

try:
    from azure.identity import InteractiveBrowserCredential, ManagedIdentityCredential  # type: ignore
except Exception:  # pragma: no cover - import error surfaced at runtime
    InteractiveBrowserCredential = None  # type: ignore
    ManagedIdentityCredential = None  # type: ignore

LOG = get_logger(__name__)

GRAPH_MAIL_SEND_SCOPE = "https://graph.microsoft.com/Mail.Send"
GRAPH_DEFAULT_SCOPE = "https://graph.microsoft.com/.default"


@dataclass(frozen=True)
class Sessions:
    """
    The two live sessions a run needs. Built once by SessionEstablisher and
    passed explicitly to the fetcher and the notification dispatcher.
    """

    auth_mode: AuthMode
    cloud_credential: Any
    subscription: Optional[Subscription]
    mail_credential: Any
    mail_scope: str

    @property
    def subscription_id(self) -> Optional[str]:
        return self.subscription.subscription_id if self.subscription else None


def _require_identity() -> None:
    if InteractiveBrowserCredential is None or ManagedIdentityCredential is None:
        raise AuthResolutionError(
            "azure-identity not installed. Install dependencies and try again: pip install ."
        )


def default_credential_factory(cfg: RunConfig) -> Any:
    _require_identity()
    if cfg.auth_mode is AuthMode.TRUSTED_IDENTITY:
        if cfg.managed_identity_client_id:
            return ManagedIdentityCredential(client_id=cfg.managed_identity_client_id)  # type: ignore[misc]
        return ManagedIdentityCredential()  # type: ignore[misc]
    kwargs: Dict[str, str] = {}
    if cfg.tenant_id:
        kwargs["tenant_id"] = cfg.tenant_id
    if cfg.client_id:
        kwargs["client_id"] = cfg.client_id
    return InteractiveBrowserCredential(**kwargs)  # type: ignore[misc]


def prompt_for_subscription(subs: Sequence[Subscription]) -> str:
    from rich.console import Console
    from rich.prompt import Prompt

    console = Console()
    console.print("\n[bold]Multiple subscriptions available:[/bold]")
    console.print("[dim]The choice sets the session context; reservations are listed across the tenant.[/dim]")
    for idx, sub in enumerate(subs, start=1):
        console.print(f"  [cyan]{idx}[/cyan]) {sub.display_name} [dim]({sub.subscription_id})[/dim]")
    return Prompt.ask("Select subscription context", default="1")


def choose_subscription(
    subs: Sequence[Subscription],
    *,
    preferred: Optional[str] = None,
    prompt: Optional[Callable[[Sequence[Subscription]], str]] = None,
) -> Subscription:
    """
    Pick the subscription for this run.
    - preferred matches a subscription id or display name (case-insensitive)
    - a single subscription is used as-is
    - otherwise prompt() is asked for a 1-based index; with no prompt, the first one wins
    """
    if not subs:
        raise AuthResolutionError("No subscriptions found for the signed-in account")
    if preferred:
        wanted = preferred.strip().lower()
        for sub in subs:
            if wanted in (sub.subscription_id.lower(), sub.display_name.lower()):
                return sub
        raise AuthResolutionError(f"Subscription not found: {preferred}")
    if len(subs) == 1 or prompt is None:
        return subs[0]

    answer = str(prompt(subs)).strip()
    try:
        index = int(answer)
    except ValueError:
        raise AuthResolutionError(f"Invalid selection: {answer!r}") from None
    if index < 1 or index > len(subs):
        raise AuthResolutionError(f"Invalid selection: {index} (expected 1-{len(subs)})")
    return subs[index - 1]


def _acquire(credential: Any, scope: str, what: str) -> None:
    try:
        credential.get_token(scope)
    except Exception as e:
        raise AuthResolutionError(f"Failed to authenticate {what}: {e}") from e


class SessionEstablisher:
    """
    Check-then-reuse holder for the cloud and mail sessions.

    The auth mode decides everything here: interactive runs sign in through the
    browser and may prompt for a subscription; trusted-identity runs use the
    managed identity for both services, never prompt, and tolerate an
    identity that sees no subscription.
    """

    def __init__(
        self,
        cfg: RunConfig,
        *,
        credential_factory: Callable[[RunConfig], Any] = default_credential_factory,
        subscription_lister: Callable[[Any], List[Subscription]] = list_subscriptions,
        prompt: Optional[Callable[[Sequence[Subscription]], str]] = prompt_for_subscription,
    ) -> None:
        self._cfg = cfg
        self._credential_factory = credential_factory
        self._subscription_lister = subscription_lister
        self._prompt = prompt
        self._sessions: Optional[Sessions] = None

    @property
    def established(self) -> bool:
        return self._sessions is not None

    def ensure(self) -> Sessions:
        if self._sessions is not None:
            LOG.info(
                "Sessions already established; reusing",
                extra={"auth_mode": self._cfg.auth_mode.value, "subscription_id": self._sessions.subscription_id},
            )
            return self._sessions

        mode = self._cfg.auth_mode
        try:
            credential = self._credential_factory(self._cfg)
        except AuthResolutionError:
            raise
        except Exception as e:
            raise AuthResolutionError(f"Failed to create {mode.value} credential: {e}") from e

        _acquire(credential, ARM_SCOPE, "to Azure Resource Manager")
        subs = self._subscription_lister(credential)
        subscription: Optional[Subscription] = None
        if mode is AuthMode.TRUSTED_IDENTITY and not subs:
            # The reservation listing is tenant-wide, so an identity with no
            # visible subscription can still run.
            LOG.warning(
                "No subscriptions visible to the managed identity; continuing without a subscription context",
                extra={"auth_mode": mode.value},
            )
        else:
            prompt = self._prompt if mode is AuthMode.INTERACTIVE else None
            subscription = choose_subscription(subs, preferred=self._cfg.subscription, prompt=prompt)
        LOG.info(
            "Cloud session established",
            extra={
                "auth_mode": mode.value,
                "subscription_id": subscription.subscription_id if subscription else None,
                "subscription_name": subscription.display_name if subscription else None,
            },
        )

        mail_scope = GRAPH_DEFAULT_SCOPE if mode is AuthMode.TRUSTED_IDENTITY else GRAPH_MAIL_SEND_SCOPE
        _acquire(credential, mail_scope, "to Microsoft Graph")
        LOG.info("Mail session established", extra={"auth_mode": mode.value, "scope": mail_scope})

        self._sessions = Sessions(
            auth_mode=mode,
            cloud_credential=credential,
            subscription=subscription,
            mail_credential=credential,
            mail_scope=mail_scope,
        )
        return self._sessions
