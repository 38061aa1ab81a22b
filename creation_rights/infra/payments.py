import logging
from dataclasses import dataclass
from typing import Protocol

import requests

from creation_rights.domain.errors import FabricError
from creation_rights.infra.retry import call_with_retries

logger = logging.getLogger(__name__)

STRIPE_API_BASE = "https://api.stripe.com/v1"
SUCCEEDED = "succeeded"


class PaymentProcessorError(FabricError):
    code = "payment_processor_error"


@dataclass(frozen=True)
class PaymentConfirmation:
    transaction_id: str
    status: str
    amount: int
    currency: str

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED


class PaymentProcessor(Protocol):
    def confirm(self, transaction_id: str) -> PaymentConfirmation: ...


class StripePaymentProcessor:
    """Looks up a PaymentIntent over the Stripe REST API.

    A GET is idempotent so transport failures are retried; a non-2xx answer is not.
    """

    def __init__(
        self,
        secret_key: str,
        *,
        session: requests.Session | None = None,
        timeout: float = 10.0,
        attempts: int = 3,
        base_delay: float = 0.2,
    ) -> None:
        self._secret_key = secret_key
        self._session = session or requests.Session()
        self._timeout = timeout
        self._attempts = attempts
        self._base_delay = base_delay

    def _fetch(self, transaction_id: str) -> requests.Response:
        return self._session.get(
            f"{STRIPE_API_BASE}/payment_intents/{transaction_id}",
            auth=(self._secret_key, ""),
            timeout=self._timeout,
        )

    def confirm(self, transaction_id: str) -> PaymentConfirmation:
        try:
            resp = call_with_retries(
                lambda: self._fetch(transaction_id),
                attempts=self._attempts,
                base_delay=self._base_delay,
                retry_on=(requests.ConnectionError, requests.Timeout),
                label=f"stripe confirm {transaction_id}",
            )
        except requests.RequestException as e:
            raise PaymentProcessorError(f"payment lookup failed for {transaction_id}: {e}") from e

        if resp.status_code == 404:
            return PaymentConfirmation(transaction_id=transaction_id, status="not_found", amount=0, currency="")
        if resp.status_code != 200:
            logger.error("stripe returned %s for %s", resp.status_code, transaction_id)
            raise PaymentProcessorError(f"payment lookup for {transaction_id} returned HTTP {resp.status_code}")

        body = resp.json()
        return PaymentConfirmation(
            transaction_id=str(body.get("id") or transaction_id),
            status=str(body.get("status") or "unknown"),
            amount=int(body.get("amount_received") or body.get("amount") or 0),
            currency=str(body.get("currency") or "").lower(),
        )


class UnconfiguredPaymentProcessor:
    """Used when no processor key is configured: nothing is ever confirmed."""

    def confirm(self, transaction_id: str) -> PaymentConfirmation:
        raise PaymentProcessorError("payment processor is not configured")
