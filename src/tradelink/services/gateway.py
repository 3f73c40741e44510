"""Payment gateway used for supplier payouts and buyer refunds."""

from abc import ABC, abstractmethod

import httpx
from pydantic import BaseModel

from tradelink.infrastructure.logging_config import get_logger
from tradelink.models.config import Settings
from tradelink.services.errors import PaymentGatewayError
from tradelink.utils.helpers import generate_reference

logger = get_logger(__name__)


def _json_object(response: httpx.Response) -> dict | None:
    """The response body as a JSON object, or None for anything else."""
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class GatewayResult(BaseModel):
    success: bool
    transaction_id: str | None = None
    error: str | None = None


class PaymentGateway(ABC):
    """Money movement to and from marketplace parties."""

    name = "base"

    @abstractmethod
    def transfer(self, reference: str, amount: float, method: str, destination: dict[str, str]) -> GatewayResult:
        """Send ``amount`` to a supplier."""
        pass

    @abstractmethod
    def refund(self, reference: str, amount: float) -> GatewayResult:
        """Return ``amount`` to the buyer of the referenced order."""
        pass

    def close(self) -> None:
        pass


class SimulatedPaymentGateway(PaymentGateway):
    """In-process gateway for development and tests.

    Succeeds unless constructed with ``failure``, in which case every call
    fails with that message.
    """

    name = "simulated"

    def __init__(self, failure: str | None = None):
        self.failure = failure
        self.calls: list[tuple[str, str, float]] = []

    def _result(self, prefix: str) -> GatewayResult:
        if self.failure:
            return GatewayResult(success=False, error=self.failure)
        return GatewayResult(success=True, transaction_id=generate_reference(prefix))

    def transfer(self, reference, amount, method, destination):
        self.calls.append(("transfer", reference, amount))
        return self._result("TXN")

    def refund(self, reference, amount):
        self.calls.append(("refund", reference, amount))
        return self._result("RFD")


class HTTPPaymentGateway(PaymentGateway):
    """Gateway backed by a payment provider's REST API."""

    name = "http"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"} if api_key else {},
            transport=transport,
        )

    def _post(self, path: str, payload: dict) -> GatewayResult:
        try:
            response = self._client.post(path, json=payload)
        except httpx.HTTPError as e:
            logger.warning("payment_gateway_unreachable", path=path, error=str(e))
            return GatewayResult(success=False, error=f"Gateway unreachable: {e}")

        data = _json_object(response)
        if response.is_success:
            if data is None:
                logger.warning("payment_gateway_bad_body", path=path, status=response.status_code)
                return GatewayResult(success=False, error=f"Gateway returned an unreadable body for {path}")
            transaction_id = data.get("transaction_id") or data.get("id")
            if not transaction_id:
                raise PaymentGatewayError(f"Gateway accepted {path} without a transaction id")
            return GatewayResult(success=True, transaction_id=str(transaction_id))

        detail = (data or {}).get("error") or response.text
        logger.warning("payment_gateway_rejected", path=path, status=response.status_code)
        return GatewayResult(success=False, error=f"Gateway error {response.status_code}: {detail}")

    def transfer(self, reference, amount, method, destination):
        return self._post(
            "/transfers",
            {"reference": reference, "amount": amount, "method": method, "destination": destination},
        )

    def refund(self, reference, amount):
        return self._post("/refunds", {"reference": reference, "amount": amount})

    def close(self) -> None:
        self._client.close()


def get_payment_gateway(settings: Settings) -> PaymentGateway:
    """HTTP gateway when a URL is configured, simulated otherwise."""
    if settings.payment_gateway_url:
        return HTTPPaymentGateway(
            settings.payment_gateway_url,
            api_key=settings.payment_gateway_api_key,
            timeout=settings.payment_gateway_timeout_seconds,
        )
    return SimulatedPaymentGateway()
