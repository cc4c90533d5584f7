"""
Payment gateway collaborator.

Pre-authorization, capture and refund against the external payment
processor. Every failure reaches callers as UpstreamError; raw transport
errors never leak.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from concierge_backend.app.core.config import settings
from concierge_backend.app.core.exceptions import UpstreamError
from concierge_backend.app.core.reliability import CircuitOpenError, payment_circuit_breaker

logger = logging.getLogger(__name__)


class PaymentGateway(ABC):
    """Interface consumed by the booking state machine."""

    @abstractmethod
    async def preauthorize(self, amount: float, reference: str) -> str:
        """Hold `amount`; returns the transaction reference."""

    @abstractmethod
    async def capture(self, transaction_ref: str, amount: float) -> None:
        """Capture the final amount against a held transaction."""

    @abstractmethod
    async def refund(self, transaction_ref: str, amount: float, reason: str) -> None:
        """Refund (part of) a captured or held transaction."""


class HttpPaymentGateway(PaymentGateway):
    """JSON-over-HTTP payment processor client guarded by a circuit breaker."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        async def send() -> Dict[str, Any]:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(path, json=payload, headers=headers)
                response.raise_for_status()
                return response.json()

        try:
            return await payment_circuit_breaker.call(send)
        except CircuitOpenError as e:
            raise UpstreamError("payment", str(e))
        except httpx.HTTPStatusError as e:
            logger.error("Payment gateway rejected %s: HTTP %s", path, e.response.status_code)
            raise UpstreamError("payment", f"HTTP {e.response.status_code}", {"path": path})
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Payment gateway call %s failed: %s", path, e)
            raise UpstreamError("payment", type(e).__name__, {"path": path})

    async def preauthorize(self, amount: float, reference: str) -> str:
        body = await self._post("/v1/preauthorizations", {"amount": round(amount, 2), "reference": reference})
        transaction_ref = body.get("transaction_ref")
        if not transaction_ref:
            raise UpstreamError("payment", "preauthorization returned no transaction reference")
        return transaction_ref

    async def capture(self, transaction_ref: str, amount: float) -> None:
        await self._post(f"/v1/transactions/{transaction_ref}/capture", {"amount": round(amount, 2)})

    async def refund(self, transaction_ref: str, amount: float, reason: str) -> None:
        await self._post(
            f"/v1/transactions/{transaction_ref}/refund",
            {"amount": round(amount, 2), "reason": reason},
        )


_gateway: PaymentGateway = HttpPaymentGateway(
    base_url=settings.payment_gateway_url,
    api_key=settings.payment_gateway_api_key,
    timeout=settings.payment_timeout_seconds,
)


def get_payment_gateway() -> PaymentGateway:
    return _gateway


def set_payment_gateway(gateway: PaymentGateway) -> None:
    global _gateway
    _gateway = gateway
