from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol


@dataclass
class CheckoutSession:
    reference: str
    url: str


@dataclass
class PushRequest:
    reference: str
    customer_message: Optional[str] = None


class RedirectPaymentGateway(Protocol):
    async def create_session(self, amount: Decimal, reference: str, description: str) -> CheckoutSession:
        ...

    async def get_status(self, reference: str) -> str:
        ...


class PushPaymentGateway(Protocol):
    async def initiate(self, phone: str, amount: Decimal, reference: str, description: str) -> PushRequest:
        ...

    async def get_status(self, reference: str) -> str:
        ...
