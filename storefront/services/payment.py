"""Payment authorization port.

Checkout calls ``authorize`` inside its transaction once the payable amount
is known. No real processor is wired in; ``FormatOnlyAuthorizer`` approves
any card that passed format validation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import uuid4

from ..utils.validators import CardFields


@dataclass(frozen=True)
class AuthorizationResult:
    approved: bool
    authorization_id: Optional[str] = None
    failure_reason: Optional[str] = None


class PaymentAuthorizer(ABC):
    @abstractmethod
    def authorize(self, card: CardFields, amount: Decimal, currency: str, idempotency_key: str) -> AuthorizationResult:
        ...


class FormatOnlyAuthorizer(PaymentAuthorizer):
    def authorize(self, card, amount, currency, idempotency_key):
        return AuthorizationResult(approved=True, authorization_id=f"fmt_{idempotency_key}")


class FakeAuthorizer(PaymentAuthorizer):
    """Configurable authorizer for tests."""

    def __init__(self):
        self.should_approve = True
        self.failure_reason = "Card declined"
        self.calls: List[Dict] = []

    def configure(self, should_approve: bool, failure_reason: str = "Card declined") -> None:
        self.should_approve = should_approve
        self.failure_reason = failure_reason

    def authorize(self, card, amount, currency, idempotency_key):
        self.calls.append(
            {
                "last4": card.last4,
                "amount": amount,
                "currency": currency,
                "idempotency_key": idempotency_key,
            }
        )
        if self.should_approve:
            return AuthorizationResult(approved=True, authorization_id=f"fake_auth_{uuid4().hex[:12]}")
        return AuthorizationResult(approved=False, failure_reason=self.failure_reason)
