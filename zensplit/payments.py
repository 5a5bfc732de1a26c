"""
Lifecycle rules for settlement payments.

A payment is declared by the payer as ``pending``; the payee verifies it, or
either party cancels it. Only verified payments move balances.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping

from .engine import VERIFIED, InvalidInput, ZERO, normalize_email, parse_amount, round_currency

logger = logging.getLogger(__name__)

PENDING = "pending"
CANCELLED = "cancelled"
STATUSES = (PENDING, VERIFIED, CANCELLED)

ACTION_STATUS = {"verify": VERIFIED, "cancel": CANCELLED}

# codes that mean "not your payment to change" rather than a malformed request
PERMISSION_ERRORS = {"only_payee_can_verify", "only_participants_can_cancel"}


class PaymentError(ValueError):
    """Carries a snake_case code describing why a payment was rejected."""


def declare_payment(data: Mapping[str, Any]) -> Dict[str, Any]:
    for field_name in ("payer", "payee", "amount"):
        if data.get(field_name) in (None, ""):
            raise PaymentError(f"missing_{field_name}")

    try:
        payer = normalize_email(data["payer"])
        payee = normalize_email(data["payee"])
    except InvalidInput:
        raise PaymentError("invalid_party") from None

    if not payer or not payee:
        raise PaymentError("invalid_party")
    if payer == payee:
        raise PaymentError("payer_is_payee")

    amount = round_currency(parse_amount(data["amount"]))
    if amount <= ZERO:
        raise PaymentError("invalid_amount")

    payment = {**data, "payer": payer, "payee": payee, "amount": amount, "status": PENDING}
    logger.info("Payment declared: %s -> %s %s", payer, payee, amount)
    return payment


def transition_payment(payment: Mapping[str, Any], action: str, actor_email: str) -> Dict[str, Any]:
    if action not in ACTION_STATUS:
        raise PaymentError("invalid_action")

    status = payment.get("status")
    if status != PENDING:
        raise PaymentError(f"payment_already_{status}" if status in STATUSES else "invalid_status")

    try:
        actor = normalize_email(actor_email)
        payer = normalize_email(payment.get("payer"))
        payee = normalize_email(payment.get("payee"))
    except InvalidInput:
        raise PaymentError("invalid_party") from None

    if action == "verify" and actor != payee:
        raise PaymentError("only_payee_can_verify")
    if action == "cancel" and actor not in (payer, payee):
        raise PaymentError("only_participants_can_cancel")

    new_status = ACTION_STATUS[action]
    logger.info("Payment %s -> %s marked %s by %s", payer, payee, new_status, actor)
    return {**payment, "status": new_status}


def verified_only(payments: Iterable[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    return [payment for payment in payments if payment.get("status") == VERIFIED]
