"""
Balance calculation engine for shared group expenses.

Turns a snapshot of expense records and verified settlement payments into a
net balance per user. Balances are globally signed: a positive balance means
the group owes that user money, a negative balance means the user owes the
group. The current user is only used to drop self-entries and to build the
summary.
"""
from __future__ import annotations

import logging
import math
import re
from collections import deque
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
TOLERANCE = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

VERIFIED = "verified"

_NON_NUMERIC = re.compile(r"[^\d.\-]")
_NUMERIC_PREFIX = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")


class InvalidInput(ValueError):
    """Raised when an engine operation receives structurally invalid arguments."""


@dataclass
class LedgerEntry:
    balance: Decimal = ZERO
    paid: Decimal = ZERO
    owes: Decimal = ZERO
    split_total: Decimal = ZERO


@dataclass
class SplitResult:
    is_valid: bool = False
    errors: List[str] = field(default_factory=list)
    splits: Dict[str, Decimal] = field(default_factory=dict)
    participants: List[str] = field(default_factory=list)


@dataclass
class ProcessedExpense:
    index: int
    original_expense: Any
    is_valid: bool = False
    errors: List[str] = field(default_factory=list)
    amount: Decimal = ZERO
    payer: Optional[str] = None
    splits: Dict[str, Decimal] = field(default_factory=dict)
    participants: List[str] = field(default_factory=list)


@dataclass
class Settlement:
    payer: str
    payee: str
    amount: Decimal


Ledger = Dict[str, LedgerEntry]
Transfer = Tuple[str, str, Decimal]


def parse_amount(value: Any) -> Decimal:
    """Coerce a user supplied amount to a non-negative Decimal, 0 when unusable."""
    if isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return ZERO
        amount = Decimal(str(value))
    elif isinstance(value, str):
        match = _NUMERIC_PREFIX.match(_NON_NUMERIC.sub("", value))
        if not match:
            return ZERO
        amount = Decimal(match.group())
    else:
        return ZERO

    if not amount.is_finite():
        return ZERO
    return max(ZERO, amount)


def round_currency(value: Any) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def amounts_close(a: Decimal, b: Decimal, tolerance: Decimal = TOLERANCE) -> bool:
    return abs(a - b) <= tolerance


def normalize_email(value: Any) -> str:
    if not isinstance(value, str):
        raise InvalidInput(f"Invalid email: {value!r}")
    return value.strip().lower()


def _unique_emails(values: Iterable[Any]) -> List[str]:
    return list(dict.fromkeys(normalize_email(value) for value in values))


def _has_splits(splits: Any) -> bool:
    return isinstance(splits, Mapping) and len(splits) > 0


def _equal_shares(
    participants: Sequence[str], amount: Decimal, rounding: str = ROUND_HALF_UP
) -> Dict[str, Decimal]:
    per_person = (amount / len(participants)).quantize(CENT, rounding=rounding)
    shares: Dict[str, Decimal] = {}
    total_assigned = ZERO

    for email in participants[:-1]:
        shares[email] = per_person
        total_assigned += per_person

    shares[participants[-1]] = amount - total_assigned
    return shares


def auto_fix_expenses(
    expenses: Sequence[Any], group_members: Optional[Sequence[str]] = None
) -> List[Any]:
    """
    Give every expense without split data an equal split across the group.

    Falls back to the payer alone when no group members are known. Expenses
    that already carry splits are returned untouched, fixed ones are copies
    flagged with ``auto_fixed``. Members are only read once an expense needs
    fixing.
    """
    if group_members is not None and not isinstance(group_members, (list, tuple)):
        raise InvalidInput("Group members must be a list")

    members: Optional[List[str]] = None
    fixed: List[Any] = []

    for expense in expenses:
        if not isinstance(expense, Mapping) or _has_splits(expense.get("splits")):
            fixed.append(expense)
            continue

        if members is None:
            members = _unique_emails(group_members or [])

        amount = round_currency(parse_amount(expense.get("amount")))
        payer = expense.get("payer")
        if amount <= ZERO or (not members and not isinstance(payer, str)):
            # left for process_expense to reject with a precise error
            fixed.append(expense)
            continue

        participants = members or [normalize_email(payer)]
        # floored share keeps the last participant's remainder non-negative
        splits = _equal_shares(participants, amount, rounding=ROUND_DOWN)
        fixed.append({**expense, "splits": splits, "auto_fixed": True})
        logger.debug("Auto-fixed expense across %d participants", len(participants))

    return fixed


def process_splits(splits: Any, total_amount: Decimal) -> SplitResult:
    result = SplitResult()

    if not _has_splits(splits):
        result.errors.append("No splits data available - expense may need to be recreated")
        return result

    collected: Dict[str, Decimal] = {}
    split_total = ZERO

    for email, raw_share in splits.items():
        if not isinstance(email, str) or not email.strip():
            result.errors.append(f"Invalid participant email: {email!r}")
            continue

        share = parse_amount(raw_share)
        if share <= ZERO:
            result.errors.append(f"Invalid split amount for {email}: {raw_share!r}")
            continue

        key = normalize_email(email)
        collected[key] = collected.get(key, ZERO) + share
        split_total += share

    if not collected:
        result.errors.append("No valid splits remain")
        return result

    if not amounts_close(split_total, total_amount):
        result.errors.append(
            f"Split total ({split_total}) doesn't match expense amount ({total_amount})"
        )
        return result

    result.splits = {email: round_currency(share) for email, share in collected.items()}
    result.participants = list(collected)
    result.is_valid = True
    return result


def process_expense(expense: Any, index: int) -> ProcessedExpense:
    processed = ProcessedExpense(index=index, original_expense=expense)

    if not isinstance(expense, Mapping):
        processed.errors.append("Invalid expense object")
        return processed

    amount = round_currency(parse_amount(expense.get("amount")))
    if amount <= ZERO:
        processed.errors.append(f"Invalid amount: {expense.get('amount')!r}")
        return processed
    processed.amount = amount

    payer = expense.get("payer")
    if not isinstance(payer, str) or not payer.strip():
        processed.errors.append("Invalid payer")
        return processed
    processed.payer = normalize_email(payer)

    split_result = process_splits(expense.get("splits"), amount)
    # discarded entries are reported even when the rest of the split reconciles
    processed.errors.extend(split_result.errors)
    if not split_result.is_valid:
        return processed

    processed.splits = split_result.splits
    processed.participants = split_result.participants
    processed.is_valid = True
    return processed


def update_balances(ledger: Ledger, processed: ProcessedExpense) -> None:
    amount, payer, splits = processed.amount, processed.payer, processed.splits

    payer_entry = ledger.setdefault(payer, LedgerEntry())
    for email in splits:
        ledger.setdefault(email, LedgerEntry())

    payer_entry.paid += amount

    for email, share in splits.items():
        entry = ledger[email]
        entry.owes += share
        entry.split_total += share
        if email == payer:
            entry.balance += amount - share
        else:
            entry.balance -= share

    # Payer fronted the whole cost for others
    if payer not in splits:
        payer_entry.balance += amount


def apply_verified_payments(ledger: Ledger, verified_payments: Any) -> List[Transfer]:
    """Apply verified settlements to the ledger and return the transfers applied."""
    applied: List[Transfer] = []
    if not isinstance(verified_payments, (list, tuple)):
        return applied

    for payment in verified_payments:
        if not isinstance(payment, Mapping) or payment.get("status") != VERIFIED:
            continue

        amount = round_currency(parse_amount(payment.get("amount")))
        if amount <= ZERO:
            continue

        try:
            payer = normalize_email(payment.get("payer"))
            payee = normalize_email(payment.get("payee"))
        except InvalidInput:
            logger.warning("Skipping verified payment with invalid parties: %r", payment)
            continue

        ledger.setdefault(payer, LedgerEntry()).balance += amount
        ledger.setdefault(payee, LedgerEntry()).balance -= amount
        applied.append((payer, payee, amount))

    return applied


def finalize_balances(ledger: Ledger, current_user: str) -> Dict[str, Decimal]:
    final: Dict[str, Decimal] = {}
    for email, entry in ledger.items():
        balance = round_currency(entry.balance)
        if abs(balance) > TOLERANCE and email != current_user:
            final[email] = balance
    return final


def generate_summary(
    balances: Mapping[str, Decimal],
    ledger: Ledger,
    total_amount: Decimal,
    current_user: str,
    applied_payments: Sequence[Transfer] = (),
) -> Dict[str, Any]:
    totals = ledger.get(current_user, LedgerEntry())

    you_owe = sum((balance for balance in balances.values() if balance > ZERO), ZERO)
    you_are_owed = sum((-balance for balance in balances.values() if balance < ZERO), ZERO)

    total_verified = sum((amount for _, _, amount in applied_payments), ZERO)
    sent = sum((amount for payer, _, amount in applied_payments if payer == current_user), ZERO)
    received = sum((amount for _, payee, amount in applied_payments if payee == current_user), ZERO)

    return {
        "total_expenses": round_currency(total_amount),
        "your_total_paid": round_currency(totals.paid),
        "your_total_share": round_currency(totals.owes),
        "you_owe": round_currency(you_owe),
        "you_are_owed": round_currency(you_are_owed),
        "net_balance": round_currency(you_are_owed - you_owe),
        "participant_count": sum(1 for entry in ledger.values() if entry.paid or entry.split_total),
        "is_settled": abs(you_owe - you_are_owed) < TOLERANCE,
        "total_verified_payments": round_currency(total_verified),
        "your_payments_sent": round_currency(sent),
        "your_payments_received": round_currency(received),
    }


def _ranked(balances: Mapping[str, Decimal], sign: int) -> Deque[Tuple[str, Decimal]]:
    ranked = []
    for email, balance in balances.items():
        amount = round_currency(balance) * sign
        if amount > TOLERANCE:
            ranked.append((email, amount))
    ranked.sort(key=lambda item: (-item[1], item[0]))
    return deque(ranked)


def suggest_settlements(balances: Mapping[str, Decimal]) -> List[Settlement]:
    """
    Suggest the payments that would clear a ledger.

    The largest debtor pays the largest creditor first; whoever still has money
    outstanding goes back to the front of their queue. Each suggestion carries
    the same ``payer``/``payee``/``amount`` fields a declared payment uses.
    """
    creditors = _ranked(balances, 1)
    debtors = _ranked(balances, -1)
    suggestions: List[Settlement] = []

    while creditors and debtors:
        payee, owed = creditors.popleft()
        payer, owing = debtors.popleft()
        amount = min(owed, owing)
        suggestions.append(Settlement(payer=payer, payee=payee, amount=amount))

        if owed > amount:
            creditors.appendleft((payee, owed - amount))
        if owing > amount:
            debtors.appendleft((payer, owing - amount))

    return suggestions


def _error_result(message: str) -> Dict[str, Any]:
    return {
        "balances": {},
        "summary": {"error": message},
        "details": [],
        "total_expense_amount": ZERO,
        "verified_payments": [],
        "settlements": [],
    }


def calculate_balances(
    expenses: Any,
    current_user_email: Any,
    group_members: Optional[Sequence[str]] = None,
    verified_payments: Optional[Sequence[Mapping[str, Any]]] = None,
) -> Dict[str, Any]:
    """
    Compute per-user balances for one snapshot of expenses and payments.

    Never raises: failures come back as ``summary["error"]`` with empty
    balances and details.
    """
    try:
        if not isinstance(expenses, (list, tuple)):
            raise InvalidInput("Expenses must be a list")
        if not isinstance(current_user_email, str) or not current_user_email.strip():
            raise InvalidInput("Current user email is required")

        current_user = normalize_email(current_user_email)
        payments = list(verified_payments) if isinstance(verified_payments, (list, tuple)) else []

        fixed_expenses = auto_fix_expenses(expenses, group_members)

        ledger: Ledger = {}
        details: List[ProcessedExpense] = []
        total_amount = ZERO

        for index, expense in enumerate(fixed_expenses):
            processed = process_expense(expense, index)
            details.append(processed)
            if processed.is_valid:
                total_amount += processed.amount
                update_balances(ledger, processed)
            else:
                logger.debug("Expense %d excluded from balances: %s", index, processed.errors)

        applied = apply_verified_payments(ledger, payments)
        balances = finalize_balances(ledger, current_user)
        summary = generate_summary(balances, ledger, total_amount, current_user, applied)

        return {
            "balances": balances,
            "summary": summary,
            "details": details,
            "total_expense_amount": round_currency(total_amount),
            "verified_payments": payments,
            "settlements": suggest_settlements(
                {email: entry.balance for email, entry in ledger.items()}
            ),
        }
    except Exception as exc:
        logger.exception("Balance calculation failed")
        return _error_result(str(exc))


def validate_expense_before_add(expense_data: Any) -> Dict[str, Any]:
    """Check a new expense before it is persisted; collects every problem found."""
    errors: List[str] = []
    warnings: List[str] = []

    if not isinstance(expense_data, Mapping):
        return {"is_valid": False, "errors": ["Invalid expense object"], "warnings": warnings}

    description = expense_data.get("description")
    if not isinstance(description, str) or not description.strip():
        errors.append("Description is required")

    raw_amount = expense_data.get("amount")
    amount = round_currency(parse_amount(raw_amount))
    if amount <= ZERO:
        errors.append("Valid amount is required")

    payer = expense_data.get("payer")
    if not isinstance(payer, str) or not payer.strip():
        errors.append("Payer is required")
        payer = None

    splits = expense_data.get("splits")
    if not _has_splits(splits):
        errors.append("At least one participant is required")
    elif raw_amount is not None:
        split_result = process_splits(splits, amount)
        if split_result.is_valid:
            warnings.extend(split_result.errors)
            if payer is not None and normalize_email(payer) not in split_result.splits:
                warnings.append(f"Payer {normalize_email(payer)} is not part of the split")
        else:
            errors.extend(split_result.errors)

    return {"is_valid": not errors, "errors": errors, "warnings": warnings}


def create_equal_split(participants: Sequence[str], amount: Any) -> Dict[str, Decimal]:
    if not isinstance(participants, (list, tuple)) or not participants:
        raise InvalidInput("Participants list is required")

    total = round_currency(parse_amount(amount))
    if total <= ZERO:
        raise InvalidInput("Valid amount is required")

    return _equal_shares(_unique_emails(participants), total)


def create_percentage_split(percentages: Mapping[str, Any], amount: Any) -> Dict[str, Decimal]:
    """
    Split ``amount`` by percentage. Entries keep their insertion order and the
    last one absorbs the rounding remainder.
    """
    if not isinstance(percentages, Mapping) or not percentages:
        raise InvalidInput("Percentages mapping is required")

    total = round_currency(parse_amount(amount))
    if total <= ZERO:
        raise InvalidInput("Valid amount is required")

    entries = [(normalize_email(email), parse_amount(pct)) for email, pct in percentages.items()]
    total_percentage = sum((pct for _, pct in entries), ZERO)
    if abs(total_percentage - HUNDRED) > TOLERANCE:
        raise InvalidInput(f"Percentages must sum to 100%, got {total_percentage}%")

    splits: Dict[str, Decimal] = {}
    total_assigned = ZERO

    for email, pct in entries[:-1]:
        share = round_currency(total * pct / HUNDRED)
        splits[email] = splits.get(email, ZERO) + share
        total_assigned += share

    last_email = entries[-1][0]
    splits[last_email] = splits.get(last_email, ZERO) + (total - total_assigned)
    return splits
