from decimal import Decimal

import pytest

from zensplit.payments import PaymentError, declare_payment, transition_payment, verified_only


def _pending(**overrides):
    payment = {"payer": "b@x.com", "payee": "a@x.com", "amount": Decimal("60"), "status": "pending"}
    payment.update(overrides)
    return payment


def test_declare_payment_normalizes_and_starts_pending():
    payment = declare_payment({"payer": " B@x.com", "payee": "A@X.com", "amount": "60", "group_id": 7})

    assert payment == {
        "payer": "b@x.com",
        "payee": "a@x.com",
        "amount": Decimal("60"),
        "status": "pending",
        "group_id": 7,
    }


@pytest.mark.parametrize(
    "data, code",
    [
        ({"payee": "a", "amount": 5}, "missing_payer"),
        ({"payer": "b", "amount": 5}, "missing_payee"),
        ({"payer": "b", "payee": "a"}, "missing_amount"),
        ({"payer": "b", "payee": "B ", "amount": 5}, "payer_is_payee"),
        ({"payer": "b", "payee": "a", "amount": "0"}, "invalid_amount"),
        ({"payer": 3, "payee": "a", "amount": 5}, "invalid_party"),
    ],
)
def test_declare_payment_rejects(data, code):
    with pytest.raises(PaymentError) as excinfo:
        declare_payment(data)
    assert str(excinfo.value) == code


def test_payee_verifies():
    payment = _pending()

    verified = transition_payment(payment, "verify", "A@x.com")

    assert verified["status"] == "verified"
    assert payment["status"] == "pending"


def test_payer_cannot_verify():
    with pytest.raises(PaymentError) as excinfo:
        transition_payment(_pending(), "verify", "b@x.com")
    assert str(excinfo.value) == "only_payee_can_verify"


@pytest.mark.parametrize("actor", ["a@x.com", "b@x.com"])
def test_either_party_cancels(actor):
    assert transition_payment(_pending(), "cancel", actor)["status"] == "cancelled"


def test_outsider_cannot_cancel():
    with pytest.raises(PaymentError) as excinfo:
        transition_payment(_pending(), "cancel", "c@x.com")
    assert str(excinfo.value) == "only_participants_can_cancel"


@pytest.mark.parametrize(
    "payment, action, code",
    [
        (_pending(status="verified"), "cancel", "payment_already_verified"),
        (_pending(status="cancelled"), "verify", "payment_already_cancelled"),
        (_pending(status="lost"), "verify", "invalid_status"),
        (_pending(), "approve", "invalid_action"),
    ],
)
def test_only_pending_payments_transition(payment, action, code):
    with pytest.raises(PaymentError) as excinfo:
        transition_payment(payment, action, "a@x.com")
    assert str(excinfo.value) == code


def test_verified_only():
    payments = [_pending(), _pending(status="verified"), _pending(status="cancelled")]

    assert verified_only(payments) == [payments[1]]
