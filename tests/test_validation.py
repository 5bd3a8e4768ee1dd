"""
Tests for ledger entry constraint checks
"""

import pytest
from decimal import Decimal

from wallet_ledger.errors import ValidationError, InvalidStatusTransitionError
from wallet_ledger.models import TransactionStatus, TransactionType
from wallet_ledger.validation import (
    ValidationResult, check_accounts, check_amount, check_type, check_note,
    check_description, check_transaction_id, check_fee, check_status,
    check_status_transition, ensure_status_transition, normalize_transaction_id,
    validate_new_transaction,
)


def candidate(**overrides):
    fields = {
        "from_account_id": "U1",
        "to_account_id": "U2",
        "amount": "50.00",
        "transaction_type": "sent",
        "transaction_id": "tx001",
    }
    fields.update(overrides)
    return fields


class TestFieldChecks:
    """Individual field checks"""

    def test_result_truthiness_and_raise(self):
        assert ValidationResult.success(1)
        assert ValidationResult.success(1).raise_for_error() == 1

        failure = ValidationResult.failure("amount", "amount is required")
        assert not failure
        with pytest.raises(ValidationError) as exc_info:
            failure.raise_for_error()
        assert exc_info.value.to_dict() == {"field": "amount", "reason": "amount is required"}
        assert str(exc_info.value) == "amount: amount is required"

    def test_accounts(self):
        assert check_accounts(" U1 ", "U2").value == ("U1", "U2")
        assert check_accounts(None, "U2").field == "from"
        assert check_accounts("U1", "  ").field == "to"
        assert check_accounts("U1", 42).field == "to"

        same = check_accounts("U1", "U1 ")
        assert not same
        assert same.reason == "from and to must be different accounts"

    @pytest.mark.parametrize("value, expected", [
        ("0.01", Decimal("0.01")),
        (50, Decimal("50")),
        (12.5, Decimal("12.5")),
        (Decimal("100.00"), Decimal("100.00")),
        (" 7.25 ", Decimal("7.25")),
    ])
    def test_amount_accepted(self, value, expected):
        assert check_amount(value).value == expected

    @pytest.mark.parametrize("value, reason", [
        (None, "amount is required"),
        ("", "amount is required"),
        ("abc", "amount must be a number"),
        (True, "amount must be a number"),
        ("NaN", "amount must be a number"),
        (float("inf"), "amount must be a number"),
        ([5], "amount must be a number"),
        ("0", "amount below minimum of 0.01"),
        ("-10", "amount below minimum of 0.01"),
        ("0.001", "amount below minimum of 0.01"),
    ])
    def test_amount_rejected(self, value, reason):
        result = check_amount(value)
        assert not result
        assert result.field == "amount"
        assert result.reason == reason

    def test_type(self):
        assert check_type("sent").value == TransactionType.SENT
        assert check_type(TransactionType.RECEIVED).value == TransactionType.RECEIVED
        assert check_type("SENT").field == "type"
        assert check_type(None).reason == "type must be one of: sent, received"

    def test_note_boundary(self):
        assert check_note(None)
        assert check_note("")
        assert check_note("x" * 200)
        result = check_note("x" * 201)
        assert result.field == "note"
        assert result.reason == "note exceeds 200 characters"
        assert check_note(123).reason == "note must be a string"

    def test_description_boundary(self):
        assert check_description("x" * 500)
        assert check_description("x" * 501).reason == "description exceeds 500 characters"

    def test_transaction_id(self):
        assert normalize_transaction_id(" abc123 ") == "ABC123"
        assert check_transaction_id("tx001").value == "TX001"
        assert check_transaction_id(None).reason == "transactionId is required"
        assert check_transaction_id("   ").field == "transactionId"
        assert check_transaction_id(1001).reason == "transactionId must be a string"

    def test_fee(self):
        assert check_fee(None).value == Decimal("0")
        assert check_fee("0").value == Decimal("0")
        assert check_fee("1.50").value == Decimal("1.50")
        assert check_fee("-0.01").reason == "fee must not be negative"
        assert check_fee("free").reason == "fee must be a number"

    def test_status(self):
        assert check_status("completed").value == TransactionStatus.COMPLETED
        assert check_status(TransactionStatus.FAILED).value == TransactionStatus.FAILED
        assert check_status("done").field == "status"


class TestStatusTransitions:
    """pending -> completed | failed, final states are terminal"""

    @pytest.mark.parametrize("requested", [TransactionStatus.COMPLETED, TransactionStatus.FAILED])
    def test_pending_can_finish(self, requested):
        assert check_status_transition(TransactionStatus.PENDING, requested)

    @pytest.mark.parametrize("current", [TransactionStatus.COMPLETED, TransactionStatus.FAILED])
    def test_final_states_are_terminal(self, current):
        assert not check_status_transition(current, TransactionStatus.PENDING)
        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            ensure_status_transition(current, TransactionStatus.PENDING)
        assert exc_info.value.field == "status"
        assert exc_info.value.current == current.value

    def test_same_status_allowed(self):
        for status in TransactionStatus:
            assert check_status_transition(status, status)


class TestValidateNewTransaction:
    """Whole-candidate validation"""

    def test_normalized_fields(self):
        result = validate_new_transaction(candidate(note="hi"))

        assert result
        assert result.value == {
            "from_account_id": "U1",
            "to_account_id": "U2",
            "amount": Decimal("50.00"),
            "transaction_type": TransactionType.SENT,
            "note": "hi",
            "description": None,
            "transaction_id": "TX001",
            "fee": Decimal("0"),
        }

    @pytest.mark.parametrize("overrides, field", [
        ({"from_account_id": None, "amount": 0}, "amount"),
        ({"to_account_id": "U1", "fee": -1}, "fee"),
        ({"from_account_id": None}, "from"),
        ({"to_account_id": "U1"}, "to"),
        ({"amount": None, "transaction_type": "x"}, "amount"),
        ({"transaction_type": "x", "note": "n" * 201}, "type"),
        ({"note": "n" * 201, "description": "d" * 501}, "note"),
        ({"description": "d" * 501, "transaction_id": None}, "description"),
        ({"transaction_id": None, "fee": -1}, "transactionId"),
        ({"fee": -1}, "fee"),
    ])
    def test_first_violation_reported(self, overrides, field):
        result = validate_new_transaction(candidate(**overrides))
        assert not result
        assert result.field == field

    def test_duplicate_check_receives_normalized_id(self):
        seen = []

        def taken(transaction_id):
            seen.append(transaction_id)
            return transaction_id == "TX001"

        result = validate_new_transaction(candidate(transaction_id=" tx001 "), transaction_id_taken=taken)

        assert seen == ["TX001"]
        assert result.reason == "duplicate transactionId"

    def test_duplicate_check_skipped_when_earlier_check_fails(self):
        calls = []
        validate_new_transaction(candidate(amount=0), transaction_id_taken=calls.append)
        assert calls == []
