"""Tests for field extraction and parsing."""

from datetime import datetime
from decimal import Decimal

import pytest

from smsledger.extractor import (
    UNKNOWN_MERCHANT,
    build_transaction,
    clean_account,
    clean_merchant,
    extract_fields,
    parse_amount,
    parse_date,
    parse_transaction_type,
    search_field,
)
from smsledger.models import ExtractedFields, FieldName, TransactionSource, TransactionType
from smsledger.patterns import PatternRegistry
from tests.factories import HDFC_DEBIT, HDFC_DEBIT_WITH_ACCOUNT, ICICI_CREDIT, NO_AMOUNT, TestDataFactory


class TestParseAmount:
    """Test amount parsing into Decimal."""

    def test_plain_amount(self) -> None:
        """Test a plain two-place amount."""
        assert parse_amount("1500.00") == Decimal("1500.00")

    def test_thousands_separator_removed(self) -> None:
        """Test that grouping commas are dropped."""
        assert parse_amount("2,450.50") == Decimal("2450.50")

    def test_currency_prefix_removed(self) -> None:
        """Test that currency markers are stripped."""
        assert parse_amount("Rs. 250") == Decimal("250.00")
        assert parse_amount("INR 99.9") == Decimal("99.90")

    def test_result_is_decimal_with_two_places(self) -> None:
        """Test that amounts are exact two-place Decimals."""
        amount = parse_amount("10")
        assert isinstance(amount, Decimal)
        assert amount.as_tuple().exponent == -2

    @pytest.mark.parametrize("text", ["", None, "abc", "0", "0.00", "-5", "12.345", "1.2.3"])
    def test_invalid_amounts_rejected(self, text) -> None:
        """Test that zero, negative and malformed amounts are rejected."""
        assert parse_amount(text) is None

    def test_european_separators(self) -> None:
        """Test banks that use comma decimals and dot grouping."""
        assert parse_amount("1.234,56", decimal_separator=",", thousands_separator=".") == Decimal(
            "1234.56"
        )


class TestParseDate:
    """Test day-first date parsing."""

    def test_day_first(self) -> None:
        """Test that dd-mm-yyyy dates are read day first."""
        assert parse_date("05-12-2024") == datetime(2024, 12, 5)

    def test_month_name(self) -> None:
        """Test dates with month names and times."""
        assert parse_date("20 Dec 24 14:05") == datetime(2024, 12, 20, 14, 5)

    def test_unparseable(self) -> None:
        """Test that garbage gives None."""
        assert parse_date("not a date") is None
        assert parse_date(None) is None


class TestParseTransactionType:
    """Test direction detection."""

    def test_debit_word(self) -> None:
        """Test that a debit word gives an expense."""
        assert parse_transaction_type("debited", "Rs 10 debited") is TransactionType.EXPENSE

    def test_credit_word(self) -> None:
        """Test that a credit word gives income."""
        assert parse_transaction_type("credited", "Rs 10 credited") is TransactionType.INCOME

    def test_transfer_keeps_direction(self) -> None:
        """Test that transfers are typed by their direction."""
        assert (
            parse_transaction_type("credited", "Rs 10 credited via NEFT transfer")
            is TransactionType.TRANSFER_IN
        )
        assert parse_transaction_type("debited", "IMPS Rs 10 debited") is TransactionType.TRANSFER_OUT

    def test_body_keyword_order_decides_without_type(self) -> None:
        """Test that the first direction keyword in the body wins."""
        body = "Refund received for order, earlier amount debited"
        assert parse_transaction_type(None, body) is TransactionType.INCOME

    def test_no_signal_defaults_to_expense(self) -> None:
        """Test that messages with no direction are expenses."""
        assert parse_transaction_type(None, "Rs 10 at shop") is TransactionType.EXPENSE


class TestCleaners:
    """Test field cleanup helpers."""

    def test_clean_merchant_trims_punctuation(self) -> None:
        """Test that trailing dots and extra spaces are removed."""
        assert clean_merchant("  AMAZON  SELLER. ") == "AMAZON SELLER"

    def test_clean_merchant_rejects_non_names(self) -> None:
        """Test that digit-only or one-letter captures are discarded."""
        assert clean_merchant("1234") is None
        assert clean_merchant("A") is None

    def test_clean_merchant_truncates(self) -> None:
        """Test that very long captures are cut."""
        assert len(clean_merchant("X" * 80)) == 50

    def test_clean_account_normalizes_mask(self) -> None:
        """Test that star masks become X."""
        assert clean_account("**1234") == "XX1234"
        assert clean_account("xx") is None

    def test_search_field_without_group(self) -> None:
        """Test that a pattern without groups returns the whole match."""
        assert search_field("paid via UPI", r"upi") == "UPI"
        assert search_field("anything", None) is None
        assert search_field("anything", r"([") is None


class TestExtractFields:
    """Test per-field extraction with the default patterns."""

    def test_hdfc_message(self, registry: PatternRegistry) -> None:
        """Test the canonical HDFC debit message."""
        extracted = extract_fields(HDFC_DEBIT, registry.get("HDFC Bank"))

        assert extracted.get(FieldName.AMOUNT) == "1500.00"
        assert extracted.get(FieldName.MERCHANT) == "AMAZON"
        assert extracted.get(FieldName.DATE) == "15-12-2024"
        assert extracted.get(FieldName.TYPE).lower() == "debited"
        assert not extracted.has(FieldName.ACCOUNT)
        assert extracted.pattern.bank_name == "HDFC Bank"

    def test_account_fragment(self, registry: PatternRegistry) -> None:
        """Test that the masked account is captured."""
        extracted = extract_fields(HDFC_DEBIT_WITH_ACCOUNT, registry.get("HDFC Bank"))

        assert extracted.get(FieldName.ACCOUNT) == "XX1234"
        assert extracted.get(FieldName.MERCHANT) == "SWIGGY"
        assert extracted.get(FieldName.AMOUNT) == "2,450.50"
        assert extracted.count == 5

    def test_icici_credit(self, registry: PatternRegistry) -> None:
        """Test a card-style account and INR amount."""
        extracted = extract_fields(ICICI_CREDIT, registry.get("ICICI Bank"))

        assert extracted.get(FieldName.ACCOUNT) == "9876"
        assert extracted.get(FieldName.AMOUNT) == "25,000.00"
        assert extracted.get(FieldName.MERCHANT) == "ACME PAYROLL"

    def test_partial_extraction(self, registry: PatternRegistry) -> None:
        """Test that a missing amount does not hide the other fields."""
        extracted = extract_fields(NO_AMOUNT, registry.get("HDFC Bank"))

        assert not extracted.has(FieldName.AMOUNT)
        assert extracted.has(FieldName.MERCHANT)
        assert extracted.has(FieldName.DATE)

    def test_records_processing_time(self, registry: PatternRegistry) -> None:
        """Test that extraction time is measured."""
        extracted = extract_fields(HDFC_DEBIT, registry.get("HDFC Bank"))
        assert extracted.processing_time_ms >= 0


class TestBuildTransaction:
    """Test turning fields into a transaction."""

    def test_complete_fields(self, registry: PatternRegistry) -> None:
        """Test that parsed fields flow into the transaction."""
        message = TestDataFactory.create_message(HDFC_DEBIT)
        extracted = extract_fields(message.body, registry.get("HDFC Bank"))

        transaction = build_transaction(extracted, message)

        assert transaction.amount == Decimal("1500.00")
        assert transaction.direction is TransactionType.EXPENSE
        assert transaction.merchant == "AMAZON"
        assert transaction.occurred_at == datetime(2024, 12, 15)
        assert transaction.note == HDFC_DEBIT
        assert transaction.source is TransactionSource.SMS_AUTO

    def test_missing_amount_gives_none(self, registry: PatternRegistry) -> None:
        """Test that no transaction is built without an amount."""
        message = TestDataFactory.create_message(NO_AMOUNT)
        extracted = extract_fields(message.body, registry.get("HDFC Bank"))

        assert build_transaction(extracted, message) is None

    def test_fallbacks(self) -> None:
        """Test the merchant and date fallbacks."""
        received = datetime(2024, 3, 1, 9, 30)
        message = TestDataFactory.create_message("Rs 10 debited", received_at=received)
        extracted = ExtractedFields(fields={"amount": "10"})

        transaction = build_transaction(extracted, message)

        assert transaction.merchant == UNKNOWN_MERCHANT
        assert transaction.occurred_at == received
