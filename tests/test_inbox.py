"""Tests for loading SMS backlogs from CSV."""

from datetime import datetime
from pathlib import Path

import pandas as pd
import pytest

from smsledger.inbox import InboxFormatError, detect_message_columns, load_messages, parse_received_at


class TestDetectMessageColumns:
    """Test column detection for SMS exports."""

    def test_exact_names(self) -> None:
        """Test common export headers."""
        df = pd.DataFrame(columns=["address", "body", "date"])
        assert detect_message_columns(df) == {"sender": "address", "body": "body", "date": "date"}

    def test_case_insensitive(self) -> None:
        """Test that header case is ignored."""
        df = pd.DataFrame(columns=["Sender", "Message", "Timestamp"])
        assert detect_message_columns(df) == {
            "sender": "Sender",
            "body": "Message",
            "date": "Timestamp",
        }

    def test_fuzzy_names(self) -> None:
        """Test headers that only resemble the expected names."""
        df = pd.DataFrame(columns=["Sender ID", "Message Body", "Received At"])
        mapping = detect_message_columns(df)

        assert mapping["sender"] == "Sender ID"
        assert mapping["body"] == "Message Body"
        assert mapping["date"] == "Received At"

    def test_missing_date_column(self) -> None:
        """Test that the date column is optional."""
        df = pd.DataFrame(columns=["from", "text"])
        assert detect_message_columns(df)["date"] is None


class TestParseReceivedAt:
    """Test timestamp parsing for exports."""

    def test_day_first_text(self) -> None:
        """Test day-first dates."""
        fallback = datetime(2000, 1, 1)
        assert parse_received_at("05/12/2024 10:30", fallback) == datetime(2024, 12, 5, 10, 30)

    def test_epoch_milliseconds(self) -> None:
        """Test Android-style epoch timestamps."""
        fallback = datetime(2000, 1, 1)
        expected = datetime.fromtimestamp(1734258600)
        assert parse_received_at("1734258600000", fallback) == expected

    def test_fallback(self) -> None:
        """Test that missing and invalid values use the fallback."""
        fallback = datetime(2000, 1, 1)
        assert parse_received_at(None, fallback) == fallback
        assert parse_received_at("yesterday-ish", fallback) == fallback


class TestLoadMessages:
    """Test loading whole files."""

    def test_loads_rows_in_order(self, tmp_path: Path) -> None:
        """Test that messages come back in file order."""
        path = tmp_path / "sms.csv"
        path.write_text(
            "address,body,date\n"
            'VK-HDFCBK,"Rs.1500.00 debited at AMAZON on 15-12-2024",15-12-2024 10:00\n'
            'AD-ICICIB,"INR 20.00 credited",16-12-2024 11:00\n'
        )

        messages = load_messages(path)

        assert [m.sender for m in messages] == ["VK-HDFCBK", "AD-ICICIB"]
        assert messages[0].body == "Rs.1500.00 debited at AMAZON on 15-12-2024"
        assert messages[0].received_at == datetime(2024, 12, 15, 10, 0)

    def test_skips_empty_rows(self, tmp_path: Path) -> None:
        """Test that rows without sender or body are skipped."""
        path = tmp_path / "sms.csv"
        path.write_text("address,body\nVK-HDFCBK,\n,Rs 10 debited\nVK-HDFCBK,Rs 10 debited\n")

        messages = load_messages(path)

        assert len(messages) == 1

    def test_missing_body_column(self, tmp_path: Path) -> None:
        """Test that a file without a body column is rejected."""
        path = tmp_path / "contacts.csv"
        path.write_text("address,amount\nVK-HDFCBK,10\n")

        with pytest.raises(InboxFormatError, match="body"):
            load_messages(path)

    def test_format_error_is_value_error(self) -> None:
        """Test that callers catching ValueError also catch format errors."""
        assert issubclass(InboxFormatError, ValueError)
