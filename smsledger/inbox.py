"""Load SMS backlogs exported from a phone as CSV.

Export tools disagree on column names ("address" vs "sender", "body" vs
"message"), so columns are detected with fuzzy matching.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import pandas as pd
from dateutil import parser as date_parser
from rapidfuzz import fuzz, process

from smsledger.models import InboundMessage

logger = logging.getLogger(__name__)

SENDER_KEYWORDS = ["sender", "address", "from", "originator", "source"]
BODY_KEYWORDS = ["body", "message", "text", "sms", "content"]
DATE_KEYWORDS = ["date", "received", "timestamp", "time", "datetime", "received at"]


class InboxFormatError(ValueError):
    """Raised when a backlog file has no usable sender or body column."""


def detect_message_columns(df: pd.DataFrame) -> dict[str, str | None]:
    """Detect the sender, body and date columns of an SMS export.

    Exact (case-insensitive) names win; otherwise the closest fuzzy match
    above the cutoff is used. A column is assigned to at most one role.

    Args:
        df: Raw export

    Returns:
        Dict with "sender", "body" and "date" keys mapping to column names or None
    """
    columns = [str(col) for col in df.columns]
    column_lower = [col.lower().strip() for col in columns]
    taken: set[int] = set()

    def find_column(keywords: list[str]) -> str | None:
        for keyword in keywords:
            if keyword in column_lower:
                idx = column_lower.index(keyword)
                if idx not in taken:
                    taken.add(idx)
                    return columns[idx]

        best: tuple[float, int] | None = None
        for keyword in keywords:
            match = process.extractOne(keyword, column_lower, scorer=fuzz.WRatio, score_cutoff=80)
            if match and match[2] not in taken and (best is None or match[1] > best[0]):
                best = (match[1], match[2])
        if best is None:
            return None
        taken.add(best[1])
        return columns[best[1]]

    return {
        "sender": find_column(SENDER_KEYWORDS),
        "body": find_column(BODY_KEYWORDS),
        "date": find_column(DATE_KEYWORDS),
    }


def parse_received_at(value: Any, fallback: datetime) -> datetime:
    """Parse an export timestamp, using the fallback when it is missing or invalid.

    Epoch milliseconds (as Android exports write them) are accepted too.
    """
    if value is None or pd.isna(value):
        return fallback

    text = str(value).strip()
    if text.isdigit() and len(text) >= 12:
        return datetime.fromtimestamp(int(text) / 1000)
    try:
        return date_parser.parse(text, dayfirst=True)
    except (ValueError, OverflowError, TypeError):
        logger.debug("Unparseable date %r, using load time", text)
        return fallback


def load_messages(path: Path) -> list[InboundMessage]:
    """Load an SMS export into inbound messages.

    Args:
        path: CSV file with at least a sender and a body column

    Returns:
        Messages in file order; rows with an empty sender or body are skipped

    Raises:
        InboxFormatError: If the sender or body column cannot be found
    """
    try:
        df = pd.read_csv(path, dtype=str, keep_default_na=False)
    except UnicodeDecodeError:
        df = pd.read_csv(path, dtype=str, keep_default_na=False, encoding="latin-1")

    mapping = detect_message_columns(df)
    missing = [role for role in ("sender", "body") if mapping[role] is None]
    if missing:
        raise InboxFormatError(
            f"{Path(path).name}: no {' or '.join(missing)} column in {list(df.columns)}"
        )

    loaded_at = datetime.now()
    messages = []
    skipped = 0
    for _, row in df.iterrows():
        sender = str(row[mapping["sender"]]).strip()
        body = str(row[mapping["body"]]).strip()
        if not sender or not body:
            skipped += 1
            continue
        received = row[mapping["date"]] if mapping["date"] else None
        messages.append(
            InboundMessage(
                sender=sender,
                body=body,
                received_at=parse_received_at(received or None, loaded_at),
            )
        )

    logger.info("Loaded %d messages from %s (%d skipped)", len(messages), path, skipped)
    return messages


__all__ = ["InboxFormatError", "detect_message_columns", "load_messages", "parse_received_at"]
