"""Field extraction and parsing for bank SMS bodies.

Every field is extracted independently: a pattern that fails to find a date
still reports the amount and merchant it did find.
"""

import logging
import re
import time
from datetime import datetime
from decimal import Decimal, InvalidOperation

from dateutil import parser as date_parser

from smsledger.models import (
    BankPattern,
    ExtractedFields,
    ExtractedTransaction,
    FieldName,
    InboundMessage,
    TransactionSource,
    TransactionType,
    compile_pattern,
)

logger = logging.getLogger(__name__)

UNKNOWN_MERCHANT = "Unknown Merchant"
MAX_MERCHANT_LENGTH = 50

_CURRENCY = re.compile(r"(?:Rs\.?|INR|₹|\$)", re.IGNORECASE)
_INCOMING_WORDS = ("credited", "credit", "received", "deposited", "refund")
_OUTGOING_WORDS = ("debited", "debit", "spent", "paid", "withdrawn", "sent", "purchase")
_TRANSFER = re.compile(r"\btransfer(?:red)?\b|\bneft\b|\bimps\b|\brtgs\b", re.IGNORECASE)


def search_field(text: str, pattern: str | None) -> str | None:
    """Run one sub-pattern against a message body.

    Args:
        text: Message body
        pattern: Regex source; the first group is used if present, else the whole match

    Returns:
        Stripped match text, or None if the pattern is missing, invalid or unmatched
    """
    if not pattern:
        return None
    regex = compile_pattern(pattern)
    if regex is None:
        return None

    match = regex.search(text)
    if not match:
        return None
    value = match.group(1) if regex.groups else match.group(0)
    if value is None:
        return None
    value = value.strip()
    return value or None


def clean_amount_text(amount: str) -> str:
    return _CURRENCY.sub("", amount).replace(" ", "").strip()


def clean_merchant(merchant: str) -> str | None:
    """Tidy a merchant capture.

    Returns:
        Cleaned name, or None when nothing name-like is left
    """
    cleaned = re.sub(r"[^A-Za-z0-9\s&.\-]", "", merchant)
    cleaned = re.sub(r"\s+", " ", cleaned).strip(" .-")
    cleaned = cleaned[:MAX_MERCHANT_LENGTH].strip()
    if len(cleaned) < 2 or not re.search(r"[A-Za-z]", cleaned):
        return None
    return cleaned


def clean_account(account: str) -> str | None:
    cleaned = re.sub(r"[^X\d]", "", account.upper().replace("*", "X"))
    return cleaned if re.search(r"\d", cleaned) else None


def extract_fields(body: str, pattern: BankPattern) -> ExtractedFields:
    """Extract every field a pattern describes from a message body.

    Args:
        body: Message body
        pattern: Candidate bank pattern

    Returns:
        ExtractedFields holding only the fields that matched
    """
    start = time.perf_counter()
    fields: dict[str, str] = {}

    for name, source in pattern.field_patterns().items():
        value = search_field(body, source)
        if value is None:
            continue

        if name is FieldName.AMOUNT:
            value = clean_amount_text(value)
        elif name is FieldName.MERCHANT:
            value = clean_merchant(value)
        elif name is FieldName.ACCOUNT:
            value = clean_account(value)

        if value:
            fields[name.value] = value

    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.debug("%s extracted %s in %.2fms", pattern.bank_name, sorted(fields), elapsed_ms)
    return ExtractedFields(fields=fields, pattern=pattern, processing_time_ms=elapsed_ms)


def parse_amount(
    text: str | None, decimal_separator: str = ".", thousands_separator: str = ","
) -> Decimal | None:
    """Parse amount text into an exact two-place Decimal.

    Args:
        text: Amount text such as "1,500.00" or "Rs 250"
        decimal_separator: Decimal mark used by the bank
        thousands_separator: Grouping mark used by the bank

    Returns:
        Positive Decimal quantized to cents, or None if the text is not a valid amount
    """
    if not text:
        return None

    cleaned = clean_amount_text(text)
    if thousands_separator:
        cleaned = cleaned.replace(thousands_separator, "")
    if decimal_separator != ".":
        cleaned = cleaned.replace(decimal_separator, ".")

    if not re.fullmatch(r"\d+(?:\.\d{1,2})?", cleaned):
        return None

    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None

    if amount <= 0:
        return None
    return amount.quantize(Decimal("0.01"))


def parse_date(text: str | None) -> datetime | None:
    """Parse a message date; Indian bank messages put the day first.

    Args:
        text: Date text such as "15-12-2024" or "20 Dec 24 14:05"

    Returns:
        Parsed datetime or None if parsing fails
    """
    if not text:
        return None
    try:
        return date_parser.parse(text, dayfirst=True)
    except (ValueError, OverflowError, TypeError):
        return None


def _first_position(text: str, words: tuple[str, ...]) -> int | None:
    positions = []
    for word in words:
        match = re.search(rf"\b{word}\b", text)
        if match:
            positions.append(match.start())
    return min(positions) if positions else None


def parse_transaction_type(type_text: str | None, body: str) -> TransactionType:
    """Decide the transaction direction.

    The extracted type word wins; otherwise whichever direction keyword
    appears first in the body decides. Transfers keep their direction.
    Messages with no signal at all are treated as expenses.
    """
    type_lower = (type_text or "").lower()
    body_lower = body.lower()

    if type_lower in _INCOMING_WORDS:
        incoming = True
    elif type_lower in _OUTGOING_WORDS:
        incoming = False
    else:
        first_in = _first_position(body_lower, _INCOMING_WORDS)
        first_out = _first_position(body_lower, _OUTGOING_WORDS)
        incoming = first_in is not None and (first_out is None or first_in < first_out)

    if _TRANSFER.search(body_lower):
        return TransactionType.TRANSFER_IN if incoming else TransactionType.TRANSFER_OUT
    return TransactionType.INCOME if incoming else TransactionType.EXPENSE


def build_transaction(
    extracted: ExtractedFields, message: InboundMessage, account_id: int | None = None
) -> ExtractedTransaction | None:
    """Build a transaction from extracted fields.

    Args:
        extracted: Fields from the winning pattern
        message: Source message (body kept as the note, timestamp as date fallback)
        account_id: Resolved account, if any

    Returns:
        ExtractedTransaction, or None if the amount is missing or unparsable
    """
    pattern = extracted.pattern
    decimal_sep = pattern.decimal_separator if pattern else "."
    thousands_sep = pattern.thousands_separator if pattern else ","

    amount = parse_amount(extracted.get(FieldName.AMOUNT), decimal_sep, thousands_sep)
    if amount is None:
        return None

    return ExtractedTransaction(
        amount=amount,
        direction=parse_transaction_type(extracted.get(FieldName.TYPE), message.body),
        merchant=extracted.get(FieldName.MERCHANT) or UNKNOWN_MERCHANT,
        occurred_at=parse_date(extracted.get(FieldName.DATE)) or message.received_at,
        account_identifier=extracted.get(FieldName.ACCOUNT),
        account_id=account_id,
        note=message.body,
        source=TransactionSource.SMS_AUTO,
    )


__all__ = [
    "build_transaction",
    "clean_account",
    "clean_merchant",
    "extract_fields",
    "parse_amount",
    "parse_date",
    "parse_transaction_type",
    "search_field",
]
