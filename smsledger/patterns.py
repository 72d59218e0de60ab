"""Registry of bank message patterns.

Bank formats are data, not code: each supported bank is one BankPattern
record, and the registry is the only place that knows which are active.
"""

import logging
import threading
from dataclasses import replace
from typing import Iterable

from smsledger.models import BankPattern, compile_pattern

logger = logging.getLogger(__name__)

_AMOUNT = r"(?:Rs|INR|₹)[.:]?\s*([\d,]+(?:\.\d{1,2})?)"
_MERCHANT = r"\b(?:at|to|from)\s+([A-Za-z0-9][A-Za-z0-9\s&.\-]*?)(?:\s+on\b|\s+dt\b|\s+via\b|\s+ref\b|\.\s|\.$|,|$)"
_DATE = (
    r"(\d{1,2}[-/]\d{1,2}[-/]\d{2,4}(?:\s+\d{1,2}:\d{2}(?::\d{2})?)?"
    r"|\d{1,2}[\s-]?(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*[\s-]?\d{2,4})"
)
_TYPE = r"\b(debited|credited|debit|credit|spent|withdrawn|deposited)\b"
_WALLET_TYPE = r"\b(debited|credited|debit|credit|paid|received|sent)\b"
_ACCOUNT_AC = r"(?:A/c|acct|account)\s*(?:no\.?\s*)?([X*\d]{3,})"
_ACCOUNT_CARD = r"(?:card|account)\s+(?:no\.?\s*)?(?:ending\s+(?:with\s+)?)?([X*\d]{3,})"
_ACCOUNT_WALLET = r"(?:wallet|account)\s+(?:ending\s+)?([X*\d]{3,})"


def _bank(bank_name: str, sender_pattern: str, account_pattern: str, type_pattern: str = _TYPE) -> BankPattern:
    return BankPattern(
        bank_name=bank_name,
        sender_pattern=sender_pattern,
        amount_pattern=_AMOUNT,
        merchant_pattern=_MERCHANT,
        date_pattern=_DATE,
        type_pattern=type_pattern,
        account_pattern=account_pattern,
    )


DEFAULT_BANK_PATTERNS: tuple[BankPattern, ...] = (
    _bank("HDFC Bank", r"HDFCBK|HDFC", _ACCOUNT_AC),
    _bank("ICICI Bank", r"ICICIB|ICICI", _ACCOUNT_CARD),
    _bank("State Bank of India", r"SBIINB|SBIIN|\bSBI", _ACCOUNT_AC),
    _bank("Axis Bank", r"AXISBK|AXIBNK|AXIS", _ACCOUNT_CARD),
    _bank("Kotak Mahindra Bank", r"KOTAK|KMBL|\bKMB\b", _ACCOUNT_AC),
    _bank("Paytm Payments Bank", r"PAYTM|PYTM", _ACCOUNT_WALLET, _WALLET_TYPE),
    _bank("PhonePe", r"PHONEPE|PHONPE", _ACCOUNT_WALLET, _WALLET_TYPE),
    _bank("Google Pay", r"GPAY|GOOGLEPAY", _ACCOUNT_WALLET, _WALLET_TYPE),
)


class PatternRegistry:
    """In-memory registry of bank patterns, in registration order.

    Reads work on an immutable snapshot so extraction threads can query the
    registry while a pattern is being registered or deactivated.
    """

    def __init__(self, patterns: Iterable[BankPattern] = ()) -> None:
        self._lock = threading.Lock()
        self._patterns: tuple[BankPattern, ...] = ()
        for pattern in patterns:
            self.register(pattern)

    def register(self, pattern: BankPattern) -> None:
        """Add a pattern, or replace the pattern registered for the same bank.

        A replaced pattern keeps its position so registration order stays stable.

        Args:
            pattern: Pattern to register

        Raises:
            ValueError: If the bank name is empty or the sender pattern does not compile
        """
        if not pattern.bank_name.strip():
            raise ValueError("Bank name cannot be empty")
        if compile_pattern(pattern.sender_pattern) is None:
            raise ValueError(f"Invalid sender pattern for {pattern.bank_name}: {pattern.sender_pattern!r}")

        for name, source in pattern.field_patterns().items():
            if source is not None and compile_pattern(source) is None:
                logger.warning("%s pattern for %s does not compile and will never match", name.value, pattern.bank_name)

        with self._lock:
            patterns = list(self._patterns)
            index = self._index_of(patterns, pattern.bank_name)
            if index is None:
                patterns.append(pattern)
                logger.info("Registered pattern for %s", pattern.bank_name)
            else:
                patterns[index] = pattern
                logger.info("Replaced pattern for %s", pattern.bank_name)
            self._patterns = tuple(patterns)

    def find_candidates(self, sender: str) -> list[BankPattern]:
        """Find every active pattern whose sender pattern matches.

        Args:
            sender: Sender identifier of the message

        Returns:
            Matching patterns in registration order
        """
        snapshot = self._patterns
        return [p for p in snapshot if p.is_active and p.matches_sender(sender)]

    def get(self, bank_name: str) -> BankPattern | None:
        snapshot = self._patterns
        index = self._index_of(snapshot, bank_name)
        return None if index is None else snapshot[index]

    def all_patterns(self) -> list[BankPattern]:
        return list(self._patterns)

    def deactivate(self, bank_name: str) -> bool:
        """Stop matching a bank's messages.

        Returns:
            True if the bank was registered, False otherwise
        """
        return self._set_active(bank_name, False)

    def activate(self, bank_name: str) -> bool:
        return self._set_active(bank_name, True)

    def remove(self, bank_name: str) -> bool:
        with self._lock:
            patterns = list(self._patterns)
            index = self._index_of(patterns, bank_name)
            if index is None:
                return False
            del patterns[index]
            self._patterns = tuple(patterns)
        logger.info("Removed pattern for %s", bank_name)
        return True

    def _set_active(self, bank_name: str, active: bool) -> bool:
        with self._lock:
            patterns = list(self._patterns)
            index = self._index_of(patterns, bank_name)
            if index is None:
                return False
            patterns[index] = replace(patterns[index], is_active=active)
            self._patterns = tuple(patterns)
        logger.info("%s pattern for %s", "Activated" if active else "Deactivated", bank_name)
        return True

    @staticmethod
    def _index_of(patterns: Iterable[BankPattern], bank_name: str) -> int | None:
        wanted = bank_name.strip().lower()
        for index, pattern in enumerate(patterns):
            if pattern.bank_name.lower() == wanted:
                return index
        return None

    def __len__(self) -> int:
        return len(self._patterns)


def seed_defaults(registry: PatternRegistry) -> None:
    """Register the built-in bank patterns.

    Args:
        registry: Registry to populate
    """
    for pattern in DEFAULT_BANK_PATTERNS:
        registry.register(pattern)


__all__ = ["DEFAULT_BANK_PATTERNS", "PatternRegistry", "seed_defaults"]
