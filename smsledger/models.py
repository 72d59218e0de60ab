"""Data structures for SMS Ledger."""

import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from functools import lru_cache
from typing import ClassVar, Union


DEFAULT_TRUSTED_BANKS: tuple[str, ...] = (
    "HDFC Bank",
    "ICICI Bank",
    "State Bank of India",
    "Axis Bank",
    "Kotak Mahindra Bank",
    "Paytm Payments Bank",
    "PhonePe",
    "Google Pay",
)

TRANSACTION_KEYWORDS: tuple[str, ...] = (
    "debited",
    "credited",
    "withdrawn",
    "deposited",
    "paid",
    "received",
    "transfer",
    "transaction",
    "balance",
    "account",
    "bank",
    "atm",
    "pos",
    "upi",
    "imps",
    "neft",
    "rtgs",
)

_COMPANY_SUFFIXES = re.compile(r"\b(pvt|ltd|llc|inc|corp|co|company|limited)\b")


class CategoryHierarchyError(ValueError):
    """Raised when a category parent would create a self-reference or a loop."""


@lru_cache(maxsize=512)
def compile_pattern(pattern: str) -> re.Pattern | None:
    """Compile a case-insensitive regex, returning None if it is invalid.

    Args:
        pattern: Regular expression source

    Returns:
        Compiled pattern, or None when the source does not compile
    """
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error:
        return None


def normalize_merchant_name(merchant: str) -> str:
    """Fold a merchant name for history lookups.

    Lowercases, replaces punctuation with spaces, drops company suffixes
    and collapses whitespace, so "Amazon Pvt. Ltd." and "AMAZON" compare equal.

    Args:
        merchant: Raw merchant name

    Returns:
        Normalized merchant key (may be empty)
    """
    text = re.sub(r"[^a-z0-9\s]", " ", merchant.lower())
    text = _COMPANY_SUFFIXES.sub("", text)
    return re.sub(r"\s+", " ", text).strip()


class FieldName(str, Enum):
    """Fields a bank pattern can extract."""

    AMOUNT = "amount"
    MERCHANT = "merchant"
    DATE = "date"
    TYPE = "type"
    ACCOUNT = "account"


class TransactionType(Enum):
    """Direction of money movement."""

    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"


class TransactionSource(Enum):
    """Where a transaction came from."""

    SMS_AUTO = "sms_auto"
    MANUAL = "manual"
    IMPORTED = "imported"


class FailureReason(Enum):
    """Typed reasons an extraction did not produce a transaction."""

    UNKNOWN_BANK_FORMAT = "unknown_bank_format"
    INVALID_SMS_FORMAT = "invalid_sms_format"
    AMOUNT_PARSING_FAILED = "amount_parsing_failed"
    PROCESSING_TIMEOUT = "processing_timeout"

    @property
    def retryable(self) -> bool:
        """Only timeouts are worth a second attempt with the same input."""
        return self is FailureReason.PROCESSING_TIMEOUT


class ConfidenceTier(str, Enum):
    """Confidence tier classification for extractions."""

    HIGH = "high"  # ≥ 0.9
    MEDIUM = "medium"  # 0.5 - 0.9
    LOW = "low"  # 0.1 - 0.5
    NONE = "none"  # < 0.1


class ResolutionStatus(Enum):
    """Outcome of mapping an account fragment to a managed account."""

    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"
    AMBIGUOUS = "ambiguous"


class CategorizationReason(Enum):
    """Which strategy produced a category assignment."""

    USER_RULE = "user_rule"
    MERCHANT_HISTORY = "merchant_history"
    SIMILAR_MERCHANT = "similar_merchant"
    KEYWORD_MATCH = "keyword_match"
    DEFAULT_CATEGORY = "default_category"


@dataclass(frozen=True)
class InboundMessage:
    """Raw SMS handed over by the collector.

    Attributes:
        sender: Sender identifier, e.g. "VK-HDFCBK"
        body: Message text
        received_at: When the device received the message
    """

    sender: str
    body: str
    received_at: datetime

    def is_potential_transaction(self) -> bool:
        """Check whether the body mentions any transaction keyword."""
        body = self.body.lower()
        return any(keyword in body for keyword in TRANSACTION_KEYWORDS)


@dataclass(frozen=True)
class BankPattern:
    """Matching profile for one bank's message format.

    Attributes:
        bank_name: Display name, also the registry key
        sender_pattern: Regex matched against the sender identifier
        amount_pattern: Regex whose first group is the amount text
        merchant_pattern: Regex whose first group is the merchant
        date_pattern: Regex whose first group is the date text
        type_pattern: Regex whose first group is the debit/credit word
        account_pattern: Optional regex whose first group is the account fragment
        is_active: Inactive patterns are skipped by candidate lookup
        decimal_separator: Decimal mark used by this bank's amounts
        thousands_separator: Grouping mark used by this bank's amounts
    """

    bank_name: str
    sender_pattern: str
    amount_pattern: str
    merchant_pattern: str
    date_pattern: str
    type_pattern: str
    account_pattern: str | None = None
    is_active: bool = True
    decimal_separator: str = "."
    thousands_separator: str = ","

    def field_patterns(self) -> dict[FieldName, str | None]:
        """Return the sub-pattern for every extractable field."""
        return {
            FieldName.AMOUNT: self.amount_pattern,
            FieldName.MERCHANT: self.merchant_pattern,
            FieldName.DATE: self.date_pattern,
            FieldName.TYPE: self.type_pattern,
            FieldName.ACCOUNT: self.account_pattern,
        }

    def matches_sender(self, sender: str) -> bool:
        """Check whether this pattern claims the given sender."""
        regex = compile_pattern(self.sender_pattern)
        return regex is not None and regex.search(sender) is not None


@dataclass
class ExtractedFields:
    """Per-field text pulled out of a message by one pattern.

    Attributes:
        fields: Field name to matched text, only for fields that matched
        pattern: Pattern the fields came from
        processing_time_ms: Time spent extracting
    """

    fields: dict[str, str] = field(default_factory=dict)
    pattern: BankPattern | None = None
    processing_time_ms: float = 0.0

    def has(self, name: FieldName | str) -> bool:
        key = name.value if isinstance(name, FieldName) else name
        return bool(self.fields.get(key, "").strip())

    def get(self, name: FieldName | str) -> str | None:
        key = name.value if isinstance(name, FieldName) else name
        value = self.fields.get(key)
        return value if value and value.strip() else None

    @property
    def count(self) -> int:
        return sum(1 for value in self.fields.values() if value and value.strip())


@dataclass(frozen=True)
class ExtractedTransaction:
    """Structured transaction built from a message or entered by hand.

    Attributes:
        amount: Exact positive amount
        direction: Income, expense or transfer direction
        merchant: Merchant or counterparty name
        occurred_at: When the transaction happened
        account_identifier: Account fragment as printed in the message
        account_id: Managed account, only when resolution was unambiguous
        note: Free text (the raw SMS body for extracted transactions)
        source: Origin of the transaction
    """

    amount: Decimal
    direction: TransactionType
    merchant: str
    occurred_at: datetime
    account_identifier: str | None = None
    account_id: int | None = None
    note: str | None = None
    source: TransactionSource = TransactionSource.SMS_AUTO


def _check_confidence(confidence: float) -> None:
    if not 0.0 <= confidence <= 1.0:
        raise ValueError(f"Confidence {confidence} not in [0, 1]")


@dataclass(frozen=True)
class ExtractionSuccess:
    """Successful extraction.

    Attributes:
        transaction: Extracted transaction
        confidence: Weighted score from 0.0 to 1.0
        details: Raw fields and the pattern that produced them
        account_resolution: Outcome of matching the account fragment, None
            when the message carried no fragment
    """

    transaction: ExtractedTransaction
    confidence: float
    details: ExtractedFields
    account_resolution: "AccountResolution | None" = None

    is_successful: ClassVar[bool] = True

    def __post_init__(self) -> None:
        _check_confidence(self.confidence)

    @property
    def account_ambiguous(self) -> bool:
        """Whether several accounts matched and the user has to pick one."""
        return self.account_resolution is not None and self.account_resolution.needs_review


@dataclass(frozen=True)
class ExtractionFailure:
    """Failed extraction carrying the confidence computed before failing.

    Attributes:
        reason: Typed failure reason
        confidence: Score reached before the failure (0.0 if nothing matched)
        details: Whatever fields were extracted
        message: Human-readable explanation
    """

    reason: FailureReason
    confidence: float = 0.0
    details: ExtractedFields = field(default_factory=ExtractedFields)
    message: str = ""

    is_successful: ClassVar[bool] = False
    transaction: ClassVar[None] = None
    account_resolution: ClassVar[None] = None
    account_ambiguous: ClassVar[bool] = False

    def __post_init__(self) -> None:
        _check_confidence(self.confidence)


ExtractionResult = Union[ExtractionSuccess, ExtractionFailure]


@dataclass(frozen=True)
class Account:
    """Managed account the user has configured."""

    id: int
    bank_name: str
    account_number: str
    nickname: str = ""
    is_active: bool = True


@dataclass(frozen=True)
class AccountResolution:
    """Result of resolving an account fragment.

    Attributes:
        account_id: Bound account, only when status is RESOLVED
        status: Resolved, unresolved or ambiguous
        candidates: Ids of every account that matched the fragment
    """

    account_id: int | None
    status: ResolutionStatus
    candidates: tuple[int, ...] = ()

    @property
    def needs_review(self) -> bool:
        return self.status is ResolutionStatus.AMBIGUOUS


@dataclass(frozen=True)
class Category:
    """Spending category.

    Attributes:
        id: Category id
        name: Display name
        icon: Icon name, carried through unchanged
        color: Hex color, carried through unchanged
        is_default: True for built-in categories
        parent_id: Optional parent (single level)
    """

    id: int
    name: str
    icon: str = ""
    color: str = ""
    is_default: bool = False
    parent_id: int | None = None

    def validate_parent(self, categories: list["Category"]) -> None:
        """Check that the parent exists and keeps the hierarchy single-level.

        Args:
            categories: Every known category

        Raises:
            CategoryHierarchyError: If the parent is self, unknown, or has a parent itself
        """
        if self.parent_id is None:
            return
        if self.parent_id == self.id:
            raise CategoryHierarchyError(f"Category {self.name!r} cannot be its own parent")

        by_id = {category.id: category for category in categories}
        parent = by_id.get(self.parent_id)
        if parent is None:
            raise CategoryHierarchyError(f"Unknown parent category id {self.parent_id}")
        if parent.parent_id is not None:
            # Nested parents would allow A -> B -> A loops
            raise CategoryHierarchyError(
                f"Parent {parent.name!r} already has a parent; only one level is allowed"
            )


@dataclass
class CategoryRule:
    """Merchant pattern mapped to a category.

    Attributes:
        merchant_pattern: Merchant name or fragment the rule applies to
        category_id: Target category
        confidence: Rule confidence from 0.0 to 1.0
        is_user_defined: True when created from a user correction
        usage_count: How many times the rule has been applied or reinforced
        last_used: When the rule was last applied or reinforced
        id: Store id (None until persisted)
    """

    merchant_pattern: str
    category_id: int
    confidence: float
    is_user_defined: bool = False
    usage_count: int = 0
    last_used: datetime | None = None
    id: int | None = None

    @property
    def normalized_pattern(self) -> str:
        return normalize_merchant_name(self.merchant_pattern)

    def matches(self, merchant: str) -> bool:
        """Check whether the rule applies to a merchant.

        Matches on equal normalized names or when the normalized pattern
        appears in the merchant as whole words.
        """
        pattern = self.normalized_pattern
        normalized = normalize_merchant_name(merchant)
        if not pattern or not normalized:
            return False
        return f" {pattern} " in f" {normalized} "

    def is_exact_for(self, merchant: str) -> bool:
        return bool(self.normalized_pattern) and self.normalized_pattern == normalize_merchant_name(
            merchant
        )


@dataclass
class MerchantInfo:
    """Running categorization profile for one merchant.

    Attributes:
        name: Merchant name as last seen
        normalized_name: Folded key used for lookups
        category_id: Associated category (None if never categorized)
        confidence: Association confidence from 0.0 to 1.0
        transaction_count: Number of transactions that fed the profile
    """

    name: str
    normalized_name: str
    category_id: int | None
    confidence: float = 0.0
    transaction_count: int = 0


@dataclass(frozen=True)
class KeywordMapping:
    """Coarse keyword to category fallback."""

    keyword: str
    category_id: int
    is_default: bool = True


@dataclass(frozen=True)
class CategorizationResult:
    """Category chosen for a transaction.

    Attributes:
        category: Chosen category
        confidence: Confidence from 0.0 to 1.0
        reason: Strategy that produced the category
    """

    category: Category
    confidence: float
    reason: CategorizationReason


@dataclass
class PipelineConfig:
    """Configuration for the extraction pipeline.

    Attributes:
        timeout_ms: Time budget for one message
        trusted_senders: Bank names whose messages earn the sender-trusted factor
        review_threshold: Successful extractions below this need manual review
        max_workers: Worker threads for extraction and batch scans
    """

    timeout_ms: int = 500
    trusted_senders: tuple[str, ...] = DEFAULT_TRUSTED_BANKS
    review_threshold: float = 0.6
    max_workers: int = 4

    def is_trusted(self, bank_name: str) -> bool:
        return bank_name.lower() in {name.lower() for name in self.trusted_senders}
