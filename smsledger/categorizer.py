"""Categorization engine with learning from user corrections.

Resolution order, first hit wins:

1. User-defined rule matching the merchant
2. Merchant history (exact name, then normalized name)
3. Keyword match on the merchant, then on the note text
4. The Uncategorized category
"""

import logging
import re
from datetime import datetime
from typing import Any, Callable

from smsledger.models import (
    CategorizationReason,
    CategorizationResult,
    Category,
    CategoryRule,
    KeywordMapping,
    MerchantInfo,
    TransactionSource,
    normalize_merchant_name,
)
from smsledger.store import CategorizationStore

logger = logging.getLogger(__name__)

MIN_MERCHANT_CONFIDENCE = 0.6
KEYWORD_CONFIDENCE = 0.8
NEW_RULE_CONFIDENCE = 0.9
MAX_RULE_CONFIDENCE = 0.95
NEW_MERCHANT_CONFIDENCE = 0.9
MAX_MERCHANT_CONFIDENCE = 0.99
SIMILAR_MERCHANT_DISCOUNT = 0.8

# Payment rails and wallets named in most bank SMS bodies
_BANK_WORDING = re.compile(
    r"\b(?:upi|neft|rtgs|imps|transfer(?:red)?|paytm|gpay|google pay|phonepe)\b",
    re.IGNORECASE,
)


def _merchant_of(transaction: Any) -> str:
    return (getattr(transaction, "merchant", None) or "").strip()


def _note_of(transaction: Any) -> str | None:
    note = getattr(transaction, "note", None) or getattr(transaction, "description", None)
    if note and getattr(transaction, "source", None) is TransactionSource.SMS_AUTO:
        # SMS notes are the raw body
        note = _BANK_WORDING.sub(" ", note)
    return note


def best_keyword(text: str, mappings: list[KeywordMapping]) -> KeywordMapping | None:
    """Pick the most specific keyword contained in the text.

    Args:
        text: Text to scan (case-insensitive)
        mappings: Keyword dictionary

    Returns:
        Longest matching keyword (alphabetical on ties), or None
    """
    lowered = text.lower()
    hits = [m for m in mappings if m.keyword and m.keyword in lowered]
    if not hits:
        return None
    return min(hits, key=lambda m: (-len(m.keyword), m.keyword))


class CategorizationEngine:
    """Resolve categories for transactions and learn from corrections.

    Accepts any transaction-like object with a ``merchant`` attribute and an
    optional ``note`` or ``description``, so SMS and manual entries go
    through the same chain.
    """

    def __init__(
        self, store: CategorizationStore, clock: Callable[[], datetime] = datetime.now
    ) -> None:
        self.store = store
        self._clock = clock

    def categorize(self, transaction: Any) -> CategorizationResult:
        """Assign a category to a transaction. Never fails.

        Args:
            transaction: Transaction with a merchant and optional note

        Returns:
            CategorizationResult naming the category and the strategy used
        """
        merchant = _merchant_of(transaction)
        note = _note_of(transaction)

        with self.store.merchant_lock(merchant):
            result = self._apply_user_rule(merchant)
            if result is None:
                result = self._by_merchant_history(merchant, MIN_MERCHANT_CONFIDENCE)
            if result is None:
                result = self._by_keywords(merchant, note)

        if result is None:
            result = CategorizationResult(
                category=self.store.get_uncategorized(),
                confidence=0.0,
                reason=CategorizationReason.DEFAULT_CATEGORY,
            )

        logger.debug(
            "Categorized %r as %s (%s, %.2f)",
            merchant,
            result.category.name,
            result.reason.value,
            result.confidence,
        )
        return result

    def learn(self, transaction: Any, corrected_category: Category) -> None:
        """Record a user correction for the transaction's merchant.

        Updates the merchant profile and the merchant's user rule (creating
        it if needed), so the next transaction from the same normalized
        merchant gets the corrected category.

        Args:
            transaction: Transaction the user re-categorized
            corrected_category: Category chosen by the user

        Raises:
            ValueError: If the merchant is empty or the category is unknown
        """
        merchant = _merchant_of(transaction)
        normalized = normalize_merchant_name(merchant)
        if not normalized:
            raise ValueError("Cannot learn from a transaction without a merchant")
        if self.store.get_category(corrected_category.id) is None:
            raise ValueError(f"Unknown category id {corrected_category.id}")

        with self.store.merchant_lock(merchant):
            self._learn_merchant(merchant, normalized, corrected_category)
            self._learn_rule(merchant, corrected_category)

        logger.info("Learned %r -> %s", merchant, corrected_category.name)

    def suggest_categories(self, merchant: str, limit: int = 5) -> list[CategorizationResult]:
        """Rank candidate categories for a merchant without recording usage.

        Combines the user rule, merchant history (any confidence), keyword
        match and categories of similar merchants, one entry per category.

        Args:
            merchant: Merchant name
            limit: Maximum number of suggestions

        Returns:
            Suggestions, most confident first
        """
        suggestions: list[CategorizationResult] = []
        seen: set[int] = set()

        def add(result: CategorizationResult | None) -> None:
            if result is not None and result.category.id not in seen:
                suggestions.append(result)
                seen.add(result.category.id)

        ranked = self._ranked_user_rules(merchant)
        if ranked:
            rule, category = ranked[0]
            add(CategorizationResult(category, rule.confidence, CategorizationReason.USER_RULE))
        add(self._by_merchant_history(merchant, 0.0))
        add(self._by_keywords(merchant, None))

        for info, similarity in self.store.find_similar_merchants(merchant, limit=3):
            if info.category_id is None:
                continue
            category = self.store.get_category(info.category_id)
            if category is not None:
                confidence = round(info.confidence * similarity * SIMILAR_MERCHANT_DISCOUNT, 4)
                add(CategorizationResult(category, confidence, CategorizationReason.SIMILAR_MERCHANT))

        suggestions.sort(key=lambda r: r.confidence, reverse=True)
        return suggestions[:limit]

    def add_keyword_mapping(self, keyword: str, category: Category) -> bool:
        return self.store.add_keyword(keyword, category.id, is_default=False)

    def remove_keyword_mapping(self, keyword: str) -> bool:
        return self.store.remove_keyword(keyword)

    def keywords_for_category(self, category: Category) -> list[str]:
        return self.store.keywords_for_category(category.id)

    def _ranked_user_rules(self, merchant: str) -> list[tuple[CategoryRule, Category]]:
        """User rules matching the merchant, best first, with their categories.

        Exact-pattern rules outrank broader ones; then confidence, then most
        recent use, then rule id.
        """
        ranked = []
        for rule in self.store.rules_for_merchant(merchant):
            if not rule.is_user_defined:
                continue
            category = self.store.get_category(rule.category_id)
            if category is None:
                continue
            ranked.append((rule, category))

        ranked.sort(
            key=lambda pair: (
                pair[0].is_exact_for(merchant),
                pair[0].confidence,
                pair[0].last_used or datetime.min,
                pair[0].id or 0,
            ),
            reverse=True,
        )
        return ranked

    def _apply_user_rule(self, merchant: str) -> CategorizationResult | None:
        ranked = self._ranked_user_rules(merchant)
        if not ranked:
            return None

        rule, category = ranked[0]
        # The winning rule may belong to a broader merchant guarded by another lock
        self.store.record_rule_usage(rule.id, self._clock())
        return CategorizationResult(category, rule.confidence, CategorizationReason.USER_RULE)

    def _by_merchant_history(self, merchant: str, threshold: float) -> CategorizationResult | None:
        if not merchant:
            return None
        info = self.store.get_merchant(merchant)
        if info is None:
            info = self.store.get_merchant_by_normalized(normalize_merchant_name(merchant))
        if info is None or info.category_id is None or info.confidence < threshold:
            return None

        category = self.store.get_category(info.category_id)
        if category is None:
            return None
        return CategorizationResult(category, info.confidence, CategorizationReason.MERCHANT_HISTORY)

    def _by_keywords(self, merchant: str, note: str | None) -> CategorizationResult | None:
        mappings = self.store.list_keywords()
        for text in (merchant, note):
            if not text:
                continue
            mapping = best_keyword(text, mappings)
            if mapping is None:
                continue
            category = self.store.get_category(mapping.category_id)
            if category is not None:
                return CategorizationResult(category, KEYWORD_CONFIDENCE, CategorizationReason.KEYWORD_MATCH)
        return None

    def _learn_merchant(self, merchant: str, normalized: str, category: Category) -> None:
        info = self.store.get_merchant_by_normalized(normalized)
        if info is None:
            info = MerchantInfo(
                name=merchant,
                normalized_name=normalized,
                category_id=category.id,
                confidence=NEW_MERCHANT_CONFIDENCE,
                transaction_count=1,
            )
        elif info.category_id == category.id:
            info.transaction_count += 1
            info.confidence = min(
                MAX_MERCHANT_CONFIDENCE,
                info.confidence + (1.0 - info.confidence) / (info.transaction_count + 1),
            )
            info.name = merchant
        else:
            # A correction away from the recorded category is fresh evidence
            info.category_id = category.id
            info.confidence = NEW_MERCHANT_CONFIDENCE
            info.transaction_count += 1
            info.name = merchant

        self.store.upsert_merchant(info)

    def _learn_rule(self, merchant: str, category: Category) -> None:
        now = self._clock()
        existing = [rule for rule in self.store.rules_with_pattern(merchant) if rule.is_user_defined]
        if not existing:
            self.store.add_rule(
                CategoryRule(
                    merchant_pattern=merchant,
                    category_id=category.id,
                    confidence=NEW_RULE_CONFIDENCE,
                    is_user_defined=True,
                    usage_count=1,
                    last_used=now,
                )
            )
            return

        for rule in existing:
            if rule.category_id == category.id:
                learning_rate = 1.0 / (rule.usage_count + 1)
                rule.confidence = min(MAX_RULE_CONFIDENCE, rule.confidence + learning_rate * 0.1)
            else:
                rule.category_id = category.id
                rule.confidence = NEW_RULE_CONFIDENCE
            rule.usage_count += 1
            rule.last_used = now
            self.store.update_rule(rule)


__all__ = [
    "CategorizationEngine",
    "KEYWORD_CONFIDENCE",
    "MIN_MERCHANT_CONFIDENCE",
    "best_keyword",
]
