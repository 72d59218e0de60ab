"""SQLite store for categorization state.

Holds categories, category rules, merchant profiles and keyword mappings.
The categorization engine and learning feedback are the only writers.
"""

import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from rapidfuzz import fuzz

from smsledger.models import (
    Category,
    CategoryHierarchyError,
    CategoryRule,
    KeywordMapping,
    MerchantInfo,
    normalize_merchant_name,
)

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"


class KeyedLocks:
    """Fixed pool of locks, one picked per key by hash.

    Keeps a single writer per normalized merchant while writes for most
    other merchants proceed in parallel. Memory stays bounded however many
    merchants a long scan sees; two keys may share a stripe.
    """

    def __init__(self, stripes: int = 64) -> None:
        if stripes < 1:
            raise ValueError("Need at least one lock stripe")
        self._locks: tuple[threading.RLock, ...] = tuple(threading.RLock() for _ in range(stripes))

    def get(self, key: str) -> threading.RLock:
        return self._locks[hash(key) % len(self._locks)]

    def __len__(self) -> int:
        return len(self._locks)


class CategorizationStore:
    """SQLite database for categories, rules, merchants and keywords.

    A single connection is shared by all threads and guarded by a lock;
    per-merchant write serialization is provided by merchant_lock().
    """

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        """Open (or create) the store.

        Args:
            db_path: SQLite file path, or ":memory:" for a throwaway store

        Raises:
            sqlite3.OperationalError: If the database cannot be created/opened
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        self.conn: sqlite3.Connection = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._conn_lock = threading.RLock()
        self._merchant_locks = KeyedLocks()

        self._create_tables()

    def _create_tables(self) -> None:
        """Create the tables if they don't exist."""
        with self._conn_lock:
            self.conn.executescript("""
                CREATE TABLE IF NOT EXISTS categories (
                    id INTEGER PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE COLLATE NOCASE,
                    icon TEXT NOT NULL DEFAULT '',
                    color TEXT NOT NULL DEFAULT '',
                    is_default INTEGER NOT NULL DEFAULT 0,
                    parent_id INTEGER REFERENCES categories(id)
                );
                CREATE TABLE IF NOT EXISTS category_rules (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    merchant_pattern TEXT NOT NULL,
                    normalized_pattern TEXT NOT NULL,
                    category_id INTEGER NOT NULL REFERENCES categories(id),
                    confidence REAL NOT NULL,
                    is_user_defined INTEGER NOT NULL DEFAULT 0,
                    usage_count INTEGER NOT NULL DEFAULT 0,
                    last_used TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_rules_pattern ON category_rules(normalized_pattern);
                CREATE TABLE IF NOT EXISTS merchant_info (
                    normalized_name TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    category_id INTEGER REFERENCES categories(id),
                    confidence REAL NOT NULL DEFAULT 0,
                    transaction_count INTEGER NOT NULL DEFAULT 0
                );
                CREATE TABLE IF NOT EXISTS keyword_mappings (
                    keyword TEXT PRIMARY KEY,
                    category_id INTEGER NOT NULL REFERENCES categories(id),
                    is_default INTEGER NOT NULL DEFAULT 1
                );
            """)
            self.conn.commit()

    def _execute_query(self, query: str, params: tuple = ()) -> list[sqlite3.Row]:
        """Execute a SELECT query and return results.

        Args:
            query: SQL query string
            params: Query parameters

        Returns:
            List of result rows
        """
        with self._conn_lock:
            cursor = self.conn.execute(query, params)
            return cursor.fetchall()

    def _execute(self, query: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._conn_lock:
            cursor = self.conn.execute(query, params)
            self.conn.commit()
            return cursor

    def merchant_lock(self, merchant: str) -> threading.RLock:
        """Lock serializing writes for one normalized merchant."""
        return self._merchant_locks.get(normalize_merchant_name(merchant))

    # Categories

    def add_category(self, category: Category) -> Category:
        """Insert or update a category.

        Raises:
            ValueError: If the name is empty
            CategoryHierarchyError: If the parent would break the hierarchy
        """
        if not category.name.strip():
            raise ValueError("Category name cannot be empty")
        others = [c for c in self.list_categories() if c.id != category.id]
        category.validate_parent(others + [category])
        if category.parent_id is not None and any(c.parent_id == category.id for c in others):
            raise CategoryHierarchyError(
                f"{category.name!r} has subcategories and cannot become a subcategory"
            )

        self._execute(
            """INSERT INTO categories (id, name, icon, color, is_default, parent_id)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   name = excluded.name, icon = excluded.icon, color = excluded.color,
                   is_default = excluded.is_default, parent_id = excluded.parent_id""",
            (
                category.id,
                category.name.strip(),
                category.icon,
                category.color,
                int(category.is_default),
                category.parent_id,
            ),
        )
        return category

    def get_category(self, category_id: int) -> Category | None:
        rows = self._execute_query("SELECT * FROM categories WHERE id = ?", (category_id,))
        return self._row_to_category(rows[0]) if rows else None

    def get_category_by_name(self, name: str) -> Category | None:
        rows = self._execute_query("SELECT * FROM categories WHERE name = ?", (name.strip(),))
        return self._row_to_category(rows[0]) if rows else None

    def list_categories(self) -> list[Category]:
        rows = self._execute_query("SELECT * FROM categories ORDER BY id")
        return [self._row_to_category(row) for row in rows]

    def get_uncategorized(self) -> Category:
        """Return the fallback category, creating it if it is missing."""
        with self._conn_lock:
            existing = self.get_category_by_name(UNCATEGORIZED)
            if existing is not None:
                return existing

            rows = self._execute_query("SELECT COALESCE(MAX(id), 0) + 1 AS next_id FROM categories")
            category = Category(rows[0]["next_id"], UNCATEGORIZED, "help_outline", "#9E9E9E", True)
            logger.info("Creating missing %s category with id %d", UNCATEGORIZED, category.id)
            return self.add_category(category)

    # Rules

    def add_rule(self, rule: CategoryRule) -> CategoryRule:
        """Insert a rule and return it with its id.

        Raises:
            ValueError: If the merchant pattern normalizes to nothing
        """
        normalized = normalize_merchant_name(rule.merchant_pattern)
        if not normalized:
            raise ValueError("Merchant pattern cannot be empty")

        cursor = self._execute(
            """INSERT INTO category_rules
                   (merchant_pattern, normalized_pattern, category_id, confidence,
                    is_user_defined, usage_count, last_used)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                rule.merchant_pattern.strip(),
                normalized,
                rule.category_id,
                rule.confidence,
                int(rule.is_user_defined),
                rule.usage_count,
                rule.last_used.isoformat() if rule.last_used else None,
            ),
        )
        rule.id = cursor.lastrowid
        return rule

    def update_rule(self, rule: CategoryRule) -> None:
        if rule.id is None:
            raise ValueError("Cannot update a rule that was never stored")
        self._execute(
            """UPDATE category_rules
               SET category_id = ?, confidence = ?, is_user_defined = ?,
                   usage_count = ?, last_used = ?
               WHERE id = ?""",
            (
                rule.category_id,
                rule.confidence,
                int(rule.is_user_defined),
                rule.usage_count,
                rule.last_used.isoformat() if rule.last_used else None,
                rule.id,
            ),
        )

    def record_rule_usage(self, rule_id: int, used_at: datetime) -> None:
        """Bump a rule's usage count and last-used time in place.

        Leaves category and confidence untouched, so a concurrent correction
        to the same rule is never overwritten.
        """
        self._execute(
            """UPDATE category_rules
               SET usage_count = usage_count + 1, last_used = ?
               WHERE id = ?""",
            (used_at.isoformat(), rule_id),
        )

    def list_rules(self) -> list[CategoryRule]:
        rows = self._execute_query("SELECT * FROM category_rules ORDER BY id")
        return [self._row_to_rule(row) for row in rows]

    def rules_for_merchant(self, merchant: str) -> list[CategoryRule]:
        """Return every rule whose pattern matches the merchant."""
        return [rule for rule in self.list_rules() if rule.matches(merchant)]

    def rules_with_pattern(self, merchant: str) -> list[CategoryRule]:
        """Return rules whose pattern normalizes to the same key as the merchant."""
        rows = self._execute_query(
            "SELECT * FROM category_rules WHERE normalized_pattern = ? ORDER BY id",
            (normalize_merchant_name(merchant),),
        )
        return [self._row_to_rule(row) for row in rows]

    # Merchants

    def get_merchant(self, name: str) -> MerchantInfo | None:
        """Look up a merchant by its name exactly as recorded."""
        rows = self._execute_query("SELECT * FROM merchant_info WHERE name = ?", (name.strip(),))
        return self._row_to_merchant(rows[0]) if rows else None

    def get_merchant_by_normalized(self, normalized_name: str) -> MerchantInfo | None:
        rows = self._execute_query(
            "SELECT * FROM merchant_info WHERE normalized_name = ?", (normalized_name,)
        )
        return self._row_to_merchant(rows[0]) if rows else None

    def upsert_merchant(self, info: MerchantInfo) -> None:
        if not info.normalized_name:
            raise ValueError("Merchant name cannot be empty")
        self._execute(
            """INSERT INTO merchant_info
                   (normalized_name, name, category_id, confidence, transaction_count)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(normalized_name) DO UPDATE SET
                   name = excluded.name, category_id = excluded.category_id,
                   confidence = excluded.confidence,
                   transaction_count = excluded.transaction_count""",
            (
                info.normalized_name,
                info.name,
                info.category_id,
                info.confidence,
                info.transaction_count,
            ),
        )

    def list_merchants(self) -> list[MerchantInfo]:
        rows = self._execute_query(
            "SELECT * FROM merchant_info ORDER BY transaction_count DESC, normalized_name"
        )
        return [self._row_to_merchant(row) for row in rows]

    def find_similar_merchants(
        self, merchant: str, threshold: float = 0.7, limit: int = 5
    ) -> list[tuple[MerchantInfo, float]]:
        """Find recorded merchants with names similar to the given one.

        Args:
            merchant: Merchant name to search for
            threshold: Minimum similarity score (0.0 to 1.0)
            limit: Maximum number of results

        Returns:
            (merchant, similarity) pairs, most similar first; the merchant itself is excluded
        """
        normalized = normalize_merchant_name(merchant)
        if not normalized:
            return []

        matches = []
        for info in self.list_merchants():
            if info.normalized_name == normalized:
                continue
            similarity = fuzz.token_set_ratio(normalized, info.normalized_name) / 100.0
            if similarity >= threshold:
                matches.append((info, similarity))

        matches.sort(key=lambda x: (-x[1], x[0].normalized_name))
        return matches[:limit]

    # Keywords

    def add_keyword(self, keyword: str, category_id: int, is_default: bool = False) -> bool:
        """Add or replace a keyword mapping.

        Returns:
            True if stored, False if the keyword is blank
        """
        keyword = keyword.strip().lower()
        if not keyword:
            return False
        self._execute(
            """INSERT INTO keyword_mappings (keyword, category_id, is_default)
               VALUES (?, ?, ?)
               ON CONFLICT(keyword) DO UPDATE SET
                   category_id = excluded.category_id, is_default = excluded.is_default""",
            (keyword, category_id, int(is_default)),
        )
        return True

    def remove_keyword(self, keyword: str) -> bool:
        cursor = self._execute(
            "DELETE FROM keyword_mappings WHERE keyword = ?", (keyword.strip().lower(),)
        )
        return cursor.rowcount > 0

    def list_keywords(self) -> list[KeywordMapping]:
        rows = self._execute_query("SELECT * FROM keyword_mappings ORDER BY keyword")
        return [
            KeywordMapping(row["keyword"], row["category_id"], bool(row["is_default"]))
            for row in rows
        ]

    def keywords_for_category(self, category_id: int) -> list[str]:
        rows = self._execute_query(
            "SELECT keyword FROM keyword_mappings WHERE category_id = ? ORDER BY keyword",
            (category_id,),
        )
        return [row["keyword"] for row in rows]

    @staticmethod
    def _row_to_category(row: sqlite3.Row) -> Category:
        return Category(
            id=row["id"],
            name=row["name"],
            icon=row["icon"],
            color=row["color"],
            is_default=bool(row["is_default"]),
            parent_id=row["parent_id"],
        )

    @staticmethod
    def _row_to_rule(row: sqlite3.Row) -> CategoryRule:
        return CategoryRule(
            merchant_pattern=row["merchant_pattern"],
            category_id=row["category_id"],
            confidence=row["confidence"],
            is_user_defined=bool(row["is_user_defined"]),
            usage_count=row["usage_count"],
            last_used=datetime.fromisoformat(row["last_used"]) if row["last_used"] else None,
            id=row["id"],
        )

    @staticmethod
    def _row_to_merchant(row: sqlite3.Row) -> MerchantInfo:
        return MerchantInfo(
            name=row["name"],
            normalized_name=row["normalized_name"],
            category_id=row["category_id"],
            confidence=row["confidence"],
            transaction_count=row["transaction_count"],
        )

    def close(self) -> None:
        """Close the database connection."""
        if self.conn:
            self.conn.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


__all__ = ["CategorizationStore", "KeyedLocks", "UNCATEGORIZED"]
