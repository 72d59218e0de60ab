"""Account resolution for extracted transactions.

Bank messages only print a masked fragment of the account ("A/c XX1234").
The resolver maps that fragment to one managed account and refuses to guess
when more than one account fits.
"""

import logging
import re
import threading
from dataclasses import dataclass, replace
from typing import Iterable

from smsledger.models import Account, AccountResolution, ResolutionStatus

logger = logging.getLogger(__name__)

MIN_FRAGMENT_DIGITS = 3


def fragment_digits(fragment: str) -> str:
    """Keep only the digits of an account fragment ("XX1234" -> "1234")."""
    return re.sub(r"\D", "", fragment)


@dataclass(frozen=True)
class AccountMapping:
    """Explicit link between an SMS account identifier and a managed account.

    Attributes:
        account_id: Managed account
        bank_name: Bank whose messages carry the identifier
        account_identifier: Identifier as it appears in messages, e.g. "XX1234"
        is_active: Inactive mappings are ignored
    """

    account_id: int
    bank_name: str
    account_identifier: str
    is_active: bool = True


class AccountMappingRegistry:
    """User-confirmed identifier mappings, consulted before suffix matching."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._mappings: list[AccountMapping] = []

    def add(self, account_id: int, bank_name: str, account_identifier: str) -> AccountMapping:
        """Record a mapping; an identical existing mapping is reactivated instead.

        Raises:
            ValueError: If the identifier has no digits
        """
        if not fragment_digits(account_identifier):
            raise ValueError(f"Account identifier has no digits: {account_identifier!r}")

        mapping = AccountMapping(account_id, bank_name, account_identifier)
        with self._lock:
            for index, existing in enumerate(self._mappings):
                if self._same_key(existing, bank_name, account_identifier) and existing.account_id == account_id:
                    self._mappings[index] = replace(existing, is_active=True)
                    return self._mappings[index]
            self._mappings.append(mapping)
        return mapping

    def deactivate(self, bank_name: str, account_identifier: str) -> bool:
        changed = False
        with self._lock:
            for index, existing in enumerate(self._mappings):
                if self._same_key(existing, bank_name, account_identifier) and existing.is_active:
                    self._mappings[index] = replace(existing, is_active=False)
                    changed = True
        return changed

    def lookup(self, bank_name: str, account_identifier: str) -> set[int]:
        """Return the account ids actively mapped to this identifier."""
        with self._lock:
            return {
                m.account_id
                for m in self._mappings
                if m.is_active and self._same_key(m, bank_name, account_identifier)
            }

    def mappings_for_account(self, account_id: int) -> list[AccountMapping]:
        with self._lock:
            return [m for m in self._mappings if m.account_id == account_id]

    @staticmethod
    def _same_key(mapping: AccountMapping, bank_name: str, account_identifier: str) -> bool:
        return (
            mapping.bank_name.lower() == bank_name.lower()
            and fragment_digits(mapping.account_identifier) == fragment_digits(account_identifier)
        )


class AccountResolver:
    """Resolve account fragments to managed accounts."""

    def __init__(self, mappings: AccountMappingRegistry | None = None) -> None:
        self.mappings = mappings

    def resolve(
        self,
        fragment: str | None,
        accounts: Iterable[Account],
        bank_name: str | None = None,
    ) -> AccountResolution:
        """Map a fragment to exactly one account.

        An explicit mapping for (bank, fragment) wins. Otherwise accounts
        whose number ends with the fragment digits are candidates: one
        candidate resolves, none leaves the transaction unbound, several are
        reported as ambiguous for manual assignment.

        Args:
            fragment: Account identifier from the message
            accounts: Managed accounts to consider
            bank_name: Bank of the message, used for explicit mappings

        Returns:
            AccountResolution describing the outcome
        """
        digits = fragment_digits(fragment or "")
        if len(digits) < MIN_FRAGMENT_DIGITS:
            return AccountResolution(None, ResolutionStatus.UNRESOLVED)

        if self.mappings is not None and bank_name:
            mapped = self.mappings.lookup(bank_name, fragment or "")
            if mapped:
                return self._outcome(mapped, fragment)

        matching = {
            account.id
            for account in accounts
            if account.is_active and fragment_digits(account.account_number).endswith(digits)
        }
        return self._outcome(matching, fragment)

    @staticmethod
    def _outcome(account_ids: set[int], fragment: str | None) -> AccountResolution:
        candidates = tuple(sorted(account_ids))
        if len(candidates) == 1:
            return AccountResolution(candidates[0], ResolutionStatus.RESOLVED, candidates)
        if not candidates:
            logger.debug("No account matches fragment %s", fragment)
            return AccountResolution(None, ResolutionStatus.UNRESOLVED)
        logger.warning("Fragment %s matches %d accounts; leaving unassigned", fragment, len(candidates))
        return AccountResolution(None, ResolutionStatus.AMBIGUOUS, candidates)


__all__ = ["AccountMapping", "AccountMappingRegistry", "AccountResolver", "fragment_digits"]
