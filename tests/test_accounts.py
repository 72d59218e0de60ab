"""Tests for account resolution."""

import pytest

from smsledger.accounts import AccountMappingRegistry, AccountResolver, fragment_digits
from smsledger.models import Account, ResolutionStatus
from tests.factories import TestDataFactory


class TestFragmentDigits:
    """Test account fragment cleanup."""

    def test_masks_dropped(self) -> None:
        """Test that masking characters are removed."""
        assert fragment_digits("XX1234") == "1234"
        assert fragment_digits("**5678") == "5678"


class TestSuffixResolution:
    """Test suffix matching against managed accounts."""

    def test_single_match_resolves(self) -> None:
        """Test that one matching account is bound."""
        resolution = AccountResolver().resolve("XX1234", TestDataFactory.create_accounts())

        assert resolution.status is ResolutionStatus.RESOLVED
        assert resolution.account_id == 1

    def test_no_match_unresolved(self) -> None:
        """Test that no match leaves the transaction unbound."""
        resolution = AccountResolver().resolve("XX4321", TestDataFactory.create_accounts())

        assert resolution.status is ResolutionStatus.UNRESOLVED
        assert resolution.account_id is None

    def test_two_matches_ambiguous(self) -> None:
        """Test that two accounts ending in the same digits are never guessed."""
        accounts = [
            Account(1, "HDFC Bank", "11111234"),
            Account(2, "HDFC Bank", "22221234"),
        ]
        resolution = AccountResolver().resolve("XX1234", accounts)

        assert resolution.status is ResolutionStatus.AMBIGUOUS
        assert resolution.account_id is None
        assert resolution.candidates == (1, 2)
        assert resolution.needs_review

    def test_inactive_accounts_ignored(self) -> None:
        """Test that closed accounts do not make a match ambiguous."""
        accounts = [
            Account(1, "HDFC Bank", "11111234"),
            Account(2, "HDFC Bank", "22221234", is_active=False),
        ]
        resolution = AccountResolver().resolve("1234", accounts)

        assert resolution.account_id == 1

    def test_masked_account_numbers(self) -> None:
        """Test that stored numbers with separators still match."""
        accounts = [Account(7, "SBI", "XXXX-XXXX-9012")]
        assert AccountResolver().resolve("9012", accounts).account_id == 7

    @pytest.mark.parametrize("fragment", [None, "", "XX", "X12"])
    def test_short_fragments_unresolved(self, fragment) -> None:
        """Test that fragments with too few digits never resolve."""
        accounts = [Account(1, "HDFC Bank", "12")]
        assert AccountResolver().resolve(fragment, accounts).status is ResolutionStatus.UNRESOLVED


class TestExplicitMappings:
    """Test user-confirmed identifier mappings."""

    def test_mapping_wins_over_suffix(self) -> None:
        """Test that a confirmed mapping settles an ambiguous suffix."""
        accounts = [
            Account(1, "HDFC Bank", "11111234"),
            Account(2, "HDFC Bank", "22221234"),
        ]
        mappings = AccountMappingRegistry()
        mappings.add(2, "HDFC Bank", "XX1234")

        resolution = AccountResolver(mappings).resolve("XX1234", accounts, bank_name="hdfc bank")

        assert resolution.status is ResolutionStatus.RESOLVED
        assert resolution.account_id == 2

    def test_mapping_is_per_bank(self) -> None:
        """Test that a mapping for one bank does not affect another."""
        mappings = AccountMappingRegistry()
        mappings.add(2, "HDFC Bank", "XX1234")

        assert mappings.lookup("ICICI Bank", "XX1234") == set()

    def test_deactivated_mapping_ignored(self) -> None:
        """Test that inactive mappings fall back to suffix matching."""
        accounts = [Account(1, "HDFC Bank", "11111234")]
        mappings = AccountMappingRegistry()
        mappings.add(2, "HDFC Bank", "XX1234")
        assert mappings.deactivate("HDFC Bank", "1234")

        resolution = AccountResolver(mappings).resolve("XX1234", accounts, bank_name="HDFC Bank")

        assert resolution.account_id == 1

    def test_readding_reactivates(self) -> None:
        """Test that adding an identical mapping reactivates it."""
        mappings = AccountMappingRegistry()
        mappings.add(2, "HDFC Bank", "XX1234")
        mappings.deactivate("HDFC Bank", "XX1234")
        mappings.add(2, "HDFC Bank", "XX1234")

        assert mappings.lookup("HDFC Bank", "1234") == {2}
        assert len(mappings.mappings_for_account(2)) == 1

    def test_identifier_without_digits_rejected(self) -> None:
        """Test that a mapping needs digits to match on."""
        with pytest.raises(ValueError):
            AccountMappingRegistry().add(1, "HDFC Bank", "XXXX")
