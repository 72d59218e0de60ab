"""Tests for the bank pattern registry."""

import threading
from dataclasses import replace

import pytest

from smsledger.models import DEFAULT_TRUSTED_BANKS
from smsledger.patterns import DEFAULT_BANK_PATTERNS, PatternRegistry
from tests.factories import TestDataFactory


class TestDefaultPatterns:
    """Test the built-in bank patterns."""

    def test_every_default_bank_is_trusted(self) -> None:
        """Test that the seeded banks are the trusted senders."""
        names = {pattern.bank_name for pattern in DEFAULT_BANK_PATTERNS}
        assert names == set(DEFAULT_TRUSTED_BANKS)

    def test_seeded_registry_size(self, registry: PatternRegistry) -> None:
        """Test that seeding registers every default bank."""
        assert len(registry) == len(DEFAULT_BANK_PATTERNS)

    @pytest.mark.parametrize(
        "sender,bank",
        [
            ("VK-HDFCBK", "HDFC Bank"),
            ("AD-ICICIB", "ICICI Bank"),
            ("BZ-SBIINB", "State Bank of India"),
            ("AX-AXISBK", "Axis Bank"),
            ("VM-KOTAKB", "Kotak Mahindra Bank"),
            ("JM-PAYTMB", "Paytm Payments Bank"),
            ("VK-PHONEPE", "PhonePe"),
            ("AD-GPAYIN", "Google Pay"),
        ],
    )
    def test_sender_routes_to_bank(self, registry: PatternRegistry, sender: str, bank: str) -> None:
        """Test that typical sender ids find their bank."""
        candidates = registry.find_candidates(sender)
        assert [pattern.bank_name for pattern in candidates] == [bank]

    def test_unknown_sender_has_no_candidates(self, registry: PatternRegistry) -> None:
        """Test that an unknown sender finds nothing."""
        assert registry.find_candidates("+919812345678") == []


class TestPatternRegistration:
    """Test registering and replacing patterns."""

    def test_register_and_get(self) -> None:
        """Test that a registered pattern can be fetched by bank name."""
        registry = PatternRegistry()
        pattern = TestDataFactory.create_pattern()
        registry.register(pattern)

        assert registry.get("test bank") == pattern

    def test_empty_bank_name_rejected(self) -> None:
        """Test that a pattern needs a bank name."""
        with pytest.raises(ValueError):
            PatternRegistry().register(TestDataFactory.create_pattern(bank_name="  "))

    def test_invalid_sender_pattern_rejected(self) -> None:
        """Test that an invalid sender regex is refused at registration."""
        with pytest.raises(ValueError):
            PatternRegistry().register(TestDataFactory.create_pattern(sender_pattern="(["))

    def test_replacement_keeps_position(self) -> None:
        """Test that replacing a bank's pattern keeps registration order."""
        registry = PatternRegistry()
        first = TestDataFactory.create_pattern("First Bank", "SHARED")
        second = TestDataFactory.create_pattern("Second Bank", "SHARED")
        registry.register(first)
        registry.register(second)

        registry.register(replace(first, amount_pattern=r"INR\s*([\d.]+)"))

        names = [pattern.bank_name for pattern in registry.find_candidates("AD-SHARED")]
        assert names == ["First Bank", "Second Bank"]
        assert registry.get("First Bank").amount_pattern == r"INR\s*([\d.]+)"
        assert len(registry) == 2

    def test_registration_order_preserved(self) -> None:
        """Test that candidates come back in registration order."""
        registry = PatternRegistry()
        for name in ("B Bank", "A Bank", "C Bank"):
            registry.register(TestDataFactory.create_pattern(name, "SHARED"))

        names = [pattern.bank_name for pattern in registry.find_candidates("SHARED")]
        assert names == ["B Bank", "A Bank", "C Bank"]


class TestPatternActivation:
    """Test deactivating and removing patterns."""

    def test_deactivated_pattern_not_a_candidate(self, registry: PatternRegistry) -> None:
        """Test that inactive patterns are skipped."""
        assert registry.deactivate("HDFC Bank")
        assert registry.find_candidates("VK-HDFCBK") == []
        assert registry.get("HDFC Bank").is_active is False

    def test_activate_restores_pattern(self, registry: PatternRegistry) -> None:
        """Test the deactivate/activate round trip."""
        registry.deactivate("HDFC Bank")
        registry.activate("HDFC Bank")
        assert [p.bank_name for p in registry.find_candidates("VK-HDFCBK")] == ["HDFC Bank"]

    def test_deactivate_unknown_bank(self, registry: PatternRegistry) -> None:
        """Test that deactivating an unknown bank reports False."""
        assert registry.deactivate("Nope Bank") is False

    def test_remove(self, registry: PatternRegistry) -> None:
        """Test that removed patterns are gone."""
        assert registry.remove("PhonePe")
        assert registry.get("PhonePe") is None
        assert registry.remove("PhonePe") is False


class TestRegistryConcurrency:
    """Test that reads and writes can interleave safely."""

    def test_concurrent_registration(self) -> None:
        """Test that parallel registrations all land exactly once."""
        registry = PatternRegistry()

        def register(index: int) -> None:
            registry.register(TestDataFactory.create_pattern(f"Bank {index}", f"BNK{index}"))
            registry.find_candidates(f"BNK{index}")

        threads = [threading.Thread(target=register, args=(i,)) for i in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(registry) == 20
