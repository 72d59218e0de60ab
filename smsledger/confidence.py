"""Confidence scoring for SMS extractions.

Each piece of evidence the pipeline finds (a parsed amount, a recognised
sender, ...) contributes a fixed weight. The weights sum to 1.0, so a message
where every field matched and the sender is trusted scores exactly 1.0.
"""

import logging
from dataclasses import dataclass, fields
from decimal import Decimal

from smsledger.models import ConfidenceTier, ExtractedFields, FieldName, PipelineConfig

logger = logging.getLogger(__name__)

# Decimal weights keep the sum exact; scores are converted to float at the end.
CONFIDENCE_WEIGHTS: dict[str, Decimal] = {
    "amount_extracted": Decimal("0.30"),
    "type_extracted": Decimal("0.20"),
    "merchant_extracted": Decimal("0.15"),
    "date_extracted": Decimal("0.10"),
    "account_extracted": Decimal("0.10"),
    "pattern_matched": Decimal("0.10"),
    "sender_trusted": Decimal("0.05"),
}


def validate_weights(weights: dict[str, Decimal]) -> None:
    """Check a weight table before it is used for scoring.

    Args:
        weights: Factor name to weight

    Raises:
        ValueError: If a weight is negative, a factor is missing, or the sum is not 1.0
    """
    expected = {f.name for f in fields(ConfidenceFactors)}
    missing = expected - set(weights)
    if missing:
        raise ValueError(f"Missing confidence weights: {sorted(missing)}")
    unknown = set(weights) - expected
    if unknown:
        raise ValueError(f"Unknown confidence weights: {sorted(unknown)}")

    for name, weight in weights.items():
        if weight < 0:
            raise ValueError(f"Weight for {name} is negative: {weight}")

    total = sum(weights.values(), Decimal("0"))
    if total != Decimal("1"):
        raise ValueError(f"Confidence weights must sum to 1.0, got {total}")


@dataclass(frozen=True)
class ConfidenceFactors:
    """Evidence found while extracting one message."""

    amount_extracted: bool = False
    type_extracted: bool = False
    merchant_extracted: bool = False
    date_extracted: bool = False
    account_extracted: bool = False
    pattern_matched: bool = False
    sender_trusted: bool = False

    def score(self, weights: dict[str, Decimal] | None = None) -> float:
        """Sum the weights of every factor that is present.

        Args:
            weights: Optional weight table (defaults to CONFIDENCE_WEIGHTS)

        Returns:
            Score from 0.0 to 1.0
        """
        table = CONFIDENCE_WEIGHTS if weights is None else weights
        total = sum(
            (table[f.name] for f in fields(self) if getattr(self, f.name)),
            Decimal("0"),
        )
        return float(min(total, Decimal("1")))


def build_factors(
    extracted: ExtractedFields, config: PipelineConfig, amount_valid: bool | None = None
) -> ConfidenceFactors:
    """Build confidence factors from extracted fields.

    Args:
        extracted: Fields found by the winning pattern
        config: Pipeline configuration (trusted sender list)
        amount_valid: Override for the amount factor when the amount text was
            found but did not parse

    Returns:
        ConfidenceFactors for the extraction
    """
    pattern = extracted.pattern
    amount = extracted.has(FieldName.AMOUNT) if amount_valid is None else amount_valid
    return ConfidenceFactors(
        amount_extracted=amount,
        type_extracted=extracted.has(FieldName.TYPE),
        merchant_extracted=extracted.has(FieldName.MERCHANT),
        date_extracted=extracted.has(FieldName.DATE),
        account_extracted=extracted.has(FieldName.ACCOUNT),
        pattern_matched=pattern is not None,
        sender_trusted=pattern is not None and config.is_trusted(pattern.bank_name),
    )


def calculate_confidence(
    extracted: ExtractedFields, config: PipelineConfig, amount_valid: bool | None = None
) -> float:
    """Calculate the confidence score for an extraction.

    Args:
        extracted: Fields found by the winning pattern
        config: Pipeline configuration
        amount_valid: See build_factors

    Returns:
        Confidence score from 0.0 to 1.0
    """
    factors = build_factors(extracted, config, amount_valid)
    confidence = factors.score()
    logger.debug("Confidence %.2f from factors %s", confidence, factors)
    return confidence


def classify_confidence_tier(confidence: float) -> ConfidenceTier:
    """Classify confidence score into tier.

    Args:
        confidence: Confidence score from 0.0 to 1.0

    Returns:
        ConfidenceTier classification (HIGH/MEDIUM/LOW/NONE)
    """
    if confidence >= 0.9:
        return ConfidenceTier.HIGH
    elif confidence >= 0.5:
        return ConfidenceTier.MEDIUM
    elif confidence >= 0.1:
        return ConfidenceTier.LOW
    else:
        return ConfidenceTier.NONE


validate_weights(CONFIDENCE_WEIGHTS)


__all__ = [
    "CONFIDENCE_WEIGHTS",
    "ConfidenceFactors",
    "build_factors",
    "calculate_confidence",
    "classify_confidence_tier",
    "validate_weights",
]
