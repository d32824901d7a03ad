"""
Static domain knowledge used by the matching cascade and relationship validation.

Both tables are plain data evaluated top to bottom so they can be tested and
extended without touching the resolvers.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .constants import RELATIONSHIP_DEFAULT_VALIDATION

SEVEN_POWERS = (
    "scale economies",
    "network economies",
    "counter-positioning",
    "switching costs",
    "branding",
    "cornered resource",
    "process power",
)


# =============================================================================
# Name -> canonical entity rules (cascade strategy 5)
# =============================================================================


@dataclass(frozen=True)
class BusinessRule:
    """Maps names containing any trigger keyword to a canonical entity name."""

    keywords: Tuple[str, ...]
    canonical_name: str
    entity_type: str
    confidence: float
    label: str

    def matches(self, name: str, entity_type: str) -> bool:
        if entity_type != self.entity_type:
            return False
        lowered = name.lower()
        return any(keyword in lowered for keyword in self.keywords)


BUSINESS_RULES: List[BusinessRule] = [
    # Hamilton Helmer's 7 Powers
    BusinessRule(
        ("brand power", "brand management", "brand positioning", "brand strategy", "brand building", "brand equity", "brand strength"),
        "Branding", "Topic", 0.85, "seven_powers",
    ),
    BusinessRule(
        ("economies of scale", "scale advantage", "scale benefit"),
        "Scale Economies", "Topic", 0.85, "seven_powers",
    ),
    BusinessRule(
        ("network effect", "network advantage", "network value"),
        "Network Economies", "Topic", 0.85, "seven_powers",
    ),
    BusinessRule(("switching cost",), "Switching Costs", "Topic", 0.85, "seven_powers"),
    BusinessRule(("counter position", "counter-position", "counterposition"), "Counter-Positioning", "Topic", 0.85, "seven_powers"),
    BusinessRule(("cornered resource",), "Cornered Resource", "Topic", 0.85, "seven_powers"),
    BusinessRule(("process power",), "Process Power", "Topic", 0.85, "seven_powers"),
    # Industries
    BusinessRule(("luxury market", "luxury sector", "luxury business"), "Luxury Goods Industry", "Topic", 0.8, "industry"),
    BusinessRule(("semiconductor market", "chip industry"), "Semiconductor Industry", "Topic", 0.8, "industry"),
    BusinessRule(("software market", "tech industry"), "Software Industry", "Topic", 0.8, "industry"),
    # Well-known leaders mentioned in place of their company
    BusinessRule(("tim cook",), "Apple", "Company", 0.8, "ceo_company"),
    BusinessRule(("jensen huang",), "NVIDIA", "Company", 0.8, "ceo_company"),
    BusinessRule(("morris chang",), "TSMC", "Company", 0.8, "ceo_company"),
]


def find_business_rules(name: str, entity_type: str, rules: Optional[Sequence[BusinessRule]] = None) -> List[BusinessRule]:
    """Rules triggered by ``name`` for ``entity_type``, in table order."""
    table = BUSINESS_RULES if rules is None else rules
    return [rule for rule in table if rule.matches(name, entity_type)]


# =============================================================================
# Relationship validation rules
# =============================================================================


@dataclass(frozen=True)
class ValidationRule:
    """
    Plausibility rule for a (source type, target type, description) triple.

    ``None`` types match any type. The rule fires when either a description
    keyword or a target-name keyword is present; with no keywords at all it
    fires on the types alone.
    """

    source_type: Optional[str]
    target_type: Optional[str]
    confidence: float
    reason: str
    description_keywords: Tuple[str, ...] = ()
    target_name_keywords: Tuple[str, ...] = ()

    def matches(self, source_type: str, target_type: str, target_name: str, description: str) -> bool:
        if self.source_type is not None and source_type != self.source_type:
            return False
        if self.target_type is not None and target_type != self.target_type:
            return False
        if not self.description_keywords and not self.target_name_keywords:
            return True
        desc = (description or "").lower()
        target = (target_name or "").lower()
        return any(k in desc for k in self.description_keywords) or any(
            k in target for k in self.target_name_keywords
        )


@dataclass
class ValidationResult:
    valid: bool
    confidence: float
    reason: str


VALIDATION_RULES: List[ValidationRule] = [
    ValidationRule(
        "Person", "Company", 0.9, "Person-Company leadership relationship",
        description_keywords=("ceo", "founder", "founded"),
    ),
    ValidationRule(
        "Company", "Company", 0.9, "Company-Company acquisition relationship",
        description_keywords=("acquired", "acquisition", "merger", "merged"),
    ),
    ValidationRule(
        "Company", "Topic", 0.85, "Company-Industry relationship",
        description_keywords=("operates in",),
        target_name_keywords=("industry",),
    ),
    ValidationRule(
        "Company", "Topic", 0.8, "Company-Strategic Power relationship",
        target_name_keywords=SEVEN_POWERS,
    ),
    ValidationRule(
        "Company", "Topic", 0.75, "Company-Product relationship",
        description_keywords=("developed", "created", "product"),
    ),
    ValidationRule(None, None, RELATIONSHIP_DEFAULT_VALIDATION, "Co-mentioned in same episode"),
]

IMPLAUSIBLE_CONFIDENCE = 0.3


def validate_relationship(
    source_type: str,
    target_type: str,
    target_name: str,
    description: str,
    rules: Optional[Sequence[ValidationRule]] = None,
) -> ValidationResult:
    """First matching rule wins; no match means the triple is implausible."""
    table = VALIDATION_RULES if rules is None else rules
    for rule in table:
        if rule.matches(source_type, target_type, target_name, description):
            return ValidationResult(valid=True, confidence=rule.confidence, reason=rule.reason)
    return ValidationResult(
        valid=False,
        confidence=IMPLAUSIBLE_CONFIDENCE,
        reason="No clear business relationship pattern",
    )


# =============================================================================
# Obvious relationships (seeded by relationship_fixer)
# =============================================================================

OBVIOUS_RELATIONSHIPS: List[Tuple[str, str, str]] = [
    ("Morris Chang", "TSMC", "Founded and led TSMC as CEO"),
    ("Morris Chang", "Taiwan Semiconductor Manufacturing Company", "Founded and led TSMC as CEO"),
    ("Rolex", "Branding", "Rolex has strong branding power"),
    ("Apple", "Branding", "Apple has strong branding power"),
    ("Coca-Cola", "Branding", "Coca-Cola has strong branding power"),
    ("TSMC", "Scale Economies", "TSMC benefits from scale economies in semiconductor manufacturing"),
    ("Facebook", "Network Economies", "Facebook benefits from network effects"),
    ("Meta", "Network Economies", "Meta platforms benefit from network effects"),
    ("TSMC", "Semiconductor Industry", "TSMC operates in the semiconductor industry"),
    ("Taiwan Semiconductor Manufacturing Company", "Semiconductor Industry", "TSMC operates in the semiconductor industry"),
    ("Apple", "Technology Industry", "Apple operates in the technology industry"),
    ("Microsoft", "Software Industry", "Microsoft operates in the software industry"),
]
