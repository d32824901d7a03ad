"""
Name normalization, alias generation and trigram similarity.

The trigram measure follows PostgreSQL pg_trgm: lower-case the text, split it
into alphanumeric words, pad each word with two leading blanks and one trailing
blank, take the set of 3-character windows and score two strings by
|A ∩ B| / |A ∪ B|.
"""

import re
from typing import Dict, List, Optional, Set

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")
_CORPORATE_SUFFIXES = re.compile(
    r"\b(company|corp|corporation|inc|incorporated|ltd|limited|llc|co|the)\b"
)
_GENERIC_TERMS = re.compile(
    r"\b(manufacturing|manufactuging|mfg|tech|technology|technologies|systems|solutions)\b"
)
_ARTICLES = re.compile(r"\bthe\b")
_TRIGRAM_WORD = re.compile(r"[^\W_]+")

ACRONYM_STOPWORDS = {"the", "and", "or", "of", "in", "at", "to", "for", "with", "by"}

# Known abbreviations and variations, keyed by lower-cased or normalized name
ABBREVIATIONS: Dict[str, List[str]] = {
    "taiwan semiconductor manufacturing company": ["tsmc", "taiwan semiconductor", "taiwan semi"],
    "tsmc": ["taiwan semiconductor manufacturing company", "taiwan semiconductor"],
    "apple inc": ["apple", "apple computer"],
    "apple": ["apple inc", "apple computer"],
    "microsoft corporation": ["microsoft", "msft"],
    "microsoft": ["microsoft corporation", "msft"],
    "amazon": ["amazon.com", "amazon inc"],
    "google": ["alphabet", "alphabet inc"],
    "alphabet": ["google", "alphabet inc"],
    "facebook": ["meta", "meta platforms"],
    "meta": ["facebook", "meta platforms"],
    "international business machines": ["ibm"],
    "ibm": ["international business machines"],
    "nvidia corporation": ["nvidia", "nvda"],
    "nvidia": ["nvidia corporation", "nvda"],
    "advanced micro devices": ["amd"],
    "amd": ["advanced micro devices"],
    "intel corporation": ["intel"],
    "intel": ["intel corporation"],
    "morris chang": ["morris c chang", "morris c. chang"],
    "rolex": ["rolex sa", "rolex watch company"],
    "branding": ["brand power", "brand strength", "brand equity"],
}

# Whitelisted aliases per entity type: canonical normalized name -> aliases.
# An empty list pins the name so it only ever matches itself.
KNOWN_ALIASES: Dict[str, Dict[str, List[str]]] = {
    "Company": {
        "apple": ["apple inc", "apple computer"],
        "microsoft": ["microsoft corporation", "msft"],
        "meta": ["facebook", "meta platforms", "facebook inc"],
        "alphabet": ["google", "alphabet inc"],
        "lvmh": ["lvmh moet hennessy louis vuitton", "moet hennessy louis vuitton"],
        "groupe arnault": [],
        "omega": [],
        "rolex": ["wilsdorf and davis"],
    },
    "Person": {
        "bernard arnault": [],
        "steve jobs": [],
        "tim cook": [],
        "mark zuckerberg": [],
    },
}


def normalize_entity_name(name: str) -> str:
    """
    Normalize an entity name for matching.

    Lower-cases, strips punctuation, collapses whitespace and removes generic
    corporate suffixes ("Inc", "Corp", "the", ...) and generic industry terms
    ("Technologies", "Systems", ...). A name made only of such words keeps
    its punctuation-free form minus articles, so the result is empty only
    when the name has no word characters at all.

    Example:
        >>> normalize_entity_name("The Apple, Inc.")
        'apple'
        >>> normalize_entity_name("Company, The")
        'company'
    """
    text = name.lower()
    text = _PUNCTUATION.sub("", text)
    text = _WHITESPACE.sub(" ", text)
    stripped = text.strip()
    text = _CORPORATE_SUFFIXES.sub("", stripped)
    text = _GENERIC_TERMS.sub("", text)
    text = _WHITESPACE.sub(" ", text).strip()
    if text:
        return text
    return _WHITESPACE.sub(" ", _ARTICLES.sub("", stripped)).strip() or stripped


def canonical_key(name: str) -> str:
    """Stored normalized_name: the normalized form, or the trimmed lower-cased name for punctuation-only names."""
    normalized = normalize_entity_name(name)
    return normalized or _WHITESPACE.sub(" ", name.lower()).strip()


def generate_acronym(name: str) -> Optional[str]:
    """Acronym of a multi-word name ignoring stopwords, if it is 2-6 letters long."""
    words = [w for w in name.split() if w.lower() not in ACRONYM_STOPWORDS]
    if len(words) < 2:
        return None
    acronym = "".join(w[0].upper() for w in words)
    if 2 <= len(acronym) <= 6:
        return acronym
    return None


def generate_alternative_names(name: str) -> List[str]:
    """
    All names worth looking up for ``name``, original first, without duplicates.

    Includes the normalized form, known abbreviations of the raw or normalized
    name, and a generated acronym for multi-word names.
    """
    alternatives = [name]
    lower = name.lower().strip()
    normalized = normalize_entity_name(name)

    if normalized and normalized != lower:
        alternatives.append(normalized)

    alternatives.extend(ABBREVIATIONS.get(lower, []))
    if normalized != lower:
        alternatives.extend(ABBREVIATIONS.get(normalized, []))

    acronym = generate_acronym(name)
    if acronym:
        alternatives.append(acronym)
        alternatives.append(acronym.lower())

    seen = set()
    unique = []
    for alt in alternatives:
        if alt and alt not in seen:
            seen.add(alt)
            unique.append(alt)
    return unique


def known_alias_canonical(name: str, entity_type: str) -> Optional[str]:
    """Canonical normalized name when ``name`` is a whitelisted alias for its type."""
    normalized = normalize_entity_name(name)
    for canonical, aliases in KNOWN_ALIASES.get(entity_type, {}).items():
        if normalized == canonical or normalized in aliases:
            return canonical
    return None


def trigrams(text: str) -> Set[str]:
    """pg_trgm trigram set of ``text``."""
    grams = set()
    for word in _TRIGRAM_WORD.findall(text.lower()):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            grams.add(padded[i:i + 3])
    return grams


def trigram_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Similarity in [0, 1]; 0 when either side has no trigrams."""
    if a is None or b is None:
        return 0.0
    grams_a = trigrams(a)
    grams_b = trigrams(b)
    if not grams_a or not grams_b:
        return 0.0
    return len(grams_a & grams_b) / len(grams_a | grams_b)


def is_containment(a: str, b: str, min_length: int = 5) -> bool:
    """True when one name contains the other and the shorter one has at least ``min_length`` chars."""
    left = a.lower().strip()
    right = b.lower().strip()
    if not left or not right or left == right:
        return False
    shorter, longer = sorted((left, right), key=len)
    return len(shorter) >= min_length and shorter in longer
