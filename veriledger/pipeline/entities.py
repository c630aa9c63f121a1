"""
Lexical entity extraction for claim text.

Each category is a fixed set of regular patterns run over the full text.
Results keep first-occurrence order and drop exact duplicates within a category.
"""

import re
from typing import Dict, Iterable, List

from .models import empty_entities

ORGANIZATION_PATTERNS = (
    # "Company Acme Labs", "Corp. Initech"
    re.compile(r"\b(?i:company|corp\.?|corporation|inc\.?|ltd\.?)\s+[A-Z][A-Za-z&]*(?:\s+[A-Z][A-Za-z&]*)*"),
    # "University of Oxford"
    re.compile(r"\b(?i:university|college|institute)\s+of\s+[A-Z][A-Za-z]*(?:\s+[A-Z][A-Za-z]*)*"),
    # "Stanford University", "European Space Agency"
    re.compile(
        r"\b(?:[A-Z][A-Za-z&]*\s+)+"
        r"(?i:university|college|institute|laboratory|lab|agency|department)\b"
    ),
)

PEOPLE_PATTERN = re.compile(r"\b(?:Dr|Prof|Mr|Ms|Mrs)\.?\s+[A-Z][a-z]+\s+[A-Z][a-z]+")

NUMBER_PATTERN = re.compile(r"\b(\d+(?:\.\d+)?)\s*-?(%|percent|times?|x|fold)(?!\w)", re.IGNORECASE)

MEASUREMENT_PATTERN = re.compile(
    r"\b\d+(?:\.\d+)?\s*(?:mg|kg|grams?|pounds?|meters?|feet|inches?|degrees?|celsius|fahrenheit)\b",
    re.IGNORECASE,
)

DATE_PATTERN = re.compile(
    r"\b(?:\d{1,2}/\d{1,2}/\d{4}|\d{4}|January|February|March|April|May|June|July"
    r"|August|September|October|November|December)\b",
    re.IGNORECASE,
)

TECHNOLOGY_PATTERN = re.compile(
    r"\b(?:AI|artificial intelligence|machine learning|ML|blockchain|quantum|biotech|nanotech"
    r"|solar|renewable|algorithm|protocol|software|hardware|app|application|platform|system"
    r"|technology|innovation|digital|cyber|cloud|IoT|5G|VR|AR)\b",
    re.IGNORECASE,
)

MEDICAL_PATTERN = re.compile(
    r"\b(?:cancer|tumor|disease|treatment|therapy|drug|medicine|vaccine|clinical|patient"
    r"|hospital|surgery|diagnosis|symptom|virus|bacteria|infection|antibody|protein|gene"
    r"|DNA|RNA)\b",
    re.IGNORECASE,
)


def _unique(values: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        value = value.strip()
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result


def extract_entities(text: str) -> Dict[str, List[str]]:
    """Extract entities by category. Every category key is always present."""
    entities = empty_entities()
    if not text:
        return entities

    entities["organizations"] = _unique(
        match.group(0) for pattern in ORGANIZATION_PATTERNS for match in pattern.finditer(text)
    )
    entities["people"] = _unique(m.group(0) for m in PEOPLE_PATTERN.finditer(text))

    percentages, numbers = [], []
    for match in NUMBER_PATTERN.finditer(text):
        if match.group(2).lower() in ("%", "percent"):
            percentages.append(match.group(0))
        else:
            numbers.append(match.group(0))
    entities["percentages"] = _unique(percentages)
    entities["numbers"] = _unique(numbers)

    entities["measurements"] = _unique(m.group(0) for m in MEASUREMENT_PATTERN.finditer(text))
    entities["dates"] = _unique(m.group(0) for m in DATE_PATTERN.finditer(text))
    entities["technologies"] = _unique(m.group(0) for m in TECHNOLOGY_PATTERN.finditer(text))
    entities["medical_terms"] = _unique(m.group(0) for m in MEDICAL_PATTERN.finditer(text))

    return entities
