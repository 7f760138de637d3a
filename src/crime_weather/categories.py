"""
Fixed vocabularies: crime categories, the description → category lookup,
and the binary label levels.

The lookup is data, not code. The default table mirrors the 15 offense
descriptions in the Baltimore Part 1 victim-based crime export; a different
table can be supplied through `crime.category_map` in params.yml and is
validated by `load_category_map`.
"""

from enum import Enum
from typing import Dict, Mapping, Optional

import pandas as pd


class CrimeCategory(str, Enum):
    """Coarse crime category."""
    ASSAULT = "ASSAULT"
    PROPERTY = "PROPERTY"
    ROBBERY = "ROBBERY"
    SHOOTING = "SHOOTING"
    HOMICIDE = "HOMICIDE"
    RAPE = "RAPE"


CATEGORY_VALUES = [c.value for c in CrimeCategory]

# Sentinel for descriptions absent from the lookup; never a modeling category
UNMAPPED = "UNMAPPED"

DEFAULT_CATEGORY_MAP: Dict[str, str] = {
    "AGG. ASSAULT": "ASSAULT",
    "ASSAULT BY THREAT": "ASSAULT",
    "COMMON ASSAULT": "ASSAULT",
    "ARSON": "PROPERTY",
    "AUTO THEFT": "PROPERTY",
    "BURGLARY": "PROPERTY",
    "LARCENY": "PROPERTY",
    "LARCENY FROM AUTO": "PROPERTY",
    "ROBBERY - CARJACKING": "ROBBERY",
    "ROBBERY - COMMERCIAL": "ROBBERY",
    "ROBBERY - RESIDENCE": "ROBBERY",
    "ROBBERY - STREET": "ROBBERY",
    "SHOOTING": "SHOOTING",
    "HOMICIDE": "HOMICIDE",
    "RAPE": "RAPE",
}

# Binary target levels; "Yes" (crime occurred) is the positive class
LABEL_NO = "No"
LABEL_YES = "Yes"
LABEL_LEVELS = [LABEL_NO, LABEL_YES]
POSITIVE_LABEL = LABEL_YES


class CategoryMappingError(Exception):
    """Raised when the category lookup is invalid or a description cannot be mapped."""
    pass


def normalize_description_key(description: str) -> str:
    """Upper-cased lookup key with every whitespace run collapsed to one space and none at the ends."""
    return " ".join(str(description).split()).upper()


def load_category_map(
    mapping: Optional[Mapping[str, str]] = None,
) -> Dict[str, CrimeCategory]:
    """
    Validate a description → category mapping.

    Args:
        mapping: Raw mapping (e.g. from params.yml). Defaults to DEFAULT_CATEGORY_MAP.

    Returns:
        Dictionary of normalized description key → CrimeCategory

    Raises:
        CategoryMappingError: If a value is not a known category, or two keys
            collapse to the same normalized key with different categories
    """
    if mapping is None:
        mapping = DEFAULT_CATEGORY_MAP

    if not mapping:
        raise CategoryMappingError("Category map is empty")

    result: Dict[str, CrimeCategory] = {}
    bad_values = {}

    for description, category in mapping.items():
        key = normalize_description_key(description)
        try:
            value = CrimeCategory(str(category).strip().upper())
        except ValueError:
            bad_values[description] = category
            continue

        if key in result and result[key] is not value:
            raise CategoryMappingError(
                f"Conflicting categories for description '{key}': "
                f"{result[key].value} vs {value.value}"
            )
        result[key] = value

    if bad_values:
        raise CategoryMappingError(
            f"Unknown categories in category map: {bad_values}. "
            f"Allowed: {CATEGORY_VALUES}"
        )

    return result


def categorize_descriptions(
    descriptions: pd.Series,
    category_map: Mapping[str, CrimeCategory],
) -> pd.Series:
    """
    Map offense descriptions to category values.

    A pure function of the description: descriptions missing from the map
    (including nulls) become UNMAPPED, never a real category.

    Returns:
        Series of category strings (CATEGORY_VALUES or UNMAPPED)
    """
    lookup = {key: category.value for key, category in category_map.items()}

    keys = descriptions.map(
        lambda d: normalize_description_key(d) if pd.notna(d) else None
    )
    return keys.map(lookup).fillna(UNMAPPED).astype(str)
