"""
Incident Atlas - Offense Categories

Violence classification of offense descriptors and normalization of the
demographic codes published by the upstream feeds.

Usage:
    from incident_atlas.shared.categories import is_violent, normalize_demographic

    is_violent("FELONY ASSAULT")  # True
    normalize_demographic("(null)")  # "UNKNOWN"
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any, Literal

ViolenceClass = Literal["violent", "nonviolent"]

VIOLENCE_CLASSES: frozenset[str] = frozenset({"violent", "nonviolent"})

UNKNOWN = "UNKNOWN"

# NYPD offense descriptors treated as violent, plus the label synthesized for
# shooting incidents
VIOLENT_OFFENSES: frozenset[str] = frozenset(
    {
        "MURDER & NON-NEGL. MANSLAUGHTER",
        "RAPE",
        "ROBBERY",
        "FELONY ASSAULT",
        "ASSAULT 3 & RELATED OFFENSES",
        "KIDNAPPING & RELATED OFFENSES",
        "SEX CRIMES",
        "SHOOTING INCIDENT",
    }
)

VIOLENT_KEYWORDS: tuple[str, ...] = (
    "MURDER",
    "MANSLAUGHTER",
    "HOMICIDE",
    "RAPE",
    "SEX",
    "ROBBERY",
    "ASSAULT",
    "KIDNAPPING",
    "SHOOT",
)

UNKNOWN_TOKENS: frozenset[str] = frozenset(
    {"", "UNKNOWN", "(UNKNOWN)", "(NULL)", "NULL", "U", "N/A", "NA", "UNK", "UNKN", "NONE"}
)

# Age groups that are data entry errors in the NYPD feeds
INVALID_AGE_GROUPS: frozenset[str] = frozenset({"1022", "1023", "2022", "-2", "-961", "-964"})

_NON_ALNUM = re.compile(r"[^A-Z0-9]+")


def is_violent(offense: str | None) -> bool:
    """Check whether an offense descriptor belongs to the violent class."""
    if not offense:
        return False
    value = offense.upper()
    if value in VIOLENT_OFFENSES:
        return True
    return any(keyword in value for keyword in VIOLENT_KEYWORDS)


def violence_class(offense: str | None) -> ViolenceClass:
    return "violent" if is_violent(offense) else "nonviolent"


def canonical_offense(label: str) -> str:
    """Case- and punctuation-insensitive key of an offense label ("Larceny/Theft" -> "LARCENY THEFT")."""
    return " ".join(_NON_ALNUM.sub(" ", label.upper()).split())


def is_unknown(value: Any) -> bool:
    """Check whether a raw value is missing or one of the unknown tokens."""
    if value is None:
        return True
    return str(value).strip().upper() in UNKNOWN_TOKENS


def normalize_demographic(value: Any) -> str:
    """Upper-case a demographic code, mapping unknown tokens to UNKNOWN."""
    if is_unknown(value):
        return UNKNOWN
    return str(value).strip().upper()


def normalize_age_group(value: Any) -> str:
    normalized = normalize_demographic(value)
    if normalized in INVALID_AGE_GROUPS:
        return UNKNOWN
    return normalized


def parse_violence(value: str | Iterable[str] | None) -> set[ViolenceClass]:
    """
    Parse a violence class selection such as "violent,nonviolent".

    Unrecognized tokens are ignored; an absent or fully unrecognized selection
    means both classes.
    """
    if value is None:
        tokens: Iterable[str] = []
    elif isinstance(value, str):
        tokens = value.split(",")
    else:
        tokens = value

    selected: set[ViolenceClass] = set()
    for token in tokens:
        t = token.strip().lower()
        if t == "violent":
            selected.add("violent")
        elif t == "nonviolent":
            selected.add("nonviolent")

    if not selected:
        selected = {"violent", "nonviolent"}
    return selected


def soql_literal(value: str) -> str:
    """Quote a string for a SoQL expression."""
    return "'" + value.replace("'", "''") + "'"


def violent_soql_condition(column: str = "ofns_desc") -> str:
    """SoQL expression matching violent offenses in an offense column."""
    upper = f"upper({column})"
    exact = [f"{upper} = {soql_literal(v)}" for v in sorted(VIOLENT_OFFENSES)]
    like = [f"{upper} like '%{kw}%'" for kw in VIOLENT_KEYWORDS]
    return "(" + " OR ".join(exact + like) + ")"
