"""Canonical weekday and meal-type labels.

Stored data mixes English and Italian labels in any case ("martedì", "TUESDAY",
"Pranzo veloce"), so every lookup goes through these helpers.
"""

from typing import List, Optional

WEEKDAYS: List[str] = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

MEAL_TYPES: List[str] = ["breakfast", "lunch", "dinner"]

MEAL_ORDER = {"breakfast": 1, "lunch": 2, "dinner": 3}

_WEEKDAY_ALIASES = {
    "lunedì": "Monday",
    "lunedi": "Monday",
    "martedì": "Tuesday",
    "martedi": "Tuesday",
    "mercoledì": "Wednesday",
    "mercoledi": "Wednesday",
    "giovedì": "Thursday",
    "giovedi": "Thursday",
    "venerdì": "Friday",
    "venerdi": "Friday",
    "sabato": "Saturday",
    "domenica": "Sunday",
}

_MEAL_TYPE_ALIASES = {
    "breakfast": ("breakfast", "colazione"),
    "lunch": ("lunch", "pranzo"),
    "dinner": ("dinner", "cena"),
}


def normalize_weekday(label: str) -> Optional[str]:
    """Return the canonical English weekday for ``label`` or None if unknown."""
    if not label:
        return None
    key = label.strip().lower()
    for name in WEEKDAYS:
        if key == name.lower():
            return name
    return _WEEKDAY_ALIASES.get(key)


def weekday_index(label: str) -> int:
    """Monday=0 .. Sunday=6; unknown labels sort last."""
    canonical = normalize_weekday(label)
    if canonical is None:
        return len(WEEKDAYS)
    return WEEKDAYS.index(canonical)


def canonical_meal_type(label: str) -> Optional[str]:
    if not label:
        return None
    text = label.strip().lower()
    for canonical, aliases in _MEAL_TYPE_ALIASES.items():
        if any(alias in text for alias in aliases):
            return canonical
    return None
