"""
Academic year and division rules.

Years 1 to 4 are split into divisions A and B, years 5 and 6 are not.
"""
from typing import List, Optional

from .exceptions import ValidationError

MIN_YEAR = 1
MAX_YEAR = 6
DIVISIONS = ("A", "B")


def year_has_divisions(year: int) -> bool:
    return 1 <= year <= 4


def available_divisions(year: int) -> List[str]:
    return list(DIVISIONS) if year_has_divisions(year) else []


def is_valid_division_for_year(year: int, division: Optional[str]) -> bool:
    if not year_has_divisions(year):
        return not division
    return division in DIVISIONS


def validate_year_division(year: Optional[int], division: Optional[str]) -> Optional[str]:
    """
    Validate a year/division pair and return the normalized division.

    Raises:
        ValidationError: year outside 1-6 or division not allowed for the year
    """
    if year is None or not (MIN_YEAR <= year <= MAX_YEAR):
        raise ValidationError(f"El año debe estar entre {MIN_YEAR} y {MAX_YEAR}", "year")
    division = (division or "").strip().upper() or None
    if not is_valid_division_for_year(year, division):
        if year_has_divisions(year):
            raise ValidationError(f"{year}° Año se divide en: A y B", "division")
        raise ValidationError(f"{year}° Año no tiene divisiones", "division")
    return division


def format_year_division(year: int, division: Optional[str] = None) -> str:
    if not year_has_divisions(year) or not division:
        return f"{year}° Año"
    return f'{year}° Año "{division}"'
