"""Grade token classification and grade-point scale.

Pass/fail is decided in three tiers:

1. exact, case-sensitive membership in ``PASSING_GRADES``;
2. exact membership in ``FAILING_GRADES``;
3. a permissive fallback: the token fails if its lower-cased form contains
   any lower-cased failing grade as a substring, otherwise it passes.

The fallback exists because real exports carry inconsistent casing and
decorated tokens such as ``"RA*"`` or ``"F (absent)"``. It is a heuristic,
not a guarantee: an unknown failing convention that shares no substring with
the failing set is classified as passed. Such tokens are reported by
``is_recognized`` so callers can surface them for review.

Grade points are only used for GPA aggregation and never influence the
pass flag.
"""

from decimal import Decimal

PASSING_GRADES: frozenset[str] = frozenset({"O", "A+", "A", "B+", "B", "C+", "C"})

FAILING_GRADES: frozenset[str] = frozenset({
    "D", "F", "Fail", "FAIL", "fail", "U", "RA",
    "Ab", "AB", "ab", "Absent", "ABSENT", "W", "I", "Wh", "WH",
})

_FAILING_LOWER: tuple[str, ...] = tuple(sorted({g.lower() for g in FAILING_GRADES}))

GRADE_POINTS: dict[str, Decimal] = {
    "O": Decimal("10"),
    "A+": Decimal("9"),
    "A": Decimal("8"),
    "B+": Decimal("7"),
    "B": Decimal("6"),
    "C+": Decimal("5"),
    "C": Decimal("4"),
    "D": Decimal("3"),
    "F": Decimal("0"),
}

DEFAULT_MODE_OF_ATTEMPT = "Regular"
ARREAR_MODE_OF_ATTEMPT = "Arrear"


def normalize_grade_token(raw: object) -> str:
    """Render a spreadsheet cell as a trimmed grade token ('' when empty)."""
    if raw is None:
        return ""
    return str(raw).strip()


def is_passed(token: str) -> bool:
    """Classify a trimmed grade token as passed or failed."""
    if token in PASSING_GRADES:
        return True
    if token in FAILING_GRADES:
        return False
    lowered = token.lower()
    return not any(failing in lowered for failing in _FAILING_LOWER)


def is_recognized(token: str) -> bool:
    """True when the token was classified by exact membership, not the fallback."""
    return token in PASSING_GRADES or token in FAILING_GRADES


def grade_points(token: str) -> Decimal | None:
    """Grade points for GPA, or None when the token is not on the scale."""
    return GRADE_POINTS.get(token)


def normalize_mode_of_attempt(raw: object) -> str:
    """Attempt mode as written, defaulting to Regular when blank."""
    if raw is None:
        return DEFAULT_MODE_OF_ATTEMPT
    value = str(raw).strip()
    return value or DEFAULT_MODE_OF_ATTEMPT
