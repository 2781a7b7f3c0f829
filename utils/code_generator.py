# utils/code_generator.py
import random
import re

from errors import InvariantViolation

_VERSION_RE = re.compile(r"^RV-(\d+)$")

RANDOM_ID_MIN = 100_000_000
RANDOM_ID_SPAN = 900_000_000


def next_version_code(current: str | None) -> str:
    """
    Version code of an element type: RV-01, RV-02, ...
    Empty current -> RV-01.
    """
    if not current:
        return "RV-01"
    m = _VERSION_RE.match(current.strip())
    if not m:
        raise InvariantViolation(f"Malformed version code: {current!r}")
    return f"RV-{int(m.group(1)) + 1:02d}"


def random_id() -> int:
    """9-digit id for element types / drawings (caller retries on collision)."""
    return random.randrange(RANDOM_ID_SPAN) + RANDOM_ID_MIN


def element_code(type_code: str, naming_convention: str, seq: int) -> str:
    """WALL/T1-F1/0007"""
    return f"{(type_code or '').upper()}/{naming_convention or ''}/{seq:04d}"


def element_sequence(code: str) -> int:
    """Trailing sequence of an element code; 0 when it has none."""
    tail = (code or "").rsplit("/", 1)[-1]
    return int(tail) if tail.isdigit() else 0
