import re
from typing import Optional, Tuple

# =========================
# DOMAIN LOGIC (Pure Python)
# =========================

NOISE_RE = re.compile(r"[^0-9kK]")
SEPARATORS_RE = re.compile(r"[.\-]")

MIN_BODY_LENGTH = 7
MAX_BODY_LENGTH = 8
# body (8) + check character; anything longer is ambiguous
MAX_CLEANED_LENGTH = MAX_BODY_LENGTH + 1


def calculate_check_digit(body: str) -> str:
    """
    Modulo-11 check character of a numeric identity body.
    Weights 2..7 are applied from the rightmost digit, cycling back to 2.
    """
    total = 0
    weight = 2
    for ch in reversed(body):
        total += int(ch) * weight
        weight = 2 if weight == 7 else weight + 1

    digit = 11 - (total % 11)
    if digit == 11:
        return "0"
    if digit == 10:
        return "K"
    return str(digit)


def validate(body: str, check_digit: Optional[str]) -> bool:
    if not body or not body.isdigit():
        return False
    if not MIN_BODY_LENGTH <= len(body) <= MAX_BODY_LENGTH:
        return False
    if not check_digit:
        return False
    return calculate_check_digit(body) == check_digit.upper()


def format_number(raw: str) -> str:
    """12345678 -> 12.345.678"""
    if not raw:
        return ""

    clean = SEPARATORS_RE.sub("", raw)
    groups = []
    while len(clean) > 3:
        groups.insert(0, clean[-3:])
        clean = clean[:-3]
    groups.insert(0, clean)
    return ".".join(groups)


def clean_recognized_text(raw_text: str) -> str:
    return NOISE_RE.sub("", "".join((raw_text or "").split()))


def parse_identity(cleaned: str) -> Tuple[str, str]:
    """
    Splits cleaned OCR output into (body, check_digit).
    Either part may come back empty; the caller derives a missing check digit.
    """
    if len(cleaned) > MAX_CLEANED_LENGTH:
        return "", ""

    if len(cleaned) >= MAX_BODY_LENGTH:
        body = re.sub(r"\D", "", cleaned[:MAX_BODY_LENGTH])
        check_digit = cleaned[MAX_BODY_LENGTH:MAX_BODY_LENGTH + 1]
        if not check_digit and cleaned[-1] in "kK":
            check_digit = cleaned[-1]
        return body, check_digit

    if len(cleaned) == MIN_BODY_LENGTH:
        return re.sub(r"\D", "", cleaned[:-1]), cleaned[-1]

    return "", ""
