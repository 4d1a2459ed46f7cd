import re

_LOCAL_PATTERN = re.compile(r"^0\d{9}$")


def normalize_phone(raw: str | None) -> str | None:
    """Return the local ``0XXXXXXXXX`` form of a Tanzanian mobile number, or None."""
    digits = re.sub(r"[\s\-()]", "", str(raw or ""))
    if digits.startswith("+"):
        digits = digits[1:]
    if digits.startswith("255") and len(digits) == 12:
        digits = "0" + digits[3:]
    if not _LOCAL_PATTERN.match(digits):
        return None
    return digits
