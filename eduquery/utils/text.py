import re

# Values the MOE datasets use for "no data"
PLACEHOLDER_VALUES = ("NA", "N/A", "NIL", "NONE", "-")

POSTAL_CODE_RE = re.compile(r"[0-9]{6}")


def is_placeholder(value) -> bool:
    if value is None:
        return True
    text = str(value).strip()
    return text == "" or text.upper() in PLACEHOLDER_VALUES


def clean_value(value):
    """Trimmed value, or None for blanks and placeholders."""
    if is_placeholder(value):
        return None
    if isinstance(value, str):
        return value.strip()
    return value


def is_valid_postal_code(value) -> bool:
    return isinstance(value, str) and bool(POSTAL_CODE_RE.fullmatch(value))


def normalize_name(name: str) -> str:
    return " ".join(name.split()).lower()
