"""Escaping for Alfresco Full Text Search (AFTS) query values."""

# Backslash must come first so escapes added later are not doubled
_SPECIAL_CHARACTERS = ["\\", '"', "+", "-", "&", "|", "!", "(", ")", "{", "}", "[", "]", "^", "~", "*", "?", ":"]


def sanitize(value: str) -> str:
    """Escape AFTS special characters in a literal value.

    Args:
        value: Raw value to embed in a query

    Returns:
        Value with every special character prefixed by a backslash
    """
    if not value:
        return ""
    for char in _SPECIAL_CHARACTERS:
        value = value.replace(char, f"\\{char}")
    return value
