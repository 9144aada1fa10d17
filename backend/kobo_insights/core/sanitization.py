"""
Input sanitization for user-provided names (project titles, ids, log values).
"""
import re

_CONTROL_CHARS = re.compile(r'[\x00-\x1f\x7f-\x9f]')
_UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*]')
_RESERVED_NAMES = re.compile(r'^(CON|PRN|AUX|NUL|COM[1-9]|LPT[1-9])$', re.IGNORECASE)


def sanitize_filename(filename: str, max_length: int = 100, fallback: str = "export") -> str:
    """
    Turn a project name into a safe download filename stem.

    Args:
        filename: Original name (usually the project title)
        max_length: Maximum length of the result
        fallback: Returned when nothing usable is left

    Returns:
        Name without path separators, control characters or reserved words
    """
    if not filename:
        return fallback

    filename = _CONTROL_CHARS.sub('', filename)
    filename = _UNSAFE_FILENAME_CHARS.sub('_', filename)
    filename = re.sub(r'\s+', '_', filename.strip())
    filename = filename.strip('._')

    if _RESERVED_NAMES.match(filename):
        filename = f"_{filename}"

    return filename[:max_length] or fallback


def sanitize_for_logging(value: str, max_length: int = 500) -> str:
    """
    Sanitize value for safe logging (prevents log injection).

    Args:
        value: Value to sanitize
        max_length: Maximum length

    Returns:
        Sanitized value safe for logging
    """
    if not value:
        return ""

    value = re.sub(r'[\r\n]', ' ', str(value))
    value = _CONTROL_CHARS.sub('', value)

    if len(value) > max_length:
        value = value[:max_length] + "..."

    return value


def validate_identifier(name: str, max_length: int = 200) -> bool:
    """
    Check that a dataset id or chart id is safe to use as a storage key.

    Args:
        name: Identifier to validate
        max_length: Maximum accepted length

    Returns:
        True if safe, False otherwise
    """
    if not name or len(name) > max_length:
        return False
    return re.fullmatch(r'[A-Za-z0-9_.\-]+', name) is not None and '..' not in name
