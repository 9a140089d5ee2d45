"""Redaction of portal credentials and applicant identifiers before logging"""

import re
from typing import Dict, Any, Union, List

REDACTED = "***REDACTED***"

# Keys whose values are secrets and are always fully redacted
SECRET_KEYS = {
    'password', 'passwd', 'pwd', 'secret', 'token', 'apikey', 'credentials',
}

# Applicant identifiers: logged with only the last characters visible
IDENTIFIER_KEYS = {
    'passportnumber', 'passport', 'ppsn', 'nationalid', 'permitnumber',
    'visanumber', 'irpnumber', 'gnibnumber',
}

_SECRET_PATTERNS = [
    (re.compile(r'"password"\s*:\s*"[^"]*"', re.IGNORECASE), f'"password": "{REDACTED}"'),
    (re.compile(r"'password'\s*:\s*'[^']*'", re.IGNORECASE), f"'password': '{REDACTED}'"),
    (re.compile(r'password=[^\s&]+', re.IGNORECASE), f'password={REDACTED}'),
    (re.compile(r'password:\s*\S+', re.IGNORECASE), f'password: {REDACTED}'),
    (re.compile(r'(token|api[_-]?key)\s*[:=]\s*[\'"]?[A-Za-z0-9_\-\.]+[\'"]?', re.IGNORECASE), rf'\1: {REDACTED}'),
]


def _normalize_key(key: str) -> str:
    return key.lower().replace('_', '').replace('-', '')


def mask_identifier(value: Any, visible: int = 3) -> str:
    """Mask all but the last `visible` characters of an identifier"""
    text = str(value)
    if len(text) <= visible:
        return '*' * len(text)
    return '*' * (len(text) - visible) + text[-visible:]


def sanitize_credentials(data: Union[str, Dict[str, Any], List]) -> Union[str, Dict[str, Any], List]:
    """
    Sanitize secrets and applicant identifiers in strings, dicts or lists

    Args:
        data: Value that may hold portal credentials or identifiers

    Returns:
        Copy of the value that is safe to log or audit
    """
    if isinstance(data, str):
        return _sanitize_string(data)
    elif isinstance(data, dict):
        return _sanitize_dict(data)
    elif isinstance(data, list):
        return _sanitize_list(data)
    return data


def _sanitize_string(text: str) -> str:
    if not text:
        return text
    sanitized = text
    for pattern, replacement in _SECRET_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized


def _sanitize_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    sanitized = {}
    for key, value in data.items():
        normalized = _normalize_key(str(key))
        if any(secret in normalized for secret in SECRET_KEYS):
            sanitized[key] = REDACTED
        elif normalized in IDENTIFIER_KEYS and isinstance(value, (str, int)):
            sanitized[key] = mask_identifier(value)
        elif isinstance(value, dict):
            sanitized[key] = _sanitize_dict(value)
        elif isinstance(value, list):
            sanitized[key] = _sanitize_list(value)
        elif isinstance(value, str):
            sanitized[key] = _sanitize_string(value)
        else:
            sanitized[key] = value
    return sanitized


def _sanitize_list(data: List) -> List:
    return [sanitize_credentials(item) for item in data]


def mask_password_in_logs(log_message: str) -> str:
    """Mask passwords and tokens in a free-form log message"""
    return _sanitize_string(log_message)


def describe_field_value(field_name: str, value: Any) -> str:
    """Loggable representation of a value typed into a portal field"""
    normalized = _normalize_key(field_name)
    if any(secret in normalized for secret in SECRET_KEYS):
        return REDACTED
    if normalized in IDENTIFIER_KEYS:
        return mask_identifier(value)
    text = str(value)
    return text if len(text) <= 40 else text[:37] + '...'
