"""Classification of portal failure messages into retryable and terminal categories.

The table is ordered: the first matching pattern wins, and anything that
matches nothing is UNKNOWN_ERROR, which is terminal.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Pattern


class PortalErrorCategory(str, Enum):
    # Temporary conditions, retried with backoff
    NETWORK_ERROR = 'NETWORK_ERROR'
    TIMEOUT_ERROR = 'TIMEOUT_ERROR'
    SERVER_ERROR = 'SERVER_ERROR'
    SESSION_EXPIRED = 'SESSION_EXPIRED'
    SERVICE_UNAVAILABLE = 'SERVICE_UNAVAILABLE'

    # Permanent conditions, never retried
    APPOINTMENT_UNAVAILABLE = 'APPOINTMENT_UNAVAILABLE'
    VALIDATION_ERROR = 'VALIDATION_ERROR'
    AUTHENTICATION_ERROR = 'AUTHENTICATION_ERROR'
    AUTHORIZATION_ERROR = 'AUTHORIZATION_ERROR'
    DATA_ERROR = 'DATA_ERROR'
    UNKNOWN_ERROR = 'UNKNOWN_ERROR'


@dataclass(frozen=True)
class ErrorPattern:
    pattern: Pattern[str]
    category: PortalErrorCategory
    retryable: bool


@dataclass(frozen=True)
class ErrorClassification:
    category: PortalErrorCategory
    retryable: bool

    def describe(self) -> str:
        """Category in words, e.g. 'validation error'"""
        return self.category.value.lower().replace('_', ' ')


def _pattern(regex: str, category: PortalErrorCategory, retryable: bool) -> ErrorPattern:
    return ErrorPattern(re.compile(regex, re.IGNORECASE), category, retryable)


ERROR_PATTERNS: List[ErrorPattern] = [
    _pattern(r'network error|connection refused|connection reset', PortalErrorCategory.NETWORK_ERROR, True),
    _pattern(r'timeout|timed out', PortalErrorCategory.TIMEOUT_ERROR, True),
    _pattern(r'server error|\b50[234]\b', PortalErrorCategory.SERVER_ERROR, True),
    _pattern(r'session expired|login again', PortalErrorCategory.SESSION_EXPIRED, True),
    _pattern(r'try again later|temporarily unavailable', PortalErrorCategory.SERVICE_UNAVAILABLE, True),
    _pattern(r'no available appointment', PortalErrorCategory.APPOINTMENT_UNAVAILABLE, False),
    _pattern(r'invalid input|validation failed|required field|invalid format',
             PortalErrorCategory.VALIDATION_ERROR, False),
    _pattern(r'authentication failed|invalid credentials|incorrect password',
             PortalErrorCategory.AUTHENTICATION_ERROR, False),
    _pattern(r'not authorized|permission denied|access denied', PortalErrorCategory.AUTHORIZATION_ERROR, False),
    _pattern(r'invalid data|data error|missing data|malformed', PortalErrorCategory.DATA_ERROR, False),
]

UNKNOWN = ErrorClassification(PortalErrorCategory.UNKNOWN_ERROR, False)


def classify_error(message: Optional[str], patterns: Optional[List[ErrorPattern]] = None) -> ErrorClassification:
    """
    Classify a failure message

    Args:
        message: Error message recorded for the attempt
        patterns: Ordered pattern table (defaults to ERROR_PATTERNS)

    Returns:
        Category and whether the failure may be retried
    """
    if not message:
        return UNKNOWN
    for entry in (ERROR_PATTERNS if patterns is None else patterns):
        if entry.pattern.search(message):
            return ErrorClassification(entry.category, entry.retryable)
    return UNKNOWN


def is_retryable_error(message: Optional[str]) -> bool:
    return classify_error(message).retryable
