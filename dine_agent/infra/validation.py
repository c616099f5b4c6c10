"""Input validation and sanitization."""

import logging
import re
from typing import List

logger = logging.getLogger(__name__)

MAX_QUERY_LENGTH = 2000

_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_\-:.@]+$")

_INJECTION_PATTERNS = [
    ("meta_instruction", [
        r"ignore\s+(previous|all|the)\s+(instructions?|rules?|prompts?)",
        r"forget\s+(previous|all|the)\s+(instructions?|rules?|prompts?)",
        r"disregard\s+(previous|all|the)\s+(instructions?|rules?|prompts?)",
        r"you\s+are\s+now\s+(a|an)\s+",
        r"pretend\s+to\s+be",
    ]),
    ("role_playing", [
        r"you\s+are\s+(admin|administrator|root|superuser|owner)",
        r"i\s+am\s+(the\s+)?(admin|administrator|owner)\s+now",
    ]),
    ("disclosure_attempt", [
        r"(show|reveal|print)\s+(me\s+)?(your\s+)?(system\s+)?(prompt|instructions?)",
    ]),
    ("cross_access_attempt", [
        r"(switch|access)\s+(to\s+)?(another|other|different)\s+(restaurant|tenant|account)",
        r"(data|orders|tables|menu)\s+(from|of)\s+(another|other|different)\s+(restaurant|tenant)",
    ]),
]


def detect_prompt_injection(content: str) -> List[str]:
    """
    Detect prompt injection patterns in content.

    Returns:
        List of detected pattern types (empty if none)
    """
    if not content:
        return []

    content_lower = content.lower()
    detected = []
    for pattern_type, patterns in _INJECTION_PATTERNS:
        for pattern in patterns:
            if re.search(pattern, content_lower):
                detected.append(pattern_type)
                break  # Only report each type once
    return detected


def sanitize_query_text(content: str, max_length: int = MAX_QUERY_LENGTH) -> str:
    """
    Sanitize operator query text.

    Injection patterns are logged, not blocked; the permission gate and the
    tenant filter are what actually constrain effects.
    """
    if not content:
        return ""

    injection_patterns = detect_prompt_injection(content)
    if injection_patterns:
        logger.warning(
            f"Prompt injection patterns detected: {injection_patterns}. "
            f"Content length: {len(content)}"
        )

    if len(content) > max_length:
        content = content[:max_length]

    # Remove control characters except newlines and tabs
    content = re.sub(r'[\x00-\x08\x0B-\x0C\x0E-\x1F\x7F]', '', content)
    return content.strip()


def validate_identifier(value: str, field_name: str) -> None:
    """
    Validate a tenant or user identifier.

    Raises:
        ValueError: If validation fails
    """
    if not value:
        raise ValueError(f"{field_name} cannot be empty")
    if len(value) > 128:
        raise ValueError(f"{field_name} too long")
    if not _IDENTIFIER_PATTERN.match(value):
        raise ValueError(f"Invalid {field_name}: contains unsupported characters")
