# Copyright (c) 2025-2026 OptimNow. All Rights Reserved.
# Licensed under the Apache License, Version 2.0.
# See LICENSE file in the project root for full license information.

"""Error message sanitization for scan reports.

Failure details from the cloud API end up in reports and CSV exports
that are shared with operators. This module strips credentials, tokens
and connection strings from those messages before they are recorded.
"""

import logging
import re

logger = logging.getLogger(__name__)

# Patterns for detecting sensitive information in error messages
SENSITIVE_PATTERNS = {
    "credentials": [
        r"(?i)client[_-]?secret['\"]?\s*[:=]\s*['\"]?[^\s'\",;]+",
        r"(?i)password['\"]?\s*[:=]\s*['\"]?[^\s'\",;]+",
        r"(?i)api[_-]?key['\"]?\s*[:=]\s*['\"]?[^\s'\",;]+",
        r"(?i)access[_-]?token['\"]?\s*[:=]\s*['\"]?[^\s'\",;]+",
        r"(?i)AccountKey=[^;\s]+",
    ],
    "bearer_token": [
        r"(?i)bearer\s+[A-Za-z0-9\-._~+/]+=*",
        r"eyJ[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]+",  # JWT
    ],
    "sas_signature": [
        r"(?i)([?&])sig=[^&\s]+",
    ],
    "connection_string": [
        r"(?i)(?:mysql|postgres|mongodb|redis|amqp)://[^\s]+",
        r"(?i)DefaultEndpointsProtocol=[^\s]+",
    ],
    "file_path": [
        r"[A-Za-z]:\\[\w\-.\\]+",  # Windows paths
        r"(?<![\w/])/(?:home|root|var|etc|opt|srv|usr|tmp)/[\w\-./]+",
    ],
}

# Compile patterns for performance
COMPILED_PATTERNS = {
    category: [re.compile(pattern) for pattern in patterns]
    for category, patterns in SENSITIVE_PATTERNS.items()
}


def detect_sensitive_info(text: str) -> dict[str, list[str]]:
    """
    Detect sensitive information in text.

    Args:
        text: Text to scan for sensitive information

    Returns:
        Dictionary mapping sensitivity categories to the matched fragments
    """
    if not text:
        return {}

    found: dict[str, list[str]] = {}

    for category, patterns in COMPILED_PATTERNS.items():
        matches = [m.group(0) for pattern in patterns for m in pattern.finditer(text)]
        if matches:
            found[category] = matches

    return found


def redact_sensitive_info(text: str, replacement: str = "[REDACTED]") -> str:
    """
    Redact sensitive information from text.

    Args:
        text: Text to redact
        replacement: String to use for redacted content

    Returns:
        Text with sensitive information redacted
    """
    if not text:
        return text

    result = text

    for category, patterns in COMPILED_PATTERNS.items():
        for pattern in patterns:
            if category == "sas_signature":
                # Keep the query separator so the URL stays readable
                result = pattern.sub(lambda m: f"{m.group(1)}sig={replacement}", result)
            else:
                result = pattern.sub(replacement, result)

    return result


def describe_error(exc: BaseException) -> str:
    """
    Build the sanitized ``"<Type>: <message>"`` string recorded in reports.

    Args:
        exc: Exception to describe

    Returns:
        Safe one-line description of the exception
    """
    exc_type = type(exc).__name__
    message = str(exc).strip() or "no details"

    sensitive = detect_sensitive_info(message)
    if sensitive:
        logger.debug(f"Redacting sensitive information from {exc_type}: {list(sensitive.keys())}")

    # Only keep the first line; SDK errors often append full response bodies
    first_line = redact_sensitive_info(message).splitlines()[0]
    return f"{exc_type}: {first_line}"
