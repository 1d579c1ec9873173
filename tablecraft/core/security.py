# tablecraft/core/security.py
import logging
import re
from typing import Any, Mapping, Optional

from tablecraft.core.exceptions import SecurityViolation

logger = logging.getLogger(__name__)

DANGEROUS_PATTERNS = [
    # XSS
    re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
    re.compile(r"on(load|error|click|mouseover)\s*=", re.IGNORECASE),

    # SQL injection
    re.compile(r"union\s+select", re.IGNORECASE),
    re.compile(r"drop\s+table", re.IGNORECASE),
    re.compile(r"delete\s+from", re.IGNORECASE),
    re.compile(r"insert\s+into", re.IGNORECASE),
    re.compile(r"update\s+\w+\s+set\s", re.IGNORECASE),
    re.compile(r"exec\s*\(", re.IGNORECASE),
    re.compile(r"'\s+or\s+'", re.IGNORECASE),
    re.compile(r"'\s*=\s*'"),
    re.compile(r"--\s*$", re.MULTILINE),
    re.compile(r"/\*.*\*/", re.DOTALL),

    # Path traversal
    re.compile(r"\.\./"),
    re.compile(r"\.\.\\"),
    re.compile(r"\.\.%(2f|5c)", re.IGNORECASE),
    re.compile(r"%2e%2e%(2f|5c)", re.IGNORECASE),

    # Command injection
    re.compile(r";\s*(rm|cat|ls)\s+", re.IGNORECASE),
    re.compile(r"\|\s*nc\s+", re.IGNORECASE),
    re.compile(r"`.*`"),
    re.compile(r"\$\(.*\)"),
]

IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

MAX_DEPTH = 10


def find_dangerous_pattern(value: str) -> Optional[str]:
    for pattern in DANGEROUS_PATTERNS:
        if pattern.search(value):
            return pattern.pattern
    return None


def validate_identifier(name: str, field: str = "table_name") -> str:
    """Table and column names must be plain SQL identifiers"""
    if not isinstance(name, str) or not IDENTIFIER_PATTERN.match(name):
        raise SecurityViolation(f"Invalid identifier: {name!r}", field=field)
    return name


def validate_request_params(params: Any, path: str = "", depth: int = 0) -> None:
    """
    Walk request parameters and raise SecurityViolation on the first value or
    key that matches a dangerous pattern. Runs before anything is compiled.
    """
    if depth > MAX_DEPTH:
        raise SecurityViolation("Request parameters nested too deeply", field=path or None)

    if isinstance(params, Mapping):
        for key, value in params.items():
            key_path = f"{path}.{key}" if path else str(key)
            validate_request_params(str(key), key_path, depth + 1)
            validate_request_params(value, key_path, depth + 1)
    elif isinstance(params, (list, tuple)):
        for index, item in enumerate(params):
            validate_request_params(item, f"{path}[{index}]", depth + 1)
    elif isinstance(params, str):
        matched = find_dangerous_pattern(params)
        if matched:
            logger.warning(f"Security violation in request field '{path}': pattern {matched}")
            raise SecurityViolation("Potentially malicious input detected", field=path or None)
