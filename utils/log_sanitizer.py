"""
Log Data Sanitizer
==================

Masks credentials before they reach a log line: bot app passwords, bearer
tokens from the Authorization header, and JWTs embedded in activity payloads.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass
class SanitizationRule:
    """Configuration for how to sanitize a pattern inside a string"""
    pattern: str  # Regex pattern to match
    replacement: str  # How to replace matched content


SENSITIVE_KEY_PATTERNS = [
    'password', 'passwd', 'pwd', 'secret', 'token', 'credential', 'authorization', 'api_key'
]


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    """Shows the first few characters and the length of a secret, nothing else."""
    if not value:
        return "NOT SET"
    return f"{value[:visible]}*** (length: {len(value)})"


class DataSanitizer:
    """Masks sensitive values in strings, dicts and lists"""

    def __init__(self):
        self.rules = self._load_default_rules()

    def _load_default_rules(self) -> List[SanitizationRule]:
        return [
            # Authorization header values
            SanitizationRule(
                pattern=r'(?i)\bbearer\s+[A-Za-z0-9._~+/=-]+',
                replacement='Bearer [TOKEN:***]',
            ),
            # JWT tokens
            SanitizationRule(
                pattern=r'eyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*',
                replacement='[JWT_TOKEN:eyJ***]',
            ),
            # password=..., secret: ...
            SanitizationRule(
                pattern=r'(?i)(password|passwd|pwd|secret)[\s]*[=:]\s*["\']?([^"\'\s,}]+)["\']?',
                replacement=r'\1=[PASSWORD:***]',
            ),
        ]

    def add_custom_rule(self, rule: SanitizationRule):
        self.rules.append(rule)

    def sanitize_data(self, data: Any) -> Any:
        if isinstance(data, str):
            return self._sanitize_string(data)
        elif isinstance(data, dict):
            return self._sanitize_dict(data)
        elif isinstance(data, (list, tuple)):
            return [self.sanitize_data(item) for item in data]
        else:
            return data

    def _sanitize_string(self, text: str) -> str:
        if not text:
            return text
        result = text
        for rule in self.rules:
            result = re.sub(rule.pattern, rule.replacement, result)
        return result

    def _sanitize_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        sanitized = {}
        for key, value in data.items():
            if self._is_sensitive_key(key) and isinstance(value, str):
                sanitized[key] = mask_secret(value)
            else:
                sanitized[key] = self.sanitize_data(value)
        return sanitized

    @staticmethod
    def _is_sensitive_key(key: Any) -> bool:
        key_lower = str(key).lower()
        return any(pattern in key_lower for pattern in SENSITIVE_KEY_PATTERNS)


_default_sanitizer = DataSanitizer()


def sanitize_for_logging(data: Any) -> Any:
    """Sanitize data specifically for logging purposes"""
    return _default_sanitizer.sanitize_data(data)
