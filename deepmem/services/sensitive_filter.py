"""
Sensitive content classification for candidate memories.

The ruleset is the builtin deny rules plus configured deny rules, with configured
allow rules layered on top: any allow match classifies the text as non-sensitive.
"""

import re
from typing import Iterable, List, Optional, Pattern, Tuple

from ..models.core import SensitiveResult
from ..utils.config import SensitiveConfig
from ..utils.errors import ConfigurationError
from ..utils.json_utils import parse_string_array
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

MAX_PATTERN_LENGTH = 512
MAX_SCAN_LENGTH = 100_000

# A quantified group that itself contains an unbounded quantifier, e.g. (a+)+ or (x*y)*
_NESTED_QUANTIFIER = re.compile(r'\([^()]*[+*][^()]*\)\s*(?:[+*]|\{\d*,\})')

BUILTIN_DENY_RULES: Tuple[Tuple[str, Pattern], ...] = (
    ('private_key_header', re.compile(r'-----BEGIN (?:RSA |EC |OPENSSH |PGP |DSA )?PRIVATE KEY-----', re.IGNORECASE)),
    ('secret_assignment', re.compile(r'\b(?:api[_-]?key|secret|password|passwd|token)\b\s*[:=]\s*\S+', re.IGNORECASE)),
    ('secret_key_prefix', re.compile(r'\b(?:sk|rk)_[A-Za-z0-9]{20,}\b')),
    ('long_hex', re.compile(r'\b[A-Fa-f0-9]{32,}\b')),
    ('long_digits', re.compile(r'\b\d{14,}\b')),
    ('jwt', re.compile(r'\beyJ[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}\b')),
)


def compile_rule(source: object) -> Pattern:
    """Compile one configured rule case-insensitively.

    Raises:
        ConfigurationError: If the rule is not a string, is too complex, or does not compile
    """
    if not isinstance(source, str) or not source:
        raise ConfigurationError(f'Rule must be a non-empty string, got {source!r}')
    if len(source) > MAX_PATTERN_LENGTH:
        raise ConfigurationError(f'Rule longer than {MAX_PATTERN_LENGTH} characters')
    if _NESTED_QUANTIFIER.search(source):
        raise ConfigurationError('Rule contains a nested unbounded quantifier')
    try:
        return re.compile(source, re.IGNORECASE)
    except re.error as e:
        raise ConfigurationError(f'Invalid regex: {e}')


def compile_rules(sources: Iterable[object], prefix: str) -> List[Tuple[str, Pattern]]:
    """Compile configured rules, dropping invalid ones with a warning."""
    rules = []
    for index, source in enumerate(sources):
        try:
            rules.append((f'{prefix}_{index}', compile_rule(source)))
        except ConfigurationError as e:
            logger.warning(f'Dropping {prefix} rule #{index}: {e}')
    return rules


def _load_rule_sources(raw: Optional[str], label: str) -> List[object]:
    try:
        return parse_string_array(raw)
    except ConfigurationError as e:
        logger.warning(f'Ignoring {label} rules: {e}')
        return []


class SensitiveFilter:
    """Regex classifier over memory content."""

    def __init__(self,
                 ruleset_version: str = 'builtin-v1',
                 allow_patterns: Optional[Iterable[object]] = None,
                 deny_patterns: Optional[Iterable[object]] = None):
        """
        Initialize the filter.

        Args:
            ruleset_version: Policy version echoed on every result
            allow_patterns: Regex sources that force a non-sensitive classification
            deny_patterns: Regex sources added to the builtin deny rules
        """
        self.ruleset_version = ruleset_version
        self.allow_rules = compile_rules(allow_patterns or [], 'custom_allow')
        self.deny_rules = list(BUILTIN_DENY_RULES) + compile_rules(deny_patterns or [], 'custom_deny')

        logger.debug(f'Initialized SensitiveFilter {ruleset_version} with {len(self.allow_rules)} allow '
                     f'and {len(self.deny_rules)} deny rules')

    @classmethod
    def from_config(cls, config: SensitiveConfig) -> 'SensitiveFilter':
        return cls(ruleset_version=config.ruleset_version,
                   allow_patterns=_load_rule_sources(config.allow_regex_json, 'allow'),
                   deny_patterns=_load_rule_sources(config.deny_regex_json, 'deny'))

    def detect(self, text: Optional[str]) -> SensitiveResult:
        """Classify text.

        Args:
            text: Text to classify

        Returns:
            SensitiveResult with the ids of all matching deny rules
        """
        candidate = (text or '').strip()[:MAX_SCAN_LENGTH]
        if not candidate:
            return SensitiveResult(sensitive=False, reasons=[], ruleset_version=self.ruleset_version)

        for _, pattern in self.allow_rules:
            if pattern.search(candidate):
                return SensitiveResult(sensitive=False, reasons=[], ruleset_version=self.ruleset_version)

        reasons = [rule_id for rule_id, pattern in self.deny_rules if pattern.search(candidate)]
        return SensitiveResult(sensitive=bool(reasons), reasons=reasons, ruleset_version=self.ruleset_version)
