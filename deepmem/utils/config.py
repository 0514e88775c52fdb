"""
Configuration management for AWS services and ingestion settings.
"""

import logging
import math
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

# Config is loaded before logging is set up, so use the plain module logger here.
logger = logging.getLogger(__name__)


def _get_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value not in (None, '') else default


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw in (None, ''):
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f'Invalid integer for {name}: {raw!r}, using default {default}')
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw in (None, ''):
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f'Invalid number for {name}: {raw!r}, using default {default}')
        return default
    if not math.isfinite(value):
        logger.warning(f'Non-finite number for {name}: {raw!r}, using default {default}')
        return default
    return value


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw in (None, ''):
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float
    timeout: float


@dataclass
class NeptuneConfig:
    """Configuration for Amazon Neptune graph database."""
    endpoint: str
    port: int
    region: str
    timeout: float


@dataclass
class OpenSearchConfig:
    """Configuration for OpenSearch."""
    endpoint: str
    port: int
    region: str
    index_name: str
    dimension: int
    timeout: float
    service: str = 'es'  # SigV4 service name: 'es' for managed domains, 'aoss' for serverless


@dataclass
class SensitiveConfig:
    """Configuration for the sensitive content filter.

    Allow/deny rules are JSON arrays of regex source strings.
    """
    enabled: bool
    ruleset_version: str
    allow_regex_json: Optional[str] = None
    deny_regex_json: Optional[str] = None


def _bounded(name: str, value: float, low: float, high: float, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value) or not low <= value <= high:
        logger.warning(f'Invalid {name}: {value!r} (expected {low}..{high}), using default {default}')
        return default
    return value


@dataclass(frozen=True)
class UpdaterConfig:
    """Thresholds for the memory updater, validated once at construction.

    Out-of-range values are replaced by their defaults with a warning.
    """
    min_semantic_score: float = 0.6
    importance_threshold: float = 0.5
    max_memories_per_update: int = 20
    dedupe_score: float = 0.92
    related_top_k: int = 5
    sensitive_filter_enabled: bool = True
    dedupe_scope: str = 'namespace'

    def __post_init__(self):
        object.__setattr__(self, 'min_semantic_score', _bounded('min_semantic_score', self.min_semantic_score, 0.0, 1.0, 0.6))
        object.__setattr__(self, 'importance_threshold',
                           _bounded('importance_threshold', self.importance_threshold, 0.0, 1.0, 0.5))
        object.__setattr__(self, 'dedupe_score', _bounded('dedupe_score', self.dedupe_score, 0.0, 1.0, 0.92))
        object.__setattr__(self, 'max_memories_per_update',
                           int(_bounded('max_memories_per_update', self.max_memories_per_update, 1, 1000, 20)))
        object.__setattr__(self, 'related_top_k', int(_bounded('related_top_k', self.related_top_k, 0, 100, 5)))
        if self.dedupe_scope not in ('namespace', 'session'):
            logger.warning(f"Invalid dedupe_scope: {self.dedupe_scope!r}, using default 'namespace'")
            object.__setattr__(self, 'dedupe_scope', 'namespace')


@dataclass(frozen=True)
class RetrieverConfig:
    """Scoring weights for context retrieval."""
    min_semantic_score: float = 0.6
    semantic_weight: float = 0.6
    relation_weight: float = 0.4
    decay_half_life_days: float = 90.0
    importance_boost: float = 0.5
    default_max_memories: int = 8

    def __post_init__(self):
        semantic = max(0.0, _bounded('semantic_weight', self.semantic_weight, 0.0, 1000.0, 0.6))
        relation = max(0.0, _bounded('relation_weight', self.relation_weight, 0.0, 1000.0, 0.4))
        total = semantic + relation
        object.__setattr__(self, 'semantic_weight', semantic / total if total > 0 else 0.6)
        object.__setattr__(self, 'relation_weight', relation / total if total > 0 else 0.4)
        object.__setattr__(self, 'min_semantic_score', _bounded('min_semantic_score', self.min_semantic_score, 0.0, 1.0, 0.6))
        object.__setattr__(self, 'decay_half_life_days',
                           max(1.0, _bounded('decay_half_life_days', self.decay_half_life_days, 0.0, 36500.0, 90.0)))
        object.__setattr__(self, 'importance_boost', _bounded('importance_boost', self.importance_boost, 0.0, 10.0, 0.5))
        object.__setattr__(self, 'default_max_memories',
                           int(_bounded('default_max_memories', self.default_max_memories, 1, 100, 8)))


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    default_namespace: str
    bedrock_embed: BedrockEmbedConfig
    neptune: NeptuneConfig
    opensearch: OpenSearchConfig
    sensitive: SensitiveConfig
    updater: UpdaterConfig
    retriever: RetrieverConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = _get_str('ENVIRONMENT', 'development')
    upstream_timeout = _get_float('UPSTREAM_TIMEOUT_SECONDS', 10.0)

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=_get_str('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=_get_str('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=_get_int('BEDROCK_EMBED_DIMENSION', 1024),
                                              retry_attempts=_get_int('BEDROCK_EMBED_RETRY_ATTEMPTS', 3),
                                              retry_delay=_get_float('BEDROCK_EMBED_RETRY_DELAY', 1.0),
                                              timeout=upstream_timeout)

    # Neptune configuration
    neptune_config = NeptuneConfig(endpoint=_get_str('NEPTUNE_ENDPOINT', 'localhost'),
                                   port=_get_int('NEPTUNE_PORT', 8182),
                                   region=_get_str('NEPTUNE_AWS_REGION', 'us-east-1'),
                                   timeout=upstream_timeout)

    # Vector search configuration
    opensearch_config = OpenSearchConfig(endpoint=_get_str('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=_get_int('OPENSEARCH_PORT', 443),
                                         region=_get_str('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         index_name=_get_str('OPENSEARCH_INDEX', 'deep_memories'),
                                         dimension=_get_int('OPENSEARCH_DIMENSION', 1024),
                                         timeout=upstream_timeout,
                                         service=_get_str('OPENSEARCH_SERVICE', 'es'))

    # Sensitive filter configuration
    sensitive_config = SensitiveConfig(enabled=_get_bool('SENSITIVE_FILTER_ENABLED', True),
                                       ruleset_version=_get_str('SENSITIVE_RULESET_VERSION', 'builtin-v1'),
                                       allow_regex_json=os.getenv('SENSITIVE_ALLOW_REGEX_JSON'),
                                       deny_regex_json=os.getenv('SENSITIVE_DENY_REGEX_JSON'))

    # Updater configuration
    updater_config = UpdaterConfig(min_semantic_score=_get_float('MIN_SEMANTIC_SCORE', 0.6),
                                   importance_threshold=_get_float('IMPORTANCE_THRESHOLD', 0.5),
                                   max_memories_per_update=_get_int('MAX_MEMORIES_PER_UPDATE', 20),
                                   dedupe_score=_get_float('DEDUPE_SCORE', 0.92),
                                   related_top_k=_get_int('RELATED_TOP_K', 5),
                                   sensitive_filter_enabled=sensitive_config.enabled,
                                   dedupe_scope=_get_str('DEDUPE_SCOPE', 'namespace'))

    # Retriever configuration
    retriever_config = RetrieverConfig(min_semantic_score=_get_float('MIN_SEMANTIC_SCORE', 0.6),
                                       semantic_weight=_get_float('RETRIEVE_SEMANTIC_WEIGHT', 0.6),
                                       relation_weight=_get_float('RETRIEVE_RELATION_WEIGHT', 0.4),
                                       decay_half_life_days=_get_float('RETRIEVE_DECAY_HALF_LIFE_DAYS', 90.0),
                                       importance_boost=_get_float('RETRIEVE_IMPORTANCE_BOOST', 0.5),
                                       default_max_memories=_get_int('RETRIEVE_MAX_MEMORIES', 8))

    # MCP configuration
    mcp_config = MCPConfig(transport=_get_str('MCP_TRANSPORT', 'sse'),
                           host=_get_str('MCP_HOST', '127.0.0.1'),
                           port=_get_int('MCP_PORT', 8000))

    return AppConfig(environment=environment,
                     log_level=_get_str('LOG_LEVEL', 'INFO'),
                     default_namespace=_get_str('DEFAULT_NAMESPACE', 'default'),
                     bedrock_embed=bedrock_embed_config,
                     neptune=neptune_config,
                     opensearch=opensearch_config,
                     sensitive=sensitive_config,
                     updater=updater_config,
                     retriever=retriever_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
