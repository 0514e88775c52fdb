"""
Health checks for the embedding service and the two memory stores.
"""

from typing import Any, Callable, Dict

from .bedrock_embed import BedrockEmbed
from .config import config
from .logging_config import get_logger
from .neptune_client import NeptuneClient
from .opensearch_client import OpenSearchClient

logger = get_logger(__name__)


def _probe(service: str, check: Callable[[], bool], **details: Any) -> Dict[str, Any]:
    """Run one component check; any exception marks the component unhealthy."""
    try:
        return {'healthy': bool(check()), 'service': service, **details}
    except Exception as e:
        logger.warning(f'{service} health check raised: {e}')
        return {'healthy': False, 'service': service, 'error': str(e)}


def _check_neptune() -> bool:
    neptune = NeptuneClient(config.neptune)
    try:
        return neptune.health_check()
    finally:
        neptune.close()


def get_health_status() -> Dict[str, Any]:
    """Get detailed health status of the embedder, vector store and graph store.

    Returns:
        Dictionary keyed by component name
    """
    return {
        'bedrock_embed':
            _probe('Amazon Bedrock Embed', lambda: BedrockEmbed(config.bedrock_embed).health_check(),
                   model=config.bedrock_embed.model_id),
        'opensearch':
            _probe('Amazon OpenSearch', lambda: OpenSearchClient(config.opensearch).health_check(),
                   endpoint=config.opensearch.endpoint,
                   index=config.opensearch.index_name),
        'neptune':
            _probe('Amazon Neptune', _check_neptune, endpoint=config.neptune.endpoint),
    }


def check_health() -> bool:
    """Check the health of all components.

    Returns:
        True if all components are healthy, False otherwise
    """
    health_status = get_health_status()
    all_healthy = all(status.get('healthy', False) for status in health_status.values())

    if all_healthy:
        logger.info('All memory components are healthy')
    else:
        unhealthy = [name for name, status in health_status.items() if not status.get('healthy', False)]
        logger.warning(f'Unhealthy memory components: {", ".join(unhealthy)}')

    return all_healthy
