"""
OpenSearch client wrapper for memory vector similarity search.
"""

from typing import Any, Dict, List, Optional

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import NotFoundError, OpenSearchException
from requests_aws4auth import AWS4Auth

from ..models.core import Memory, VectorMatch
from .config import OpenSearchConfig
from .errors import UpstreamError
from .logging_config import get_logger

logger = get_logger(__name__)


class OpenSearchError(UpstreamError):
    """Custom exception for OpenSearch errors."""
    pass


def knn_score_to_cosine(score: float) -> float:
    """Convert a cosinesimil k-NN score, (1 + cos) / 2, back to cosine similarity."""
    return max(-1.0, min(1.0, 2.0 * float(score) - 1.0))


class OpenSearchClient:
    """OpenSearch client with AWS authentication and error handling."""

    def __init__(self, config: OpenSearchConfig, client: Any = None):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
            client: Optional pre-built opensearch-py client
        """
        self.config = config
        self.index_name = config.index_name

        if client is None:
            credentials = boto3.Session().get_credentials()
            auth = AWS4Auth(region=config.region, service=config.service, refreshable_credentials=credentials)

            endpoint = config.endpoint
            if '://' in endpoint:
                # Remove protocol if present
                endpoint = endpoint.split('://', 1)[1]

            client = OpenSearch(hosts=[{
                'host': endpoint,
                'port': config.port
            }],
                                http_auth=auth,
                                use_ssl=True,
                                verify_certs=True,
                                timeout=config.timeout,
                                connection_class=RequestsHttpConnection)

        self.client = client
        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    def create_index_if_not_exists(self) -> str:
        """
        Create the memory index if it doesn't exist.

        Returns:
            'exists', 'created' or 'failed'

        Raises:
            OpenSearchError: If the index cannot be inspected or created
        """
        try:
            if self.client.indices.exists(index=self.index_name):
                logger.debug(f'Index {self.index_name} already exists')
                return 'exists'

            keyword = {'type': 'keyword'}
            index_body = {
                'mappings': {
                    'properties': {
                        'id': keyword,
                        'namespace': keyword,
                        'session_id': keyword,
                        'content': {
                            'type': 'text'
                        },
                        'importance': {
                            'type': 'float'
                        },
                        'confidence': {
                            'type': 'float'
                        },
                        'entities': keyword,
                        'topics': keyword,
                        'kind': keyword,
                        'subject': keyword,
                        'memory_key': keyword,
                        'source_transcript_hash': keyword,
                        'embedding': {
                            'type': 'knn_vector',
                            'dimension': self.config.dimension,
                            'method': {
                                'name': 'hnsw',
                                'space_type': 'cosinesimil',
                                'engine': 'nmslib'
                            }
                        },
                        'created_at': {
                            'type': 'date'
                        },
                        'expires_at': {
                            'type': 'date'
                        }
                    }
                },
                'settings': {
                    'index': {
                        'knn': True,
                        'knn.algo_param.ef_search': 100
                    }
                }
            }

            response = self.client.indices.create(index=self.index_name, body=index_body)
            if response.get('acknowledged', False):
                logger.info(f'Created index {self.index_name}')
                return 'created'
            return 'failed'

        except OpenSearchException as e:
            logger.error(f'Error creating index {self.index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')
        except Exception as e:
            logger.error(f'Unexpected error creating index {self.index_name}: {e}')
            raise OpenSearchError(f'Unexpected error creating index: {e}')

    def upsert_memory(self, memory: Memory, embedding: List[float]) -> bool:
        """
        Index a memory under its own id, replacing any previous version.

        Args:
            memory: Memory to store
            embedding: Embedding of the memory content

        Returns:
            True if the document was created or updated

        Raises:
            OpenSearchError: If indexing fails
        """
        document = memory.to_document()
        document['embedding'] = embedding

        try:
            response = self.client.index(index=self.index_name, id=memory.id, body=document)

            success = response.get('result') in ['created', 'updated']
            if success:
                logger.debug(f'Upserted memory {memory.id} in {self.index_name}')
            else:
                logger.warning(f'Unexpected result upserting memory {memory.id}: {response.get("result")}')

            return success

        except OpenSearchException as e:
            logger.error(f'Error upserting memory {memory.id}: {e}')
            raise OpenSearchError(f'Failed to upsert memory: {e}')
        except Exception as e:
            logger.error(f'Unexpected error upserting memory {memory.id}: {e}')
            raise OpenSearchError(f'Unexpected error upserting memory: {e}')

    def get_memory(self, memory_id: str) -> Optional[Memory]:
        """
        Get a memory by id.

        Args:
            memory_id: Memory id

        Returns:
            Memory if found, None otherwise
        """
        try:
            response = self.client.get(index=self.index_name, id=memory_id, _source_excludes=['embedding'])
            return Memory.from_document(response['_source'])

        except NotFoundError:
            return None
        except OpenSearchException as e:
            logger.error(f'Error getting memory {memory_id}: {e}')
            raise OpenSearchError(f'Failed to get memory: {e}')
        except Exception as e:
            logger.error(f'Unexpected error getting memory {memory_id}: {e}')
            raise OpenSearchError(f'Unexpected error getting memory: {e}')

    def search(self,
               vector: List[float],
               namespace: str,
               session_id: Optional[str] = None,
               top_k: int = 5,
               min_score: Optional[float] = None) -> List[VectorMatch]:
        """
        Perform vector similarity search within a namespace (and optionally a session).

        Args:
            vector: Query vector
            namespace: Namespace to search in
            session_id: Restrict to memories of this session when given
            top_k: Number of results to return
            min_score: Drop matches whose cosine similarity is below this value

        Returns:
            Matches ordered by decreasing cosine similarity
        """
        filters = [{'term': {'namespace': namespace}}]
        if session_id:
            filters.append({'term': {'session_id': session_id}})

        search_body = {
            'size': top_k,
            'query': {
                'bool': {
                    'must': [{
                        'knn': {
                            'embedding': {
                                'vector': vector,
                                'k': top_k
                            }
                        }
                    }],
                    'filter': filters
                }
            },
            '_source': {
                'excludes': ['embedding']  # Don't return embedding in results
            }
        }

        try:
            response = self.client.search(index=self.index_name, body=search_body)

        except NotFoundError:
            logger.debug(f'Index {self.index_name} not found, no matches')
            return []
        except OpenSearchException as e:
            logger.error(f'Error performing vector search: {e}')
            raise OpenSearchError(f'Vector search failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error in vector search: {e}')
            raise OpenSearchError(f'Unexpected error in vector search: {e}')

        results = []
        for hit in response['hits']['hits']:
            similarity = knn_score_to_cosine(hit['_score'])
            if min_score is not None and similarity < min_score:
                continue
            results.append(VectorMatch(id=hit['_source'].get('id', hit['_id']), score=similarity, document=hit['_source']))

        results.sort(key=lambda match: match.score, reverse=True)
        logger.debug(f'Vector search returned {len(results)} results in namespace {namespace}')
        return results

    def find_memory_ids(self,
                        namespace: str,
                        session_id: Optional[str] = None,
                        expired_before: Optional[str] = None,
                        limit: int = 1000) -> List[str]:
        """
        List memory ids in a namespace by session or expiry.

        Args:
            namespace: Namespace to scan
            session_id: Only memories of this session
            expired_before: Only memories whose expires_at is at or before this ISO timestamp
            limit: Maximum number of ids

        Returns:
            Matching memory ids
        """
        filters = [{'term': {'namespace': namespace}}]
        if session_id:
            filters.append({'term': {'session_id': session_id}})
        if expired_before:
            filters.append({'range': {'expires_at': {'lte': expired_before}}})

        search_body = {'size': limit, 'query': {'bool': {'filter': filters}}, '_source': ['id']}

        try:
            response = self.client.search(index=self.index_name, body=search_body)

        except NotFoundError:
            return []
        except OpenSearchException as e:
            logger.error(f'Error listing memories in {namespace}: {e}')
            raise OpenSearchError(f'Failed to list memories: {e}')
        except Exception as e:
            logger.error(f'Unexpected error listing memories in {namespace}: {e}')
            raise OpenSearchError(f'Unexpected error listing memories: {e}')

        return [hit['_source'].get('id', hit['_id']) for hit in response['hits']['hits']]

    def delete_memory(self, memory_id: str) -> bool:
        """
        Delete a memory document by id.

        Returns:
            True if a document was deleted, False if it did not exist

        Raises:
            OpenSearchError: If the delete fails
        """
        try:
            response = self.client.delete(index=self.index_name, id=memory_id)
            logger.debug(f'Deleted memory {memory_id} from {self.index_name}')
            return response.get('result') == 'deleted'

        except NotFoundError:
            return False
        except OpenSearchException as e:
            logger.error(f'Error deleting memory {memory_id}: {e}')
            raise OpenSearchError(f'Failed to delete memory: {e}')
        except Exception as e:
            logger.error(f'Unexpected error deleting memory {memory_id}: {e}')
            raise OpenSearchError(f'Unexpected error deleting memory: {e}')

    def delete_memories(self, memory_ids: List[str]) -> int:
        """Delete several memory documents; returns how many existed."""
        return sum(1 for memory_id in memory_ids if memory_id and self.delete_memory(memory_id))

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            return self.client.indices.exists(index=self.index_name) in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
