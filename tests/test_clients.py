import io
import json
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError
from opensearchpy.exceptions import NotFoundError

from deepmem.models.core import ExtractedEvent, Memory
from deepmem.utils import bedrock_embed
from deepmem.utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from deepmem.utils.config import BedrockEmbedConfig, NeptuneConfig, OpenSearchConfig
from deepmem.utils.neptune_client import NeptuneClient, NeptuneError, entity_node_id, event_node_id, topic_node_id
from deepmem.utils.opensearch_client import OpenSearchClient, OpenSearchError, knn_score_to_cosine


def embed_config(**overrides):
    settings = dict(region='us-east-1',
                    model_id='amazon.titan-embed-text-v2:0',
                    dimension=4,
                    retry_attempts=2,
                    retry_delay=0.0,
                    timeout=1.0)
    settings.update(overrides)
    return BedrockEmbedConfig(**settings)


def invoke_response(payload):
    return {'body': io.BytesIO(json.dumps(payload).encode('utf-8'))}


def test_bedrock_embed_fits_dimension():
    client = MagicMock()
    client.invoke_model.return_value = invoke_response({'embedding': [0.1, 0.2]})

    vector = BedrockEmbed(embed_config(), client=client).embed('hello')

    assert vector == [0.1, 0.2, 0.0, 0.0]
    body = json.loads(client.invoke_model.call_args.kwargs['body'])
    assert body['dimensions'] == 4


def test_bedrock_embed_retries_then_succeeds(monkeypatch):
    monkeypatch.setattr(bedrock_embed.time, 'sleep', lambda _: None)
    client = MagicMock()
    client.invoke_model.side_effect = [
        ClientError({'Error': {
            'Code': 'ThrottlingException',
            'Message': 'slow down'
        }}, 'InvokeModel'),
        invoke_response({'embeddings': [[1, 2, 3, 4, 5]]}),
    ]

    vector = BedrockEmbed(embed_config(model_id='cohere.embed-english-v3'), client=client).embed('hello')

    assert vector == [1.0, 2.0, 3.0, 4.0]
    assert client.invoke_model.call_count == 2


def test_bedrock_embed_gives_up(monkeypatch):
    monkeypatch.setattr(bedrock_embed.time, 'sleep', lambda _: None)
    client = MagicMock()
    client.invoke_model.side_effect = ClientError({'Error': {'Code': 'ThrottlingException', 'Message': 'slow'}}, 'InvokeModel')

    with pytest.raises(BedrockEmbedError):
        BedrockEmbed(embed_config(), client=client).embed('hello')


def test_bedrock_embed_blank_text_is_zero_vector():
    client = MagicMock()

    assert BedrockEmbed(embed_config(), client=client).embed('  ') == [0.0] * 4
    client.invoke_model.assert_not_called()


def opensearch_config():
    return OpenSearchConfig(endpoint='search.example.com', port=443, region='us-east-1', index_name='memories', dimension=4, timeout=1.0)


def test_opensearch_search_converts_scores_and_filters():
    client = MagicMock()
    client.search.return_value = {
        'hits': {
            'hits': [
                {
                    '_id': 'a',
                    '_score': 0.7,
                    '_source': {
                        'id': 'a',
                        'content': 'low'
                    }
                },
                {
                    '_id': 'b',
                    '_score': 0.98,
                    '_source': {
                        'id': 'b',
                        'content': 'high'
                    }
                },
            ]
        }
    }

    matches = OpenSearchClient(opensearch_config(), client=client).search([0.1] * 4, 'ns', session_id='s1', top_k=3, min_score=0.5)

    assert [match.id for match in matches] == ['b']
    assert matches[0].score == pytest.approx(0.96)
    filters = client.search.call_args.kwargs['body']['query']['bool']['filter']
    assert {'term': {'namespace': 'ns'}} in filters
    assert {'term': {'session_id': 's1'}} in filters


def test_opensearch_missing_index_is_empty():
    client = MagicMock()
    client.search.side_effect = NotFoundError(404, 'index_not_found_exception', {})

    assert OpenSearchClient(opensearch_config(), client=client).search([0.1] * 4, 'ns') == []


def test_opensearch_upsert_uses_memory_id():
    client = MagicMock()
    client.index.return_value = {'result': 'created'}
    memory = Memory(id='ns::mem_1',
                    namespace='ns',
                    session_id='s1',
                    content='hello',
                    importance=0.5,
                    entities=[],
                    topics=[],
                    created_at='2026-01-01T00:00:00.000Z')

    assert OpenSearchClient(opensearch_config(), client=client).upsert_memory(memory, [0.1] * 4) is True
    kwargs = client.index.call_args.kwargs
    assert kwargs['id'] == 'ns::mem_1'
    assert kwargs['body']['embedding'] == [0.1] * 4


def test_opensearch_errors_are_wrapped():
    client = MagicMock()
    client.index.side_effect = RuntimeError('boom')
    memory = Memory(id='m', namespace='ns', session_id='s1', content='x', importance=0.1, entities=[], topics=[], created_at='')

    with pytest.raises(OpenSearchError):
        OpenSearchClient(opensearch_config(), client=client).upsert_memory(memory, [0.0] * 4)


def test_knn_score_to_cosine():
    assert knn_score_to_cosine(1.0) == 1.0
    assert knn_score_to_cosine(0.5) == 0.0
    assert knn_score_to_cosine(0.0) == -1.0


def neptune_config():
    return NeptuneConfig(endpoint='graph.example.com', port=8182, region='us-east-1', timeout=1.0)


def test_neptune_reads_ingest_meta():
    g = MagicMock()
    g.V.return_value.has.return_value.value_map.return_value.to_list.return_value = [{
        'last_transcript_hash': ['abc'],
        'last_message_count': [3],
        'last_ingested_at': ['2026-01-01T00:00:00.000Z']
    }]

    meta = NeptuneClient(neptune_config(), g=g).get_session_ingest_meta('ns', 's1')

    assert meta.transcript_hash == 'abc'
    assert meta.message_count == 3
    g.V.return_value.has.assert_called_with('Session', 'id', 'ns::session::s1')


def test_neptune_unknown_session_has_empty_meta():
    g = MagicMock()
    g.V.return_value.has.return_value.value_map.return_value.to_list.return_value = []

    meta = NeptuneClient(neptune_config(), g=g).get_session_ingest_meta('ns', 's1')

    assert meta.transcript_hash is None
    assert meta.message_count is None


def test_neptune_errors_are_wrapped():
    g = MagicMock()
    g.V.side_effect = RuntimeError('connection refused')

    with pytest.raises(NeptuneError):
        NeptuneClient(neptune_config(), g=g).get_session_ingest_meta('ns', 's1')


def test_node_ids_are_deterministic():
    event = ExtractedEvent(type='design_decided', summary='We decided', timestamp='2026-01-01T00:00:00.000Z')

    assert topic_node_id('ns', 'Atlas') == 'ns::topic::atlas'
    assert entity_node_id('ns', 'project', 'Atlas') == 'ns::entity::project::atlas'
    assert event_node_id('ns', event) == event_node_id('ns', event)
    assert event_node_id('ns', event).startswith('ns::event::')


def test_opensearch_find_memory_ids_filters_by_session_and_expiry():
    client = MagicMock()
    client.search.return_value = {'hits': {'hits': [{'_id': 'ns::mem_a', '_source': {'id': 'ns::mem_a'}}]}}

    ids = OpenSearchClient(opensearch_config(), client=client).find_memory_ids('ns',
                                                                              session_id='s1',
                                                                              expired_before='2026-01-01T00:00:00.000Z')

    assert ids == ['ns::mem_a']
    filters = client.search.call_args.kwargs['body']['query']['bool']['filter']
    assert {'term': {'session_id': 's1'}} in filters
    assert {'range': {'expires_at': {'lte': '2026-01-01T00:00:00.000Z'}}} in filters


def test_opensearch_delete_counts_existing_documents():
    client = MagicMock()
    client.delete.side_effect = [{'result': 'deleted'}, NotFoundError(404, 'not_found', {})]

    deleted = OpenSearchClient(opensearch_config(), client=client).delete_memories(['ns::mem_a', 'ns::mem_b'])

    assert deleted == 1
    assert client.delete.call_args_list[0].kwargs['id'] == 'ns::mem_a'


def test_opensearch_delete_errors_are_wrapped():
    client = MagicMock()
    client.delete.side_effect = RuntimeError('boom')

    with pytest.raises(OpenSearchError):
        OpenSearchClient(opensearch_config(), client=client).delete_memory('ns::mem_a')


def test_neptune_delete_memories_drops_vertices():
    g = MagicMock()
    scoped = g.V.return_value.has.return_value.has.return_value
    scoped.count.return_value.next.return_value = 2

    dropped = NeptuneClient(neptune_config(), g=g).delete_memories('ns', ['ns::mem_a', 'ns::mem_b', ''])

    assert dropped == 2
    scoped.drop.return_value.iterate.assert_called_once()
    g.V.return_value.has.return_value.has.assert_called_with('namespace', 'ns')


def test_neptune_delete_without_ids_is_a_no_op():
    g = MagicMock()

    assert NeptuneClient(neptune_config(), g=g).delete_memories('ns', []) == 0
    g.V.assert_not_called()


def test_neptune_find_expired_memory_ids():
    g = MagicMock()
    expired = g.V.return_value.has.return_value.has.return_value
    expired.limit.return_value.values.return_value.to_list.return_value = ['ns::mem_a']

    ids = NeptuneClient(neptune_config(), g=g).find_memory_ids('ns', expired_before='2026-01-01T00:00:00.000Z')

    assert ids == ['ns::mem_a']
    g.V.return_value.has.assert_called_with('Memory', 'namespace', 'ns')
    assert g.V.return_value.has.return_value.has.call_args.args[0] == 'expires_at'
