import pytest

from deepmem.models.api import RetrieveContextRequest, UpdateMemoryIndexRequest, UpdateMemoryIndexResponse
from deepmem.models.core import Memory
from deepmem.utils.errors import ValidationError
from deepmem.utils.hash_utils import memory_id, transcript_hash


def test_update_request_from_dict():
    request = UpdateMemoryIndexRequest.from_dict({
        'session_id': ' s1 ',
        'messages': [{
            'role': 'user',
            'content': 'hi'
        }],
        'namespace': '',
        'async': True
    })

    assert request.session_id == 's1'
    assert request.namespace is None
    assert request.run_async is True
    assert len(request.messages) == 1


@pytest.mark.parametrize('payload', [
    None,
    [],
    {
        'messages': []
    },
    {
        'session_id': '',
        'messages': []
    },
    {
        'session_id': 7,
        'messages': []
    },
    {
        'session_id': 's1',
        'messages': 'hi'
    },
    {
        'session_id': 's1',
        'messages': [],
        'async': 'yes'
    },
])
def test_update_request_rejects_bad_shapes(payload):
    with pytest.raises(ValidationError):
        UpdateMemoryIndexRequest.from_dict(payload)


def test_update_response_omits_missing_error():
    assert UpdateMemoryIndexResponse(status='skipped').to_dict() == {
        'status': 'skipped',
        'memories_added': 0,
        'memories_filtered': 0
    }
    assert UpdateMemoryIndexResponse(status='error', error='boom').to_dict()['error'] == 'boom'


@pytest.mark.parametrize('payload', [
    {
        'session_id': 's1'
    },
    {
        'session_id': 's1',
        'user_input': 'hi',
        'max_memories': 0
    },
    {
        'session_id': 's1',
        'user_input': 'hi',
        'max_memories': True
    },
    {
        'user_input': 'hi'
    },
])
def test_retrieve_request_rejects_bad_shapes(payload):
    with pytest.raises(ValidationError):
        RetrieveContextRequest.from_dict(payload)


def test_memory_document_round_trip_drops_empty_fields():
    memory = Memory(id='ns::mem_1',
                    namespace='ns',
                    session_id='s1',
                    content='Timezone is UTC',
                    importance=0.6,
                    entities=['UTC'],
                    topics=['timezone'],
                    created_at='2026-01-01T00:00:00.000Z',
                    kind='preference',
                    memory_key='preference:timezone')

    document = memory.to_document()

    assert 'expires_at' not in document
    assert Memory.from_document(document) == memory


def test_transcript_hash_ignores_key_order():
    assert transcript_hash([{'role': 'user', 'content': 'hi'}]) == transcript_hash([{'content': 'hi', 'role': 'user'}])
    assert transcript_hash([{'role': 'user', 'content': 'hi'}]) != transcript_hash([{'role': 'user', 'content': 'hi!'}])


def test_memory_id_is_deterministic():
    assert memory_id('ns', 's1', 'content') == memory_id('ns', 's1', 'content')
    assert memory_id('ns', 's1', 'content') != memory_id('ns', 's2', 'content')
    assert memory_id('ns', 's1', 'content').startswith('ns::mem_')
