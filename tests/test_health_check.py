from unittest.mock import MagicMock

from deepmem.utils import health_check


def test_health_status_reports_each_component(monkeypatch):
    neptune = MagicMock()
    neptune.health_check.return_value = True
    monkeypatch.setattr(health_check, 'BedrockEmbed', lambda _: MagicMock(health_check=MagicMock(return_value=True)))
    monkeypatch.setattr(health_check, 'OpenSearchClient', MagicMock(side_effect=RuntimeError('no credentials')))
    monkeypatch.setattr(health_check, 'NeptuneClient', lambda _: neptune)

    status = health_check.get_health_status()

    assert status['bedrock_embed']['healthy'] is True
    assert status['opensearch'] == {'healthy': False, 'service': 'Amazon OpenSearch', 'error': 'no credentials'}
    assert status['neptune']['healthy'] is True
    neptune.close.assert_called_once()
    assert health_check.check_health() is False
