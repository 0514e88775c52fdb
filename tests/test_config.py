import pytest

from deepmem.utils.config import RetrieverConfig, UpdaterConfig, load_config


def test_updater_defaults():
    config = UpdaterConfig()

    assert config.min_semantic_score == 0.6
    assert config.importance_threshold == 0.5
    assert config.max_memories_per_update == 20
    assert config.dedupe_score == 0.92
    assert config.related_top_k == 5
    assert config.dedupe_scope == 'namespace'


def test_out_of_range_updater_values_fall_back_to_defaults():
    config = UpdaterConfig(min_semantic_score=2.0,
                           importance_threshold=float('nan'),
                           max_memories_per_update=0,
                           dedupe_score=-1,
                           related_top_k=-3,
                           dedupe_scope='galaxy')

    assert config.min_semantic_score == 0.6
    assert config.importance_threshold == 0.5
    assert config.max_memories_per_update == 20
    assert config.dedupe_score == 0.92
    assert config.related_top_k == 5
    assert config.dedupe_scope == 'namespace'


def test_updater_config_is_immutable():
    config = UpdaterConfig()

    with pytest.raises(AttributeError):
        config.dedupe_score = 0.5


def test_retriever_weights_are_normalized():
    config = RetrieverConfig(semantic_weight=3, relation_weight=1)

    assert config.semantic_weight == pytest.approx(0.75)
    assert config.relation_weight == pytest.approx(0.25)


def test_retriever_zero_weights_use_defaults():
    config = RetrieverConfig(semantic_weight=0, relation_weight=0)

    assert config.semantic_weight == pytest.approx(0.6)
    assert config.relation_weight == pytest.approx(0.4)


def test_load_config_reads_environment(monkeypatch):
    monkeypatch.setenv('DEDUPE_SCORE', '0.8')
    monkeypatch.setenv('MAX_MEMORIES_PER_UPDATE', 'lots')
    monkeypatch.setenv('SENSITIVE_FILTER_ENABLED', 'false')
    monkeypatch.setenv('UPSTREAM_TIMEOUT_SECONDS', '3')
    monkeypatch.setenv('DEFAULT_NAMESPACE', 'team-a')

    config = load_config()

    assert config.updater.dedupe_score == 0.8
    assert config.updater.max_memories_per_update == 20
    assert config.updater.sensitive_filter_enabled is False
    assert config.sensitive.enabled is False
    assert config.bedrock_embed.timeout == 3.0
    assert config.neptune.timeout == 3.0
    assert config.opensearch.timeout == 3.0
    assert config.default_namespace == 'team-a'
