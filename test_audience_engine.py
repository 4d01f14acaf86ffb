"""
Tests for the AudienceEngine facade: audience building, campaigns, caching and configuration
"""

import json
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timezone

import pandas as pd
import pytest
from pydantic import ValidationError

from audience_engine import AudienceEngine, Campaign
from audience_engine.config import AudienceEngineConfig, ConfigManager
from audience_engine.exceptions import (
    AudienceEngineError,
    ConfigurationError,
    GatePlacementError,
    RuleValidationError,
    UnknownFieldError,
)

AS_OF = date(2025, 6, 30)

CUSTOMERS = [
    {'name': 'Ann Lee', 'email': 'ann@example.com', 'phone': '555-0101', 'totalSpend': 600,
     'visitCount': 2, 'lastOrderDate': '2025-06-01T09:30:00.000Z', 'createdAt': '2024-01-15T00:00:00.000Z'},
    {'name': 'Bo Chen', 'email': 'bo@test.io', 'phone': '555-0102', 'totalSpend': 100,
     'visitCount': 7, 'lastOrderDate': None, 'createdAt': '2025-05-20T00:00:00.000Z'},
    {'name': 'Cy Diaz', 'email': 'cy@example.com', 'phone': '555-0103', 'totalSpend': 1500,
     'visitCount': 9, 'lastOrderDate': '2024-11-02T00:00:00.000Z', 'createdAt': '2023-08-01T00:00:00.000Z'},
]

HIGH_VALUE_QUERY = [
    {'field': 'totalSpend', 'operator': '>', 'value': '500', 'logicGate': 'AND'},
    {'field': 'visitCount', 'operator': '<=', 'value': '3'},
]


@pytest.fixture
def engine():
    return AudienceEngine(AudienceEngineConfig(log_level="DEBUG"))


def test_build_audience(engine):
    result = engine.build_audience(HIGH_VALUE_QUERY, CUSTOMERS, as_of=AS_OF)

    assert result.matched_count == 1
    assert result.total_count == 3
    assert [c['name'] for c in result.customers] == ['Ann Lee']
    assert result.summary == "totalSpend > 500 AND visitCount <= 3"


def test_build_audience_blocks_on_compile_errors(engine):
    class ExplodingSnapshot:
        def __iter__(self):
            raise AssertionError("customers must not be read when compilation fails")

    with pytest.raises(UnknownFieldError):
        engine.build_audience([{'field': 'unknownField', 'operator': '=', 'value': 'x'}],
                              ExplodingSnapshot(), as_of=AS_OF)


def test_summarize(engine):
    assert engine.summarize(HIGH_VALUE_QUERY) == "totalSpend > 500 AND visitCount <= 3"
    assert engine.summarize([]) == "All customers"


def test_compile_cache(engine):
    first = engine.compile(HIGH_VALUE_QUERY, as_of=AS_OF)
    equivalent = [
        {'field': 'totalSpend', 'operator': 'gt', 'value': ' 500 ', 'logicGate': 'and'},
        {'field': 'visitCount', 'operator': 'lte', 'value': '3', 'logicGate': 'OR'},
    ]
    assert engine.compile(equivalent, as_of=AS_OF) is first, "Canonically equal queries share an expression"
    assert engine.compile(HIGH_VALUE_QUERY, as_of=date(2025, 7, 1)) is not first

    engine.clear_cache()
    assert engine.compile(HIGH_VALUE_QUERY, as_of=AS_OF) is not first


def test_cache_is_bounded():
    engine = AudienceEngine(AudienceEngineConfig(cache_size=2))
    queries = [[{'field': 'visitCount', 'operator': '>', 'value': str(n)}] for n in range(3)]

    first = engine.compile(queries[0], as_of=AS_OF)
    engine.compile(queries[1], as_of=AS_OF)
    engine.compile(queries[2], as_of=AS_OF)

    assert engine.compile(queries[0], as_of=AS_OF) is not first, "Oldest entry should have been evicted"


def test_caching_disabled():
    engine = AudienceEngine(AudienceEngineConfig(enable_caching=False))
    assert engine.compile(HIGH_VALUE_QUERY, as_of=AS_OF) is not engine.compile(HIGH_VALUE_QUERY, as_of=AS_OF)


def test_create_campaign(engine):
    created = datetime(2025, 6, 1, tzinfo=timezone.utc)
    query = HIGH_VALUE_QUERY[:1] + [dict(HIGH_VALUE_QUERY[1], logicGate='OR')]
    campaign = engine.create_campaign(" Summer Sale ", query, created_at=created)

    assert campaign.name == "Summer Sale"
    assert campaign.created_at == created
    assert campaign.summary == "totalSpend > 500 AND visitCount <= 3"
    assert campaign.audience_query[-1].logic_gate is None, "Trailing gate is stripped before storing"
    assert campaign.to_document() == {
        'name': "Summer Sale",
        'audienceQuery': HIGH_VALUE_QUERY,
        'createdAt': created,
        'summary': "totalSpend > 500 AND visitCount <= 3",
    }


def test_create_campaign_rejects_invalid_input(engine):
    with pytest.raises(GatePlacementError):
        engine.create_campaign("No gates", [
            {'field': 'totalSpend', 'operator': '>', 'value': '500'},
            {'field': 'visitCount', 'operator': '<=', 'value': '3'},
        ])

    with pytest.raises(AudienceEngineError):
        engine.create_campaign("   ", HIGH_VALUE_QUERY)


def test_campaign_is_immutable(engine):
    campaign = engine.create_campaign("Frozen", HIGH_VALUE_QUERY)

    with pytest.raises(ValueError):
        campaign.name = "Changed"

    renamed = campaign.with_summary("Custom text")
    assert renamed is not campaign
    assert campaign.summary == "totalSpend > 500 AND visitCount <= 3"


def test_load_and_compute_campaign_audience(engine):
    document = {
        '_id': '65f0c2d9e4b0a1b2c3d4e5f6',
        'name': 'Re-engagement',
        'audienceQuery': [
            {'field': 'lastOrderDate', 'operator': '<', 'value': '90 days ago', 'logicGate': 'OR'},
            {'field': 'visitCount', 'operator': '>=', 'value': '7', 'logicGate': 'AND'},
        ],
        'createdAt': '2025-06-01T00:00:00.000Z',
    }

    campaign = engine.load_campaign(document)
    assert isinstance(campaign, Campaign)
    assert campaign.summary == "lastOrderDate < 90 days ago OR visitCount >= 7"
    assert campaign.created_at == datetime(2025, 6, 1, tzinfo=timezone.utc)

    first = engine.compute_audience(campaign, CUSTOMERS, as_of=AS_OF)
    second = engine.compute_audience(campaign, CUSTOMERS, as_of=AS_OF)
    assert [c['name'] for c in first.customers] == ['Bo Chen', 'Cy Diaz']
    assert first == second


def test_load_campaign_with_malformed_query(engine):
    with pytest.raises(RuleValidationError):
        engine.load_campaign({'name': 'Broken', 'audienceQuery': [{'field': 'totalSpend', 'operator': '>'}]})


def test_check(engine):
    report = engine.check([{'field': 'unknownField', 'operator': '=', 'value': 'x'}], as_of=AS_OF)
    assert report['valid'] is False
    assert report['errors'][0]['code'] == 'UnknownField'


def test_filter_dataframe(engine):
    frame = pd.DataFrame(CUSTOMERS)
    result = engine.filter_dataframe([{'field': 'email', 'operator': 'contains', 'value': 'example'}],
                                     frame, as_of=AS_OF)
    assert result['name'].tolist() == ['Ann Lee', 'Cy Diaz']


def test_lenient_gates_from_config():
    engine = AudienceEngine(AudienceEngineConfig(strict_gates=False))
    result = engine.build_audience([
        {'field': 'totalSpend', 'operator': '>', 'value': '500'},
        {'field': 'visitCount', 'operator': '<=', 'value': '3'},
    ], CUSTOMERS, as_of=AS_OF)

    assert result.summary == "totalSpend > 500 AND visitCount <= 3"
    assert result.matched_count == 1


def test_config_manager_file_and_environment(tmp_path, monkeypatch):
    config_file = tmp_path / "audience_engine_config.json"

    monkeypatch.setenv("AUDIENCE_ENGINE_CACHE_SIZE", "12")
    monkeypatch.setenv("AUDIENCE_ENGINE_STRICT_GATES", "false")
    manager = ConfigManager(str(config_file))
    assert manager.get_config().cache_size == 12
    assert manager.get_config().strict_gates is False

    manager.update_config(empty_summary_text="Everyone")
    manager.save_config()
    saved = json.loads(config_file.read_text(encoding='utf-8'))
    assert saved['empty_summary_text'] == "Everyone"

    reloaded = ConfigManager(str(config_file))
    assert reloaded.get_config().empty_summary_text == "Everyone"

    reloaded.reset_to_defaults()
    assert reloaded.get_config() == AudienceEngineConfig()


def test_config_validation(tmp_path):
    manager = ConfigManager(str(tmp_path / "missing.json"))

    with pytest.raises(ConfigurationError):
        manager.update_config(no_such_setting=True)
    with pytest.raises(ConfigurationError):
        manager.update_config(cache_size="many")

    with pytest.raises(ConfigurationError):
        manager.update_config(cache_size=0)

    manager.update_config(log_level="LOUD")
    report = manager.validate_config()
    assert report['valid'] is False
    assert len(report['errors']) == 1


def test_broken_config_file_falls_back_to_defaults(tmp_path):
    config_file = tmp_path / "audience_engine_config.json"
    config_file.write_text("{not json", encoding='utf-8')

    assert ConfigManager(str(config_file)).get_config() == AudienceEngineConfig()


def test_cache_size_must_be_positive():
    with pytest.raises(ValidationError):
        AudienceEngineConfig(cache_size=0)

    engine = AudienceEngine(AudienceEngineConfig(cache_size=1))
    first = engine.compile(HIGH_VALUE_QUERY, as_of=AS_OF)
    engine.compile([{'field': 'visitCount', 'operator': '>', 'value': '1'}], as_of=AS_OF)
    assert engine.compile(HIGH_VALUE_QUERY, as_of=AS_OF) is not first


def test_cache_is_safe_across_threads():
    engine = AudienceEngine(AudienceEngineConfig(cache_size=3))
    queries = [[{'field': 'visitCount', 'operator': '>', 'value': str(n)}] for n in range(10)]

    def compile_query(n):
        return engine.compile(queries[n % 10], as_of=AS_OF).summary

    with ThreadPoolExecutor(max_workers=8) as pool:
        summaries = list(pool.map(compile_query, range(400)))

    assert summaries == [f"visitCount > {n % 10}" for n in range(400)]
    assert len(engine._expression_cache) <= 3


def test_load_campaign_accepts_snake_case_query(engine):
    campaign = engine.load_campaign({'name': 'Big spenders', 'audience_query': HIGH_VALUE_QUERY})

    assert len(campaign.audience_query) == 2
    assert campaign.summary == "totalSpend > 500 AND visitCount <= 3"

    result = engine.compute_audience(campaign, CUSTOMERS, as_of=AS_OF)
    assert [c['name'] for c in result.customers] == ['Ann Lee']
