"""Tests for settings and placeholder payloads."""

import pytest
from pydantic import ValidationError

from geo_pipeline.config.settings import RetryPolicy, Settings
from geo_pipeline.models import GenerationRequest, StageId
from geo_pipeline.orchestration.fallbacks import build_fallback
from geo_pipeline.orchestration.stages import CONTENT_STAGES, DEFAULT_STAGE_SPECS
from geo_pipeline.quality.fabrication import check_for_fabrications


class TestSettings:

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.LLM_PROVIDER == "disabled"
        assert settings.CACHE_TTL_SECONDS == 1800
        assert settings.FAST_CACHE_MAX_ENTRIES == 50
        assert settings.CONFIDENCE_POLICY == "graded"
        assert settings.STAGE_FALLBACK_ENABLED is True
        assert settings.retry_policy() == RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=10.0, jitter=0.5)

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("RETRY_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("DURABLE_CACHE_BACKEND", "sql")
        monkeypatch.setenv("CONFIDENCE_POLICY", "primary_content")
        settings = Settings(_env_file=None)
        assert settings.retry_policy().max_attempts == 5
        assert settings.DURABLE_CACHE_BACKEND == "sql"
        assert settings.CONFIDENCE_POLICY == "primary_content"

    @pytest.mark.parametrize("field,value", [
        ("RETRY_MAX_ATTEMPTS", 0),
        ("PROVIDER_TIMEOUT_SEC", 0),
        ("DURABLE_CACHE_BACKEND", "memcached"),
        ("CONFIDENCE_POLICY", "optimistic"),
    ])
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: value})

    def test_retry_policy_to_dict(self):
        assert RetryPolicy().to_dict() == {"max_attempts": 3, "base_delay": 1.0, "max_delay": 10.0, "jitter": 0.5}


class TestRequest:

    def test_normalization(self):
        request = GenerationRequest(product_name="  Galaxy ", keywords=[" camera ", "", "  "], language="EN")
        assert request.product_name == "Galaxy"
        assert request.keywords == ["camera"]
        assert request.language == "en"

    def test_unknown_language(self):
        with pytest.raises(ValidationError):
            GenerationRequest(product_name="Galaxy", language="fr")


class TestFallbacks:

    @pytest.mark.parametrize("language", ["ko", "en"])
    def test_every_content_stage_has_a_clean_fallback(self, language):
        request = GenerationRequest(product_name="Galaxy S25 Ultra", keywords=["AI camera", "S Pen"],
                                    language=language)
        specs = {spec.stage: spec for spec in DEFAULT_STAGE_SPECS}
        for stage in CONTENT_STAGES:
            payload = build_fallback(stage, request)
            # shaped like the real payload
            assert specs[stage].parse(payload) == payload
            for text in _strings(payload):
                assert not check_for_fabrications(text).has_fabrication

    def test_hashtags_are_derived_from_names(self):
        request = GenerationRequest(product_name="Galaxy S25", keywords=["AI camera"])
        payload = build_fallback(StageId.HASHTAGS, request)
        assert payload["hashtags"] == ["#GalaxyS25", "#AIcamera", "#Galaxy"]

    def test_no_fallback_for_local_stage(self):
        request = GenerationRequest(product_name="Galaxy", keywords=["camera"])
        with pytest.raises(ValueError):
            build_fallback(StageId.GROUNDING_AGGREGATION, request)


def _strings(value):
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _strings(item)
    elif isinstance(value, list):
        for item in value:
            yield from _strings(item)
