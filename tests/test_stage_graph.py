"""Tests for the stage registry and execution grouping."""

import pytest

from geo_pipeline.exceptions import NonTransientProviderError, StageGraphError
from geo_pipeline.models import DescriptionPayload, StageId
from geo_pipeline.orchestration.stages import (
    DEFAULT_STAGE_SPECS,
    StageSpec,
    execution_groups,
    validate_stage_graph,
)


def _ids(groups):
    return [[spec.stage for spec in group] for group in groups]


class TestExecutionGroups:

    def test_default_groups(self):
        assert _ids(execution_groups(DEFAULT_STAGE_SPECS)) == [
            [StageId.DESCRIPTION],
            [StageId.USP_EXTRACTION, StageId.KEYWORDS],
            [StageId.CHAPTERS, StageId.FAQ, StageId.CASE_STUDIES, StageId.HASHTAGS],
            [StageId.STEP_BY_STEP],
            [StageId.GROUNDING_AGGREGATION],
        ]

    def test_every_dependency_is_in_an_earlier_group(self):
        seen = set()
        for group in execution_groups(DEFAULT_STAGE_SPECS):
            for spec in group:
                assert set(spec.depends_on) <= seen
            seen.update(spec.stage for spec in group)

    def test_cycle_rejected(self):
        specs = [
            StageSpec(StageId.DESCRIPTION, (StageId.FAQ,)),
            StageSpec(StageId.FAQ, (StageId.DESCRIPTION,)),
        ]
        with pytest.raises(StageGraphError, match="cycle"):
            validate_stage_graph(specs)

    def test_unknown_dependency_rejected(self):
        with pytest.raises(StageGraphError, match="unknown stage"):
            execution_groups([StageSpec(StageId.FAQ, (StageId.USP_EXTRACTION,))])

    def test_duplicate_rejected(self):
        with pytest.raises(StageGraphError, match="registered twice"):
            execution_groups([StageSpec(StageId.FAQ), StageSpec(StageId.FAQ)])


class TestStageSpec:

    def test_parse_valid_payload(self):
        spec = StageSpec(StageId.DESCRIPTION, payload_model=DescriptionPayload)
        assert spec.calls_provider
        assert spec.parse({"preview": "p", "full": "f"}) == {"preview": "p", "full": "f"}

    def test_parse_malformed_payload_is_non_transient(self):
        spec = StageSpec(StageId.DESCRIPTION, payload_model=DescriptionPayload)
        with pytest.raises(NonTransientProviderError, match="Malformed description payload"):
            spec.parse({"preview": "only"})

    def test_local_stage_takes_no_payload(self):
        spec = StageSpec(StageId.GROUNDING_AGGREGATION)
        assert not spec.calls_provider
        with pytest.raises(NonTransientProviderError):
            spec.parse({})
