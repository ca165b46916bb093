"""
Stage registry.

Each stage declares the stages whose payloads it reads. Execution groups are
derived from those declarations by topological levelling: every stage in a
group depends only on stages in earlier groups.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import NonTransientProviderError, StageGraphError
from ..models import (
    CaseStudiesPayload,
    ChaptersPayload,
    DescriptionPayload,
    FaqPayload,
    HashtagsPayload,
    KeywordsPayload,
    StageId,
    StepByStepPayload,
    UspPayload,
)


@dataclass(frozen=True)
class StageSpec:
    stage: StageId
    depends_on: Tuple[StageId, ...] = ()
    payload_model: Optional[Type[BaseModel]] = None  # None: computed locally, no provider call
    grounded: bool = False  # prompt asks the provider to search and cite

    @property
    def calls_provider(self) -> bool:
        return self.payload_model is not None

    def parse(self, data: Any) -> Dict[str, Any]:
        """Validate a provider response into this stage's payload shape."""
        if self.payload_model is None:
            raise NonTransientProviderError(f"Stage {self.stage.value} takes no provider payload",
                                            stage=self.stage.value)
        try:
            return self.payload_model.model_validate(data).model_dump(mode="json")
        except PydanticValidationError as e:
            raise NonTransientProviderError(
                f"Malformed {self.stage.value} payload: {e.error_count()} validation error(s)",
                stage=self.stage.value,
            ) from e


CONTENT_STAGES: Tuple[StageId, ...] = (
    StageId.DESCRIPTION,
    StageId.USP_EXTRACTION,
    StageId.KEYWORDS,
    StageId.CHAPTERS,
    StageId.FAQ,
    StageId.CASE_STUDIES,
    StageId.HASHTAGS,
    StageId.STEP_BY_STEP,
)

DEFAULT_STAGE_SPECS: Tuple[StageSpec, ...] = (
    StageSpec(StageId.DESCRIPTION, (), DescriptionPayload, grounded=True),
    StageSpec(StageId.USP_EXTRACTION, (StageId.DESCRIPTION,), UspPayload, grounded=True),
    StageSpec(StageId.KEYWORDS, (StageId.DESCRIPTION,), KeywordsPayload),
    StageSpec(StageId.CHAPTERS, (StageId.USP_EXTRACTION,), ChaptersPayload),
    StageSpec(StageId.FAQ, (StageId.USP_EXTRACTION,), FaqPayload, grounded=True),
    StageSpec(StageId.CASE_STUDIES, (StageId.USP_EXTRACTION,), CaseStudiesPayload, grounded=True),
    StageSpec(StageId.HASHTAGS, (StageId.USP_EXTRACTION, StageId.KEYWORDS), HashtagsPayload),
    StageSpec(StageId.STEP_BY_STEP, (StageId.FAQ,), StepByStepPayload),
    StageSpec(StageId.GROUNDING_AGGREGATION, CONTENT_STAGES),
)


def execution_groups(specs: Iterable[StageSpec]) -> List[List[StageSpec]]:
    """
    Kahn's algorithm, one level at a time.

    Raises:
        StageGraphError: duplicate stage, unknown dependency, or a cycle
    """
    specs = list(specs)
    by_id: Dict[StageId, StageSpec] = {}
    for spec in specs:
        if spec.stage in by_id:
            raise StageGraphError(f"Stage {spec.stage.value} registered twice")
        by_id[spec.stage] = spec

    for spec in specs:
        for dep in spec.depends_on:
            if dep not in by_id:
                raise StageGraphError(f"Stage {spec.stage.value} depends on unknown stage {dep.value}")

    remaining = {spec.stage: set(spec.depends_on) for spec in specs}
    groups: List[List[StageSpec]] = []

    while remaining:
        ready = [spec for spec in specs if spec.stage in remaining and not remaining[spec.stage]]
        if not ready:
            cycle = ", ".join(sorted(s.value for s in remaining))
            raise StageGraphError(f"Stage dependencies form a cycle among: {cycle}")
        groups.append(ready)
        for spec in ready:
            del remaining[spec.stage]
        for deps in remaining.values():
            deps.difference_update(spec.stage for spec in ready)

    return groups


def validate_stage_graph(specs: Sequence[StageSpec]) -> None:
    """Reject a registry that cannot be scheduled. Called at startup."""
    execution_groups(specs)
