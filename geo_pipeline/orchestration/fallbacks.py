"""
Deterministic placeholder payloads for stages that could not be generated.

Built only from the product name and keywords, so they never carry claims
that would trip the fabrication guard.
"""

import re
from typing import Any, Callable, Dict, List

from ..models import (
    CaseStudiesPayload,
    CaseStudy,
    ChaptersPayload,
    ConfidenceLevel,
    DescriptionPayload,
    FaqItem,
    FaqPayload,
    GenerationRequest,
    HashtagsPayload,
    KeywordsPayload,
    StageId,
    StepByStepPayload,
    UniqueSellingPoint,
    UspPayload,
)


def _brand(product_name: str) -> str:
    return product_name.split()[0] if product_name.split() else product_name


def _hashtag(text: str) -> str:
    cleaned = re.sub(r"[^\w]", "", text)
    return f"#{cleaned}" if cleaned else ""


def _description(request: GenerationRequest) -> DescriptionPayload:
    product = request.product_name
    features = ", ".join(request.keywords[:3])
    if request.language == "ko":
        return DescriptionPayload(
            preview=f"{product}의 주요 기능을 만나보세요!",
            full=f"{product}의 주요 기능과 특징을 자세히 알아보세요. "
                 f"{features} 등 다양한 기능을 확인할 수 있습니다.",
        )
    return DescriptionPayload(
        preview=f"Meet the key features of {product}.",
        full=f"Take a closer look at the main features of {product}. "
             f"Explore {features} and more.",
    )


def _usps(request: GenerationRequest) -> UspPayload:
    product = request.product_name
    focus = request.keywords[0]
    if request.language == "ko":
        usp = UniqueSellingPoint(
            feature=f"{product} {focus}",
            differentiation=f"{focus} 중심으로 설계되었습니다",
            user_benefit=f"{focus} 기능을 일상에서 활용할 수 있습니다",
            confidence=ConfidenceLevel.LOW,
        )
    else:
        usp = UniqueSellingPoint(
            feature=f"{product} {focus}",
            differentiation=f"Designed for {focus}",
            user_benefit=f"Built to support {focus} in everyday use",
            confidence=ConfidenceLevel.LOW,
        )
    return UspPayload(usps=[usp])


def _chapters(request: GenerationRequest) -> ChaptersPayload:
    return ChaptersPayload(timestamps="0:00 인트로" if request.language == "ko" else "0:00 Intro")


def _faq(request: GenerationRequest) -> FaqPayload:
    product = request.product_name
    faqs: List[FaqItem] = []
    for keyword in request.keywords[:3]:
        if request.language == "ko":
            faqs.append(FaqItem(
                question=f"{product}의 {keyword} 기능은 무엇인가요?",
                answer=f"{product}는 {keyword}을(를) 지원하도록 설계되었습니다. "
                       f"자세한 사양은 공식 제품 페이지에서 확인하세요.",
            ))
        else:
            faqs.append(FaqItem(
                question=f"What does {keyword} do on {product}?",
                answer=f"{product} is designed to support {keyword}. "
                       f"See the official product page for full specifications.",
            ))
    return FaqPayload(faqs=faqs)


def _case_studies(request: GenerationRequest) -> CaseStudiesPayload:
    product = request.product_name
    focus = request.keywords[0]
    if request.language == "ko":
        study = CaseStudy(
            title=f"{product} 일상 활용",
            scenario=f"{focus} 기능을 처음 사용하는 크리에이터",
            solution=f"{product}는 {focus}을(를) 위해 설계되었습니다.",
        )
    else:
        study = CaseStudy(
            title=f"Everyday use of {product}",
            scenario=f"A content creator trying {focus} for the first time",
            solution=f"{product} is designed for {focus}.",
        )
    return CaseStudiesPayload(case_studies=[study])


def _keywords(request: GenerationRequest) -> KeywordsPayload:
    product_terms = [request.product_name]
    brand = _brand(request.product_name)
    if brand and brand != request.product_name:
        product_terms.append(brand)
    return KeywordsPayload(product=product_terms, generic=list(request.keywords), density_score=50)


def _hashtags(request: GenerationRequest) -> HashtagsPayload:
    brand_tags = [t for t in [_hashtag(_brand(request.product_name))] if t]
    product_tags = [t for t in [_hashtag(request.product_name)] if t]
    feature_tags = [t for t in (_hashtag(k) for k in request.keywords[:3]) if t]

    hashtags: List[str] = []
    for tag in product_tags + feature_tags + brand_tags:
        if tag not in hashtags:
            hashtags.append(tag)
    return HashtagsPayload(
        hashtags=hashtags,
        categories={"brand": brand_tags, "product": product_tags, "feature": feature_tags},
    )


def _step_by_step(request: GenerationRequest) -> StepByStepPayload:
    if request.language == "ko":
        return StepByStepPayload(steps=[f"{request.product_name}의 주요 기능을 살펴보세요"])
    return StepByStepPayload(steps=[f"Explore the main features of {request.product_name}"])


_BUILDERS: Dict[StageId, Callable[[GenerationRequest], Any]] = {
    StageId.DESCRIPTION: _description,
    StageId.USP_EXTRACTION: _usps,
    StageId.CHAPTERS: _chapters,
    StageId.FAQ: _faq,
    StageId.CASE_STUDIES: _case_studies,
    StageId.KEYWORDS: _keywords,
    StageId.HASHTAGS: _hashtags,
    StageId.STEP_BY_STEP: _step_by_step,
}


def build_fallback(stage: StageId, request: GenerationRequest) -> Dict[str, Any]:
    """Placeholder payload for ``stage``, shaped like its real payload."""
    try:
        builder = _BUILDERS[stage]
    except KeyError:
        raise ValueError(f"No fallback for stage {stage.value}") from None
    return builder(request).model_dump(mode="json")
