"""
Anti-fabrication guardrails.

Generated copy must not carry claims nobody can back up: invented statistics,
"studies show" style appeals, fabricated endorsements, made-up companies.
Detection and rewriting are driven by one rule table so the patterns can be
tested and extended without touching the guard's control flow.
"""

import functools
import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

import yaml

from geo_pipeline.models import ConfidenceLevel, FabricationCheck, SanitizeResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FabricationRule:
    """One forbidden claim shape and its safe rewrite."""
    name: str
    category: str
    pattern: Pattern[str]
    replacement: str
    suggestion: str

    def rewrite(self, text: str, modifications: List[str]) -> str:
        def _sub(match: "re.Match[str]") -> str:
            modifications.append(f'Replaced "{match.group(0)}" with safe language ({self.category})')
            return match.expand(self.replacement)

        return self.pattern.sub(_sub, text)


def _rule(name: str, category: str, pattern: str, replacement: str, suggestion: str,
          case_sensitive: bool = False) -> FabricationRule:
    flags = 0 if case_sensitive else re.IGNORECASE
    return FabricationRule(name, category, re.compile(pattern, flags), replacement, suggestion)


# Order matters: rewrites run top to bottom, and no replacement text may
# re-match any pattern (keeps sanitize idempotent).
FABRICATION_RULES: Tuple[FabricationRule, ...] = (
    _rule(
        "percentage_improvement", "unverified_statistic",
        r"\b\d+(?:\.\d+)?\s?%\s+(?:faster|better|improved|increase|improvement)\b",
        "significantly enhanced",
        'Replace "{match}" with "Designed for enhanced performance" or "Optimized for improved efficiency"',
    ),
    _rule(
        "studies_show", "fabricated_research",
        r"\bstudies\s+show(?:\s+that)?\b",
        "Designed to provide",
        'Replace "{match}" with "Built to support" or "Engineered to deliver"',
    ),
    _rule(
        "research_indicates", "fabricated_research",
        r"\bresearch\s+indicates(?:\s+that)?\b",
        "Built to support",
        'Replace "{match}" with "Built to support" or "Engineered to deliver"',
    ),
    _rule(
        "proven_to", "unverified_claim",
        r"\bproven\s+to\b",
        "engineered to",
        'Replace "{match}" with "Designed for" or "Created for users who"',
    ),
    _rule(
        "scientifically_verified", "unverified_claim",
        r"\bscientifically\s+verified\b",
        "carefully designed",
        'Replace "{match}" with "Designed for" or "Created for users who"',
    ),
    _rule(
        "experts_agree", "fabricated_endorsement",
        r"\bexperts\s+agree(?:\s+that)?\b",
        "Enables professionals to achieve",
        'Replace "{match}" with "Enables professionals to" or "Crafted for"',
    ),
    _rule(
        "users_report_percentage", "unverified_statistic",
        r"\busers\s+report\s+\d+(?:\.\d+)?\s?%",
        "users experience potential improvement",
        'Replace "{match}" with "Potential improvement in" or "Optimized for"',
    ),
    _rule(
        "invented_company", "invented_entity",
        r"\b([Aa]t|[Ff]or|[Ww]ith)\s+(?:[A-Z][a-z]+\s+){0,3}[A-Z][a-z]+\s+(?:Inc|LLC|Corp|Company|Studios|Productions)\b",
        r"\1 a professional team",
        'Replace "{match}" with a generic role such as "content creator" or "professional photographer"',
        case_sensitive=True,
    ),
)

# Not fabrications, but unearned at the strictest confidence level
VAGUE_SUPERLATIVES: Tuple[Pattern[str], ...] = (
    re.compile(r"\bbest\s+in\s+class\b", re.IGNORECASE),
    re.compile(r"\bindustry[\s-]leading\b", re.IGNORECASE),
    re.compile(r"\bworld[\s-]?class\b", re.IGNORECASE),
    re.compile(r"\brevolutionary\b", re.IGNORECASE),
    re.compile(r"\bgame[\s-]?changing\b", re.IGNORECASE),
)

SAFE_PHRASES: Tuple[str, ...] = (
    "Designed for",
    "Enables professionals to",
    "Potential improvement in",
    "Built to support",
    "Optimized for",
    "Created for users who",
    "Engineered to deliver",
    "Crafted for",
)

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")


def _sentences(text: str) -> Iterable[str]:
    return (s for s in _SENTENCE_SPLIT.split(text) if s and s.strip())


def check_for_fabrications(content: Optional[str],
                           rules: Sequence[FabricationRule] = FABRICATION_RULES) -> FabricationCheck:
    """
    Scan text for forbidden claim patterns.

    One violation is reported per offending sentence, naming every forbidden
    phrase found in it; one suggestion is produced per phrase.
    """
    if not content:
        return FabricationCheck()

    violations: List[str] = []
    suggestions: List[str] = []

    for sentence in _sentences(content):
        found: List[str] = []
        for rule in rules:
            for match in rule.pattern.finditer(sentence):
                phrase = match.group(0)
                found.append(phrase)
                suggestions.append(rule.suggestion.format(match=phrase))
        if found:
            joined = ", ".join(f'"{p}"' for p in found)
            violations.append(f"Forbidden pattern found: {joined}")

    return FabricationCheck(
        has_fabrication=bool(violations),
        violations=violations,
        suggestions=suggestions,
    )


def sanitize_content(content: Optional[str],
                     rules: Sequence[FabricationRule] = FABRICATION_RULES) -> SanitizeResult:
    """
    Rewrite every forbidden claim into safe language.

    Never raises. Empty or missing input gives an empty string with no
    modifications; text without matches comes back unchanged.
    """
    if not content:
        return SanitizeResult("", False, [])
    if not isinstance(content, str):
        content = str(content)

    modifications: List[str] = []
    sanitized = content
    for rule in rules:
        sanitized = rule.rewrite(sanitized, modifications)

    return SanitizeResult(sanitized, bool(modifications), modifications)


def has_vague_superlatives(content: Optional[str]) -> bool:
    if not content:
        return False
    return any(p.search(content) for p in VAGUE_SUPERLATIVES)


def passes_quality_gate(content: Optional[str],
                        required_confidence: ConfidenceLevel = ConfidenceLevel.MEDIUM,
                        rules: Sequence[FabricationRule] = FABRICATION_RULES) -> bool:
    """
    Fail-closed content gate.

    Any detected fabrication fails. At HIGH required confidence, vague
    superlatives ("world-class", "best in class") fail too.
    """
    if check_for_fabrications(content, rules).has_fabrication:
        return False

    if required_confidence == ConfidenceLevel.HIGH and has_vague_superlatives(content):
        return False

    return True


def validate_case_study(title: str, scenario: str, solution: str,
                        rules: Sequence[FabricationRule] = FABRICATION_RULES) -> Dict[str, object]:
    """
    Validate case study content. Case studies are the highest-risk section
    for invented customers and outcomes, so every field is checked.

    Returns:
        Dict with is_valid, issues, recommendations
    """
    issues: List[str] = []
    recommendations: List[str] = []

    for label, text in (("Title", title), ("Scenario", scenario), ("Solution", solution)):
        check = check_for_fabrications(text, rules)
        if check.has_fabrication:
            issues.extend(f"{label}: {v}" for v in check.violations)
            recommendations.extend(check.suggestions)

    return {
        "is_valid": not issues,
        "issues": issues,
        "recommendations": recommendations,
    }


def anti_fabrication_prompt(confidence: ConfidenceLevel) -> str:
    """Rule block a provider adapter prepends to every stage prompt."""
    base_rules = (
        "## ANTI-FABRICATION RULES (MANDATORY)\n"
        "1. NEVER invent percentages or statistics without evidence\n"
        '2. NEVER claim "studies show" or "experts agree" without sources\n'
        "3. NEVER create fake company names or testimonials\n"
        "4. NEVER use unverified performance claims"
    )

    if confidence == ConfidenceLevel.LOW:
        safe = "\n  ".join(f'- "{s}..."' for s in SAFE_PHRASES)
        return (
            f"{base_rules}\n\n"
            "## LOW CONFIDENCE MODE - STRICT REQUIREMENTS\n"
            f"- Use ONLY safe language patterns:\n  {safe}\n"
            "- DO NOT make specific claims about new product features\n"
            "- Focus on design intent rather than measured outcomes\n"
            "- Avoid comparative statements without evidence"
        )

    if confidence == ConfidenceLevel.MEDIUM:
        return (
            f"{base_rules}\n\n"
            "## MEDIUM CONFIDENCE MODE\n"
            "- Use hedging language for unverified claims\n"
            "- Reference source tier when making claims\n"
            '- Prefer "designed for" over "proven to"'
        )

    return (
        f"{base_rules}\n\n"
        "## HIGH CONFIDENCE MODE\n"
        "- Verified claims can use direct language\n"
        "- Include source citations where available\n"
        "- Maintain factual accuracy"
    )


def load_rules(path: str) -> Tuple[FabricationRule, ...]:
    """
    Load extra rules from a guardrails YAML file.

    Expected shape::

        rules:
          - name: guaranteed_results
            category: unverified_claim
            pattern: "guaranteed\\s+results"
            replacement: "designed for reliable results"
            suggestion: "Replace \\"{match}\\" with design intent"
            case_sensitive: false
    """
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    rules = []
    for entry in data.get("rules", []):
        rules.append(_rule(
            entry["name"],
            entry.get("category", "custom"),
            entry["pattern"],
            entry.get("replacement", "designed for"),
            entry.get("suggestion", 'Replace "{match}" with safe language'),
            case_sensitive=bool(entry.get("case_sensitive", False)),
        ))
    logger.info("Loaded %d guardrail rules from %s", len(rules), path)
    return tuple(rules)


@functools.lru_cache(maxsize=8)
def active_rules(guardrails_file: Optional[str] = None) -> Tuple[FabricationRule, ...]:
    """Built-in rules, followed by any rules from the guardrails file."""
    if not guardrails_file:
        return FABRICATION_RULES
    return FABRICATION_RULES + load_rules(guardrails_file)
