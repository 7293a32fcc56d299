"""Feature runtime utilities package."""

from .pattern_matcher import (
    PatternMatcher,
    PatternMatcherError,
    MatchContext,
    SpecificityWeights,
    analyze_pattern,
    pattern_source,
    validate_pattern,
    compute_specificity,
    match_and_capture,
)

__all__ = [
    'PatternMatcher',
    'PatternMatcherError',
    'MatchContext',
    'SpecificityWeights',
    'analyze_pattern',
    'pattern_source',
    'validate_pattern',
    'compute_specificity',
    'match_and_capture',
]
