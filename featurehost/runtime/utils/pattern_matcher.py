"""Match pattern validation, specificity scoring and capture extraction.

Patterns are regular expressions (source strings or compiled ``re.Pattern``
objects) tested against the full location string with ``re.search``
semantics. When several features match the same location, the specificity
score decides which one runs first:

- each literal path segment adds ``segment_weight``;
- a required query string (an escaped ``\\?``) adds ``query_bonus``;
- each ``.*``/``.+`` wildcard subtracts ``wildcard_penalty`` and each other
  unbounded quantifier subtracts ``quantifier_penalty``;
- every literal character adds ``1 / length_divisor``.

Penalties only apply to the path portion of a pattern, so adding a query
constraint to a pattern always raises its score.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Optional, Pattern, Tuple, Union

from ..models.lifecycle import ValidationReport


PatternLike = Union[str, Pattern]

# Escapes that stand for a character class rather than a literal character
_CLASS_ESCAPES = set("dDwWsSbBAZ")

# Locations of different shapes; a feature pattern must fail to match at least one
_LOCATION_SHAPES = (
    "https://example.invalid/some/path?query=1#fragment",
    "http://localhost:8080/",
    "file:///tmp/index.html",
    "about:blank",
    "chrome-extension://abcdef/popup.html",
    "x",
)

_INLINE_FLAGS = re.compile(r"[aiLmsux]*(?:-[imsx]+)?([:)])")


class PatternMatcherError(Exception):
    """Raised when a pattern argument has an unusable type."""
    pass


@dataclass(frozen=True)
class SpecificityWeights:
    """Constants of the specificity heuristic."""
    segment_weight: float = 1.0
    query_bonus: float = 10.0
    wildcard_penalty: float = 2.0
    quantifier_penalty: float = 1.0
    length_divisor: float = 20.0
    wildcard_dominance_ratio: float = 4.0


@dataclass(frozen=True)
class MatchContext:
    """What a feature's ``init`` receives when its pattern matched."""
    url: str
    groups: Tuple[str, ...] = ()
    named: Dict[str, str] = field(default_factory=dict)
    matched: str = ""

    def __getitem__(self, index: int) -> str:
        return self.groups[index]

    def __len__(self) -> int:
        return len(self.groups)

    def __iter__(self):
        return iter(self.groups)


@dataclass
class PatternAnalysis:
    """Token counts extracted from a pattern source."""
    literal_segments: int = 0
    literal_chars: int = 0
    query_literal_chars: int = 0
    wildcards: int = 0
    quantifiers: int = 0
    separators: int = 0
    has_query: bool = False


def pattern_source(pattern: PatternLike) -> str:
    """Return the regular expression source of a pattern."""
    if isinstance(pattern, re.Pattern):
        return pattern.pattern
    if isinstance(pattern, str):
        return pattern
    raise PatternMatcherError(f"Pattern must be a string or compiled regex, got {type(pattern).__name__}")


def analyze_pattern(source: str) -> PatternAnalysis:
    """Walk a regex source once and count the tokens the score is built from."""
    analysis = PatternAnalysis()
    in_query = False
    segment_has_content = False
    segment_is_literal = True
    last_was_quantifiable = False

    def close_segment():
        nonlocal segment_has_content, segment_is_literal
        if not in_query and segment_has_content and segment_is_literal:
            analysis.literal_segments += 1
        segment_has_content = False
        segment_is_literal = True

    def add_literal(count: int = 1, content: bool = True):
        nonlocal segment_has_content
        if content:
            segment_has_content = True
        if in_query:
            analysis.query_literal_chars += count
        else:
            analysis.literal_chars += count

    def mark_non_literal():
        nonlocal segment_has_content, segment_is_literal
        segment_has_content = True
        segment_is_literal = False

    def penalize(kind: str):
        if in_query:
            return
        if kind == "wildcard":
            analysis.wildcards += 1
        else:
            analysis.quantifiers += 1

    i = 0
    length = len(source)
    while i < length:
        char = source[i]

        if char == "\\" and i + 1 < length:
            escaped = source[i + 1]
            i += 2
            if escaped == "/":
                close_segment()
                analysis.separators += 1
                add_literal(content=False)
            elif escaped == "?" and not in_query:
                close_segment()
                in_query = True
                analysis.has_query = True
                add_literal()
            elif escaped in _CLASS_ESCAPES or escaped.isdigit():
                mark_non_literal()
            else:
                add_literal()
            last_was_quantifiable = True
            continue

        if char == "[":
            # Skip the whole character class, including a leading ']' or '^]'
            j = i + 1
            if j < length and source[j] == "^":
                j += 1
            if j < length and source[j] == "]":
                j += 1
            while j < length and source[j] != "]":
                j += 2 if source[j] == "\\" else 1
            i = j + 1
            mark_non_literal()
            last_was_quantifiable = True
            continue

        if char == "(":
            if source.startswith("(?", i):
                # Skip extension prefixes: (?:  (?P<name>  (?=  (?!  (?<=  (?<!  (?i)  (?i:
                j = i + 2
                if source.startswith("P=", j) or source.startswith("#", j):
                    # Backreference or comment: the whole group carries no literal text
                    close = source.find(")", j)
                    i = close + 1 if close != -1 else length
                    if source.startswith("P=", j):
                        mark_non_literal()
                        last_was_quantifiable = True
                    continue
                flags = _INLINE_FLAGS.match(source, j)
                if flags is not None:
                    i = flags.end()
                    last_was_quantifiable = False
                    continue
                if source.startswith("P<", j):
                    j = source.find(">", j) + 1 or length
                elif source.startswith("<=", j) or source.startswith("<!", j):
                    j += 2
                elif j < length and source[j] in ":=!":
                    j += 1
                i = j
            else:
                i += 1
            last_was_quantifiable = False
            continue

        if char in ")|^$":
            if char == "|":
                mark_non_literal()
            i += 1
            last_was_quantifiable = char == ")"
            continue

        if char == ".":
            if i + 1 < length and source[i + 1] in "*+":
                penalize("wildcard")
                mark_non_literal()
                i += 2
                if i < length and source[i] in "?+":
                    i += 1
                last_was_quantifiable = False
                continue
            mark_non_literal()
            i += 1
            last_was_quantifiable = True
            continue

        if char in "*+":
            if last_was_quantifiable:
                penalize("quantifier")
                mark_non_literal()
            i += 1
            if i < length and source[i] in "?+":
                i += 1
            last_was_quantifiable = False
            continue

        if char == "?":
            # Optional element or lazy modifier: bounded, no penalty
            mark_non_literal()
            i += 1
            last_was_quantifiable = False
            continue

        if char == "{":
            close = source.find("}", i)
            body = source[i + 1:close] if close != -1 else ""
            if close != -1 and re.fullmatch(r"\d*,?\d*", body) and body:
                if body.endswith(","):
                    penalize("quantifier")
                mark_non_literal()
                i = close + 1
                if i < length and source[i] in "?+":
                    i += 1
                last_was_quantifiable = False
                continue
            add_literal()
            i += 1
            last_was_quantifiable = True
            continue

        if char == "/":
            close_segment()
            analysis.separators += 1
            add_literal(content=False)
            i += 1
            last_was_quantifiable = True
            continue

        add_literal()
        i += 1
        last_was_quantifiable = True

    close_segment()
    return analysis


class PatternMatcher:
    """Stateless pattern operations with a compile and score cache.

    The caches only memoize pure functions of the pattern source, so sharing
    one matcher between controllers is safe.
    """

    def __init__(self, weights: Optional[SpecificityWeights] = None, max_cache_size: int = 2048):
        self.weights = weights or SpecificityWeights()
        self.max_cache_size = max_cache_size
        self._compiled: Dict[str, Pattern] = {}
        self._scores: Dict[str, float] = {}

    def compile(self, pattern: PatternLike) -> Pattern:
        """Compile a pattern, reusing cached compilations.

        Raises:
            re.error: If the source is not a valid regular expression
            PatternMatcherError: If the pattern has an unusable type
        """
        if isinstance(pattern, re.Pattern):
            return pattern
        source = pattern_source(pattern)
        compiled = self._compiled.get(source)
        if compiled is None:
            compiled = re.compile(source)
            if len(self._compiled) >= self.max_cache_size:
                self._compiled.clear()
            self._compiled[source] = compiled
        return compiled

    def validate(self, pattern: Optional[PatternLike]) -> ValidationReport:
        """Check that a pattern is usable for feature matching.

        Never raises; problems are reported through the returned report.
        """
        report = ValidationReport()

        if pattern is None:
            report.add_error("Pattern is required")
            return report
        if not isinstance(pattern, (str, re.Pattern)):
            report.add_error(f"Pattern must be a string or compiled regex, got {type(pattern).__name__}")
            return report

        source = pattern_source(pattern)
        if not source.strip():
            report.add_error("Pattern must not be empty")
            return report

        try:
            compiled = self.compile(pattern)
        except re.error as e:
            report.add_error(f"Pattern '{source}' is not a valid regular expression: {e}")
            return report

        if all(compiled.search(location) is not None for location in _LOCATION_SHAPES):
            report.add_error(f"Pattern '{source}' matches every location")
            return report

        analysis = analyze_pattern(source)
        unbounded = analysis.wildcards + analysis.quantifiers
        literal_total = analysis.literal_chars + analysis.query_literal_chars
        if unbounded and literal_total < self.weights.wildcard_dominance_ratio * unbounded:
            report.add_warning(
                f"Pattern '{source}' is dominated by wildcards "
                f"({unbounded} unbounded tokens, {literal_total} literal characters); "
                f"consider a narrower pattern"
            )
        if analysis.separators == 0:
            report.add_warning(f"Pattern '{source}' contains no path separator")

        return report

    def compute_specificity(self, pattern: PatternLike, url: Optional[str] = None) -> float:
        """Score how specific a pattern is. Higher means more specific.

        Depends only on the pattern source; ``url`` is accepted so call sites
        can pass the location being ranked but does not change the result.
        """
        source = pattern_source(pattern)
        score = self._scores.get(source)
        if score is None:
            score = self._score(analyze_pattern(source))
            if len(self._scores) >= self.max_cache_size:
                self._scores.clear()
            self._scores[source] = score
        return score

    def _score(self, analysis: PatternAnalysis) -> float:
        w = self.weights
        score = analysis.literal_segments * w.segment_weight
        score -= analysis.wildcards * w.wildcard_penalty
        score -= analysis.quantifiers * w.quantifier_penalty
        score += analysis.literal_chars / w.length_divisor
        if analysis.has_query:
            score += w.query_bonus + analysis.query_literal_chars / w.length_divisor
        return score

    def match(self, pattern: PatternLike, url: object) -> Optional[re.Match]:
        """Search ``url`` with ``pattern``; malformed input never raises."""
        if not isinstance(url, str) or not url:
            return None
        try:
            compiled = self.compile(pattern)
        except (re.error, PatternMatcherError):
            return None
        return compiled.search(url)

    def match_and_capture(self, pattern: PatternLike, url: object) -> Optional[Tuple[str, ...]]:
        """Return the ordered capture groups, or ``None`` when there is no match.

        Optional groups that did not participate come back as empty strings.
        """
        match = self.match(pattern, url)
        if match is None:
            return None
        return tuple(group if group is not None else "" for group in match.groups())

    def match_context(self, pattern: PatternLike, url: object) -> Optional[MatchContext]:
        """Like :meth:`match_and_capture` but keeps named groups and matched text."""
        match = self.match(pattern, url)
        if match is None:
            return None
        return MatchContext(
            url=url,
            groups=tuple(group if group is not None else "" for group in match.groups()),
            named={key: value or "" for key, value in match.groupdict().items()},
            matched=match.group(0),
        )

    def clear_cache(self) -> None:
        self._compiled.clear()
        self._scores.clear()


def validate_pattern(pattern: Optional[PatternLike]) -> ValidationReport:
    """Validate a pattern with default weights."""
    return PatternMatcher().validate(pattern)


def compute_specificity(pattern: PatternLike, url: Optional[str] = None) -> float:
    """Score a pattern with default weights."""
    return PatternMatcher().compute_specificity(pattern, url)


def match_and_capture(pattern: PatternLike, url: object) -> Optional[Tuple[str, ...]]:
    """Match a pattern once without keeping a cache."""
    return PatternMatcher().match_and_capture(pattern, url)
