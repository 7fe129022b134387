"""
Boolean Search Parser

Supported operators:
- "exact phrase"     quoted segment is a single term
- title:keyword      filter on title (also body, author, subreddit, platform)
- NOT term / -term   exclude results containing term
- a OR b             the term after OR becomes optional (any-of)
- AND                default conjunction, accepted and ignored

Parentheses are tokenized but grouping is not evaluated; precedence is flat.
parse() never raises. validate() exists for user-facing feedback only.
"""
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

FILTER_FIELDS = ("title", "body", "author", "subreddit", "platform")

_FIELD_RE = re.compile(r"^(title|body|author|subreddit|platform):(.+)$", re.IGNORECASE)
_EMPTY_FIELD_RE = re.compile(r"\b(title|body|author|subreddit|platform):(\s|$)", re.IGNORECASE)
_LONE_OPERATOR_RE = re.compile(r"^\s*(AND|OR|NOT)\s*$", re.IGNORECASE)


@dataclass
class SearchTerm:
    term: str
    is_exact: bool = False

    def display(self) -> str:
        return f'"{self.term}"' if self.is_exact else self.term


@dataclass
class ParsedQuery:
    original: str = ""
    required: List[SearchTerm] = field(default_factory=list)
    optional: List[SearchTerm] = field(default_factory=list)
    excluded: List[SearchTerm] = field(default_factory=list)
    filters: Dict[str, List[str]] = field(default_factory=dict)
    explanation: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.required or self.optional or self.excluded or self.filters)


@dataclass
class MatchableContent:
    title: str
    body: Optional[str] = None
    author: Optional[str] = None
    subreddit: Optional[str] = None
    platform: Optional[str] = None


@dataclass
class QueryMatch:
    matches: bool
    matched_terms: List[str]
    reason: str


@dataclass
class ValidationResult:
    valid: bool
    error: Optional[str] = None


def tokenize(query: str) -> List[str]:
    """Split on whitespace, keeping quoted segments whole and dropping parentheses"""
    tokens: List[str] = []
    current = ""
    quote_char = None

    for char in query:
        if quote_char is None and char in ('"', "'"):
            quote_char = char
            current += char
            continue
        if quote_char is not None and char == quote_char:
            quote_char = None
            current += char
            continue
        if quote_char is None and (char.isspace() or char in "()"):
            if current.strip():
                tokens.append(current.strip())
            current = ""
            continue
        current += char

    if current.strip():
        tokens.append(current.strip())
    return tokens


def _strip_quotes(value: str) -> str:
    return re.sub(r"^[\"']|[\"']$", "", value)


def parse(query: Optional[str]) -> ParsedQuery:
    """Parse a boolean search expression"""
    query = query or ""
    parsed = ParsedQuery(original=query)

    if not query.strip():
        parsed.explanation = "Empty query matches all"
        return parsed

    next_optional = False
    next_excluded = False

    for token in tokenize(query):
        upper = token.upper()
        if upper == "OR":
            next_optional = True
            continue
        if upper == "NOT" or token == "-":
            next_excluded = True
            continue
        if upper == "AND":
            continue

        field_match = _FIELD_RE.match(token)
        if field_match:
            name = field_match.group(1).lower()
            parsed.filters.setdefault(name, []).append(_strip_quotes(field_match.group(2)))
            continue

        if token.startswith("-") and len(token) > 1:
            next_excluded = True
            token = token[1:]

        is_exact = len(token) >= 2 and token[0] == token[-1] and token[0] in ('"', "'")
        term = SearchTerm(term=token[1:-1] if is_exact else token, is_exact=is_exact)
        if not term.term:
            next_excluded = next_optional = False
            continue

        if next_excluded:
            parsed.excluded.append(term)
            next_excluded = False
        elif next_optional:
            parsed.optional.append(term)
            next_optional = False
        else:
            parsed.required.append(term)

    parsed.explanation = explain(parsed)
    return parsed


def explain(parsed: ParsedQuery) -> str:
    """Human-readable description of a parsed query"""
    parts = []
    if parsed.required:
        parts.append("Must contain: " + " AND ".join(t.display() for t in parsed.required))
    if parsed.optional:
        parts.append("May contain: " + " OR ".join(t.display() for t in parsed.optional))
    if parsed.excluded:
        parts.append("Must NOT contain: " + ", ".join(t.display() for t in parsed.excluded))

    filters = parsed.filters
    if filters.get("title"):
        parts.append("Title contains: " + ", ".join(filters["title"]))
    if filters.get("body"):
        parts.append("Body contains: " + ", ".join(filters["body"]))
    if filters.get("author"):
        parts.append("Author: " + " or ".join(filters["author"]))
    if filters.get("subreddit"):
        parts.append("Subreddit: " + " or ".join(filters["subreddit"]))
    if filters.get("platform"):
        parts.append("Platform: " + " or ".join(filters["platform"]))

    return " | ".join(parts) or "Matches all results"


def _exact_field_filter(values: List[str], actual: Optional[str]) -> bool:
    # Content without the field is not filtered out
    if not values or not actual:
        return True
    actual = actual.lower()
    return any(actual == v.lower() for v in values)


def match(content: MatchableContent, parsed: ParsedQuery) -> QueryMatch:
    """
    Test content against a parsed query.

    Order: required, excluded, optional, field filters. First failure wins.
    """
    matched: List[str] = []
    title = (content.title or "").lower()
    body = (content.body or "").lower()
    text = f"{title} {body}"

    for term in parsed.required:
        if term.term.lower() not in text:
            return QueryMatch(False, matched, f"Missing required term: {term.term}")
        matched.append(term.term)

    for term in parsed.excluded:
        if term.term.lower() in text:
            return QueryMatch(False, matched, f"Contains excluded term: {term.term}")

    if parsed.optional:
        hits = [t.term for t in parsed.optional if t.term.lower() in text]
        if not hits:
            return QueryMatch(False, matched, "None of the optional terms matched")
        matched.extend(hits)

    filters = parsed.filters
    if filters.get("title") and not any(v.lower() in title for v in filters["title"]):
        return QueryMatch(False, matched, "Title doesn't match filter")
    if filters.get("body") and not any(v.lower() in body for v in filters["body"]):
        return QueryMatch(False, matched, "Body doesn't match filter")
    if not _exact_field_filter(filters.get("author", []), content.author):
        return QueryMatch(False, matched, "Author doesn't match filter")
    if not _exact_field_filter(filters.get("subreddit", []), content.subreddit):
        return QueryMatch(False, matched, "Subreddit doesn't match filter")
    if not _exact_field_filter(filters.get("platform", []), content.platform):
        return QueryMatch(False, matched, "Platform doesn't match filter")

    return QueryMatch(True, matched, "Matched: " + (", ".join(matched) or "all criteria"))


def validate(query: Optional[str]) -> ValidationResult:
    """Check a query for mistakes worth reporting back to the user"""
    if not query or not query.strip():
        return ValidationResult(valid=True)

    if query.count('"') % 2 != 0:
        return ValidationResult(valid=False, error="Unmatched quote")
    if _EMPTY_FIELD_RE.search(query):
        return ValidationResult(valid=False, error="Empty field value")
    if _LONE_OPERATOR_RE.match(query):
        return ValidationResult(valid=False, error="Query cannot be just an operator")
    return ValidationResult(valid=True)


def keywords_to_query(keywords: List[str]) -> str:
    """Render a keyword list as an OR expression, quoting multi-word keywords"""
    rendered = [f'"{k}"' if " " in k else k for k in keywords if k and k.strip()]
    return " OR ".join(rendered)
