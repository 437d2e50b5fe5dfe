"""Small filter grammar used by the local backend.

``a b`` matches items tagged with both ``a`` and ``b``, ``-a`` excludes items
tagged ``a``, ``in:photos/`` keeps items under that path prefix and
``"two words"`` quotes a tag containing spaces. Every term must hold.
"""
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from .db import normalize_tag

_TAG_CLAUSE = (
    "i.id {op} (SELECT it.item_id FROM item_tags it "
    "JOIN tags t ON t.id = it.tag_id WHERE t.name = ?)"
)


class QuerySyntaxError(ValueError):
    pass


@dataclass(frozen=True)
class Term:
    kind: str  # "tag" or "in"
    value: str
    negated: bool = False


def tokenize(text: str) -> List[Tuple[str, bool]]:
    """Split query text into ``(token, was_quoted)`` pairs."""
    tokens: List[Tuple[str, bool]] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue
        if ch == '"':
            end = text.find('"', i + 1)
            if end == -1:
                raise QuerySyntaxError(f"unterminated quote at column {i}")
            tokens.append((text[i + 1:end], True))
            i = end + 1
            continue
        start = i
        while i < n and not text[i].isspace() and text[i] != '"':
            i += 1
        tokens.append((text[start:i], False))
    return tokens


def parse(text: str) -> List[Term]:
    terms: List[Term] = []
    negate_next = False
    for token, quoted in tokenize(text):
        if not quoted and token == "-":
            if negate_next:
                raise QuerySyntaxError("repeated '-'")
            negate_next = True
            continue
        negated = negate_next
        negate_next = False
        if not quoted and token.startswith("-"):
            if negated:
                raise QuerySyntaxError("repeated '-'")
            negated = True
            token = token[1:]
            if token.startswith("-"):
                raise QuerySyntaxError("repeated '-'")
        if not quoted and token.startswith("in:"):
            prefix = token[3:]
            if not prefix:
                raise QuerySyntaxError("'in:' needs a path prefix")
            terms.append(Term(kind="in", value=prefix, negated=negated))
            continue
        name = normalize_tag(token)
        if not name:
            raise QuerySyntaxError("empty tag")
        terms.append(Term(kind="tag", value=name, negated=negated))
    if negate_next:
        raise QuerySyntaxError("'-' must be followed by a term")
    return terms


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def to_sql(text: str) -> Tuple[str, Sequence[object]]:
    """Compile query text to a WHERE fragment over ``items i`` and its params."""
    terms = parse(text)
    if not terms:
        return "1=1", ()
    clauses: List[str] = []
    params: List[object] = []
    for term in terms:
        if term.kind == "tag":
            clauses.append(_TAG_CLAUSE.format(op="NOT IN" if term.negated else "IN"))
            params.append(term.value)
        else:
            op = "NOT LIKE" if term.negated else "LIKE"
            clauses.append(f"i.path {op} ? ESCAPE '\\'")
            params.append(_escape_like(term.value.lstrip("/")) + "%")
    return " AND ".join(f"({c})" for c in clauses), tuple(params)
