"""Candidate search: propose present-day locations for a stored snippet.

Three independent strategies run over a search region (the whole file or
the line range of one symbol):

* exact snippet match      -> score 1.0, ``exact-snippet``
* verbatim anchor line     -> windowed similarity, ``context-line``
* sliding fuzzy window     -> similarity >= ``FUZZY_MIN_THRESHOLD``, ``fuzzy-window``

Every strategy always runs; results are pooled, reduced to the best
candidate per line, sorted by score and truncated to ``MAX_CANDIDATES``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from .models import Annotation, DbLocation, MatchCandidate, SymbolIndex
from .similarity import safe_similarity
from .symbols import find_symbol_range

FUZZY_MIN_THRESHOLD = 0.6
MAX_CANDIDATES = 5


@dataclass(frozen=True)
class SnippetContext:
    """The stored text around an annotation: before + anchor line + after."""

    context_line: str
    context_before: tuple = ()
    context_after: tuple = ()

    @classmethod
    def of(cls, source: "Annotation | DbLocation") -> "SnippetContext":
        return cls(
            context_line=source.context_line,
            context_before=tuple(source.context_before),
            context_after=tuple(source.context_after),
        )

    @property
    def lines(self) -> List[str]:
        return [*self.context_before, self.context_line, *self.context_after]

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


@dataclass(frozen=True)
class SearchRegion:
    lines: Sequence[str]
    start_line: int  # 1-based file line of lines[0]
    symbol: Optional[str] = None


def region_for(
    new_lines: Sequence[str],
    symbol_path: Optional[str],
    index: Optional[SymbolIndex],
) -> SearchRegion:
    """Restrict the search to *symbol_path* when it resolves, else whole file."""
    symbol_range = find_symbol_range(symbol_path, index)
    if symbol_range is None:
        return SearchRegion(lines=new_lines, start_line=1)
    start = max(0, symbol_range.start_line - 1)
    end = min(len(new_lines), symbol_range.end_line)
    return SearchRegion(
        lines=new_lines[start:end],
        start_line=symbol_range.start_line,
        symbol=symbol_range.path,
    )


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

def exact_snippet_search(
    snippet_lines: Sequence[str],
    region: SearchRegion,
    anchor_offset: int = 0,
) -> List[MatchCandidate]:
    """Byte-for-byte matches of the whole snippet.

    *anchor_offset* is the index of the anchor line inside the snippet; the
    reported line is where the anchor lands, not the window's first line.
    """
    height = len(snippet_lines)
    if height == 0:
        return []

    wanted = list(snippet_lines)
    snippet = "\n".join(wanted)
    matches: List[MatchCandidate] = []
    for i in range(len(region.lines) - height + 1):
        if list(region.lines[i: i + height]) == wanted:
            matches.append(MatchCandidate(
                line=region.start_line + i + anchor_offset,
                score=1.0,
                source="exact-snippet",
                snippet=snippet,
                symbol=region.symbol,
            ))
    return matches


def context_line_search(
    context_line: str,
    snippet: str,
    snippet_lines: Sequence[str],
    region: SearchRegion,
) -> List[MatchCandidate]:
    if not context_line.strip():
        return []

    height = len(snippet_lines)
    matches: List[MatchCandidate] = []
    for i, line in enumerate(region.lines):
        if line != context_line:
            continue
        window_start = max(0, i - height // 2)
        window_end = min(len(region.lines), window_start + height)
        window = "\n".join(region.lines[window_start:window_end])
        matches.append(MatchCandidate(
            line=region.start_line + i,
            score=safe_similarity(snippet, window),
            source="context-line",
            snippet=window,
            symbol=region.symbol,
        ))
    return matches


def fuzzy_window_search(
    snippet: str,
    snippet_lines: Sequence[str],
    region: SearchRegion,
    anchor_offset: int = 0,
) -> List[MatchCandidate]:
    height = len(snippet_lines)
    if height == 0:
        return []

    matches: List[MatchCandidate] = []
    for i in range(len(region.lines) - height + 1):
        window = "\n".join(region.lines[i: i + height])
        score = safe_similarity(snippet, window)
        if score >= FUZZY_MIN_THRESHOLD:
            matches.append(MatchCandidate(
                line=region.start_line + i + anchor_offset,
                score=score,
                source="fuzzy-window",
                snippet=window,
                symbol=region.symbol,
            ))
    return matches


def dedupe_candidates(candidates: Iterable[MatchCandidate]) -> List[MatchCandidate]:
    """Keep the best candidate per line, highest score first."""
    best_by_line: dict = {}
    for candidate in candidates:
        existing = best_by_line.get(candidate.line)
        if existing is None or candidate.score > existing.score:
            best_by_line[candidate.line] = candidate
    return sorted(best_by_line.values(), key=lambda c: c.score, reverse=True)


def search_region(snippet: SnippetContext, region: SearchRegion) -> List[MatchCandidate]:
    """Run all three strategies over *region* (deduped, unbounded)."""
    snippet_lines = snippet.lines
    text = snippet.text
    anchor = len(snippet.context_before)
    pooled: List[MatchCandidate] = []
    pooled.extend(exact_snippet_search(snippet_lines, region, anchor))
    pooled.extend(context_line_search(snippet.context_line, text, snippet_lines, region))
    pooled.extend(fuzzy_window_search(text, snippet_lines, region, anchor))
    return dedupe_candidates(pooled)


def find_candidates(
    snippet: SnippetContext,
    new_file_lines: Sequence[str],
    symbol_path: Optional[str] = None,
    symbol_index: Optional[SymbolIndex] = None,
) -> List[MatchCandidate]:
    """On-demand search for a moved or missing edge (no diff fast path)."""
    region = region_for(new_file_lines, symbol_path, symbol_index)
    return search_region(snippet, region)[:MAX_CANDIDATES]
