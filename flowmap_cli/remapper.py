"""Remap stored annotations onto the current state of their files.

For each annotation the engine first trusts the commit-to-commit diff: if
the annotation's historical line survives unchanged and the surrounding
snippet still scores at least ``STRICT_THRESHOLD``, it resolves
automatically.  Otherwise the diff position becomes one candidate among
those produced by :mod:`flowmap_cli.search`, and the best merged score
decides between ``auto``, ``candidates`` and ``unmapped``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from .line_mapper import build_line_map, split_lines
from .models import (
    Annotation,
    AutoResolution,
    CandidatesResolution,
    FlowRecord,
    HydratedAnnotation,
    HydratedFlow,
    LineMap,
    MatchCandidate,
    ResolutionStatus,
    SymbolIndex,
    UnmappedResolution,
)
from .search import (
    MAX_CANDIDATES,
    SnippetContext,
    dedupe_candidates,
    find_candidates,
    region_for,
    search_region,
)
from .similarity import safe_similarity
from .symbols import build_symbol_index

logger = logging.getLogger(__name__)

STRICT_THRESHOLD = 0.9
CANDIDATE_THRESHOLD = 0.7


class ContentLoader(Protocol):
    """Asynchronous access to current and historical file content."""

    async def get_file_at_revision(self, commit: str, relative_path: str) -> Optional[str]:
        ...

    async def get_current_file_content(self, relative_path: str) -> Optional[str]:
        ...


@dataclass
class FileContext:
    """Everything needed to remap the annotations of one (commit, file) pair."""

    old_content: Optional[str] = None
    new_content: Optional[str] = None
    new_lines: Optional[List[str]] = None
    line_map: Optional[LineMap] = None
    symbol_index: Optional[SymbolIndex] = None

    @classmethod
    def build(cls, file_path: str, old_content: Optional[str], new_content: Optional[str]) -> "FileContext":
        new_lines = split_lines(new_content) if new_content is not None else None
        line_map = (
            build_line_map(old_content, new_content)
            if old_content is not None and new_content is not None
            else None
        )
        symbol_index = build_symbol_index(file_path, new_content) if new_content is not None else None
        return cls(
            old_content=old_content,
            new_content=new_content,
            new_lines=new_lines,
            line_map=line_map,
            symbol_index=symbol_index,
        )


class FileContextCache:
    """Per-pass cache keyed by ``(commit_hash, file_path)``.

    Owned by a single hydration call; content may change between passes so
    an instance must never outlive the call that created it.
    """

    def __init__(self) -> None:
        self._entries: Dict[Tuple[str, str], FileContext] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Tuple[str, str]) -> bool:
        return key in self._entries

    def get(self, commit_hash: str, file_path: str) -> Optional[FileContext]:
        return self._entries.get((commit_hash, file_path))

    def put(self, commit_hash: str, file_path: str, context: FileContext) -> None:
        self._entries[(commit_hash, file_path)] = context


def snippet_at(lines: Sequence[str], line_number: int, before: int, after: int) -> str:
    """The block of *lines* shaped like a stored snippet, anchored at *line_number*."""
    idx = max(0, line_number - 1)
    start = max(0, idx - before)
    end = min(len(lines), idx + 1 + after)
    return "\n".join(lines[start:end])


def _try_diff_mapping(
    annotation: Annotation,
    ctx: FileContext,
    old_snippet: str,
) -> Tuple[Optional[ResolutionStatus], Optional[MatchCandidate]]:
    if ctx.line_map is None or ctx.new_lines is None:
        return None, None
    entry = ctx.line_map.get(annotation.line)
    if entry is None or entry.status != "mapped" or not entry.new_line:
        return None, None

    new_snippet = snippet_at(
        ctx.new_lines,
        entry.new_line,
        len(annotation.context_before),
        len(annotation.context_after),
    )
    score = safe_similarity(old_snippet, new_snippet)
    if score >= STRICT_THRESHOLD:
        return AutoResolution(line=entry.new_line, confidence=score, source="diff"), None

    return None, MatchCandidate(
        line=entry.new_line,
        score=score,
        source="diff",
        snippet=new_snippet,
        symbol=annotation.symbol_path,
    )


def _classify(annotation: Annotation, ctx: FileContext) -> ResolutionStatus:
    if ctx.new_content is None or ctx.new_lines is None:
        return UnmappedResolution(reason="file-missing")
    if ctx.old_content is None or ctx.line_map is None:
        return UnmappedResolution(reason="git-missing")

    snippet = SnippetContext.of(annotation)
    old_snippet = snippet.text

    resolution, diff_candidate = _try_diff_mapping(annotation, ctx, old_snippet)
    if resolution is not None:
        return resolution

    region = region_for(ctx.new_lines, annotation.symbol_path, ctx.symbol_index)
    pooled: List[MatchCandidate] = [diff_candidate] if diff_candidate is not None else []
    pooled.extend(search_region(snippet, region))
    merged = dedupe_candidates(pooled)[:MAX_CANDIDATES]

    if not merged:
        return UnmappedResolution(reason="no-match")

    best = merged[0]
    if best.score >= STRICT_THRESHOLD:
        return AutoResolution(line=best.line, confidence=best.score, source=best.source)
    if best.score >= CANDIDATE_THRESHOLD:
        return CandidatesResolution(
            candidates=tuple(c for c in merged if c.score >= CANDIDATE_THRESHOLD)
        )
    return UnmappedResolution(reason="no-match")


def remap_annotation(
    annotation: Annotation,
    old_text: Optional[str],
    new_text: Optional[str],
    *,
    file_context: Optional[FileContext] = None,
) -> ResolutionStatus:
    """Locate *annotation* in *new_text*, given the file as of its commit.

    ``None`` content means unavailable: a missing current file yields
    ``unmapped(file-missing)`` and a missing historical file
    ``unmapped(git-missing)``.  Unexpected failures are folded into
    ``unmapped(no-match)`` with the cause kept in ``note``.
    """
    try:
        ctx = file_context
        if ctx is None:
            ctx = FileContext.build(annotation.file_path, old_text, new_text)
        return _classify(annotation, ctx)
    except Exception as exc:
        logger.warning(
            "Remap failed for %s:%d (%s): %s",
            annotation.file_path, annotation.line, annotation.id, exc,
        )
        return UnmappedResolution(reason="no-match", note=f"{type(exc).__name__}: {exc}")


class RemapEngine:
    """Hydrates flows against the working tree through a :class:`ContentLoader`."""

    def __init__(self, loader: ContentLoader) -> None:
        self.loader = loader

    async def _load_context(self, commit_hash: str, file_path: str) -> FileContext:
        old_content, new_content = await asyncio.gather(
            self.loader.get_file_at_revision(commit_hash, file_path),
            self.loader.get_current_file_content(file_path),
        )
        return FileContext.build(file_path, old_content, new_content)

    async def remap_flow(self, flow: FlowRecord) -> HydratedFlow:
        """Remap every annotation of *flow*, in stored order.

        Content for each distinct ``(commit, file)`` pair is fetched once,
        concurrently, before any annotation is processed.
        """
        cache = FileContextCache()
        keys: List[Tuple[str, str]] = []
        for annotation in flow.annotations:
            key = (annotation.commit_hash, annotation.file_path)
            if key not in keys:
                keys.append(key)

        loaded = await asyncio.gather(
            *(self._load_context(commit, path) for commit, path in keys),
            return_exceptions=True,
        )
        failures: Dict[Tuple[str, str], BaseException] = {}
        for key, outcome in zip(keys, loaded):
            if isinstance(outcome, BaseException):
                logger.warning("Could not load %s at %s: %s", key[1], key[0], outcome)
                failures[key] = outcome
            else:
                cache.put(key[0], key[1], outcome)
        logger.debug("Loaded %d file context(s) for flow '%s'", len(cache), flow.name)

        hydrated = HydratedFlow(flow=flow)
        for annotation in flow.annotations:
            key = (annotation.commit_hash, annotation.file_path)
            ctx = cache.get(*key)
            if ctx is None:
                cause = failures.get(key)
                resolution: ResolutionStatus = UnmappedResolution(
                    reason="no-match",
                    note=f"{type(cause).__name__}: {cause}" if cause is not None else None,
                )
            else:
                resolution = remap_annotation(
                    annotation, ctx.old_content, ctx.new_content, file_context=ctx,
                )
            hydrated.annotations.append(HydratedAnnotation(annotation=annotation, resolution=resolution))
        return hydrated

    async def find_candidates_for_edge(
        self,
        file_path: str,
        snippet: SnippetContext,
        symbol_path: Optional[str] = None,
    ) -> List[MatchCandidate]:
        """On-demand candidate lookup for a moved or missing edge."""
        content = await self.loader.get_current_file_content(file_path)
        if content is None:
            return []
        index = build_symbol_index(file_path, content) if symbol_path else None
        return find_candidates(snippet, split_lines(content), symbol_path, index)
