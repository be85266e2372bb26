"""Core data models shared by the scanner, store, remapper and reconciler."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

EdgeKey = Tuple[str, str, str]

MatchSource = Literal["diff", "exact-snippet", "context-line", "fuzzy-window"]
UnmappedReason = Literal["no-match", "file-missing", "git-missing"]
FlowLoadStatus = Literal["loaded", "partial", "notLoaded", "duplicates", "moved", "missing"]


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Annotation:
    """One exported flow edge, pinned to a commit and a code context."""

    id: str
    file_path: str
    commit_hash: str
    line: int
    flow_name: str
    current_node: str
    next_node: str
    context_line: str
    context_before: Tuple[str, ...] = ()
    context_after: Tuple[str, ...] = ()
    repo_id: Optional[str] = None
    iso_line: int = 0
    column: int = 1
    symbol_path: Optional[str] = None
    node_type: Optional[str] = None
    cross_declared: bool = False
    raw_comment: str = ""
    note: str = ""
    meta: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def edge_key(self) -> EdgeKey:
        return (self.flow_name, self.current_node, self.next_node)

    def snippet_lines(self) -> List[str]:
        return [*self.context_before, self.context_line, *self.context_after]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "repoId": self.repo_id,
            "filePath": self.file_path,
            "commitHash": self.commit_hash,
            "line": self.line,
            "isoLine": self.iso_line,
            "column": self.column,
            "contextBefore": list(self.context_before),
            "contextLine": self.context_line,
            "contextAfter": list(self.context_after),
            "symbolPath": self.symbol_path,
            "nodeType": self.node_type,
            "flowName": self.flow_name,
            "currentNode": self.current_node,
            "nextNode": self.next_node,
            "crossDeclared": self.cross_declared,
            "note": self.note,
            "rawComment": self.raw_comment,
            "meta": dict(self.meta),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Annotation":
        return cls(
            id=str(payload["id"]),
            repo_id=payload.get("repoId"),
            file_path=str(payload["filePath"]),
            commit_hash=str(payload["commitHash"]),
            line=int(payload["line"]),
            iso_line=int(payload.get("isoLine", 0)),
            column=int(payload.get("column", 1)),
            context_before=tuple(payload.get("contextBefore") or ()),
            context_line=str(payload.get("contextLine", "")),
            context_after=tuple(payload.get("contextAfter") or ()),
            symbol_path=payload.get("symbolPath"),
            node_type=payload.get("nodeType"),
            flow_name=str(payload["flowName"]),
            current_node=str(payload["currentNode"]),
            next_node=str(payload["nextNode"]),
            cross_declared=bool(payload.get("crossDeclared", False)),
            note=str(payload.get("note") or ""),
            raw_comment=str(payload.get("rawComment", "")),
            meta=dict(payload.get("meta") or {}),
        )


@dataclass
class FlowRecord:
    """Named collection of annotations sharing a flow name."""

    id: str
    name: str
    annotations: List[Annotation] = field(default_factory=list)
    declared_cross: bool = False
    is_cross: bool = False
    description: str = ""
    tags: List[str] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "tags": list(self.tags),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "declaredCross": self.declared_cross,
            "isCross": self.is_cross,
            "annotations": [a.to_dict() for a in self.annotations],
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "FlowRecord":
        annotations = [Annotation.from_dict(a) for a in payload.get("annotations") or []]
        declared = bool(payload.get("declaredCross", any(a.cross_declared for a in annotations)))
        return cls(
            id=str(payload["id"]),
            name=str(payload["name"]),
            annotations=annotations,
            declared_cross=declared,
            is_cross=bool(payload.get("isCross", declared)),
            description=str(payload.get("description") or ""),
            tags=[str(t) for t in payload.get("tags") or []],
            created_at=str(payload.get("createdAt") or ""),
            updated_at=str(payload.get("updatedAt") or ""),
        )


# ---------------------------------------------------------------------------
# Scan results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ParsedComment:
    """A flow comment found in the current source tree."""

    flow_name: str
    current_node: str
    next_node: str
    file_path: str
    relative_path: str
    line: int
    context_line: str
    context_before: Tuple[str, ...] = ()
    context_after: Tuple[str, ...] = ()
    cross_declared: bool = False
    raw_comment: str = ""
    iso_line: int = 0
    column: int = 1
    symbol_path: Optional[str] = None
    node_type: Optional[str] = None

    @property
    def edge_key(self) -> EdgeKey:
        return (self.flow_name, self.current_node, self.next_node)


@dataclass(frozen=True)
class MalformedComment:
    file_path: str
    line_number: int
    raw_text: str
    reason: str


@dataclass
class ScanResult:
    parsed: List[ParsedComment] = field(default_factory=list)
    malformed: List[MalformedComment] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Remapping primitives
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LineMapEntry:
    status: Literal["mapped", "deleted"]
    new_line: Optional[int] = None


LineMap = Dict[int, LineMapEntry]


@dataclass(frozen=True)
class SymbolRange:
    """A named structural region of a file (1-based, inclusive)."""

    path: str
    start_line: int
    end_line: int
    node_type: str

    def contains(self, line: int) -> bool:
        return self.start_line <= line <= self.end_line


@dataclass
class SymbolIndex:
    by_path: Dict[str, SymbolRange] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.by_path)

    def find(self, path: Optional[str]) -> Optional[SymbolRange]:
        if not path:
            return None
        return self.by_path.get(path)

    def symbol_at(self, line: int) -> Optional[SymbolRange]:
        """Return the most specific (longest path) range containing *line*."""
        containing = [r for r in self.by_path.values() if r.contains(line)]
        if not containing:
            return None
        return max(containing, key=lambda r: len(r.path))


@dataclass(frozen=True)
class MatchCandidate:
    line: int
    score: float
    source: MatchSource
    snippet: Optional[str] = None
    symbol: Optional[str] = None


# ---------------------------------------------------------------------------
# Resolution outcome (tagged union)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AutoResolution:
    line: int
    confidence: float
    source: MatchSource
    kind: Literal["auto"] = "auto"


@dataclass(frozen=True)
class CandidatesResolution:
    candidates: Tuple[MatchCandidate, ...]
    kind: Literal["candidates"] = "candidates"

    def __post_init__(self) -> None:
        if not self.candidates:
            raise ValueError("CandidatesResolution requires at least one candidate")


@dataclass(frozen=True)
class UnmappedResolution:
    reason: UnmappedReason
    note: Optional[str] = None
    kind: Literal["unmapped"] = "unmapped"


ResolutionStatus = Union[AutoResolution, CandidatesResolution, UnmappedResolution]


@dataclass(frozen=True)
class HydratedAnnotation:
    annotation: Annotation
    resolution: ResolutionStatus


@dataclass
class HydratedFlow:
    flow: FlowRecord
    annotations: List[HydratedAnnotation] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Flow reconciliation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EdgeLocation:
    file_path: str
    line_number: int


@dataclass(frozen=True)
class DbLocation:
    file_path: str
    line_number: int
    context_line: str
    context_before: Tuple[str, ...] = ()
    context_after: Tuple[str, ...] = ()

    @classmethod
    def of(cls, annotation: Annotation) -> "DbLocation":
        return cls(
            file_path=annotation.file_path,
            line_number=annotation.line,
            context_line=annotation.context_line,
            context_before=tuple(annotation.context_before),
            context_after=tuple(annotation.context_after),
        )


@dataclass(frozen=True)
class DuplicateEdge:
    current_node: str
    next_node: str
    locations: Tuple[EdgeLocation, ...]


@dataclass(frozen=True)
class MovedEdge:
    current_node: str
    next_node: str
    db_location: DbLocation
    source_location: EdgeLocation


@dataclass(frozen=True)
class MissingEdge:
    current_node: str
    next_node: str
    db_location: DbLocation
    raw_comment: str


@dataclass
class FlowStatusReport:
    flow_name: str
    status: FlowLoadStatus
    present: int
    total: int
    extras: int
    dirty: bool
    duplicates: List[DuplicateEdge] = field(default_factory=list)
    moved: List[MovedEdge] = field(default_factory=list)
    missing: List[MissingEdge] = field(default_factory=list)


@dataclass(frozen=True)
class FlowEdge:
    flow_name: str
    current_node: str
    next_node: str
    file_path: str
    line_number: int


@dataclass
class FlowSummary:
    """Whole-workspace view of one flow: graph plus reconciliation status."""

    id: str
    report: FlowStatusReport
    nodes: List[str] = field(default_factory=list)
    edges: List[FlowEdge] = field(default_factory=list)
    declared_cross: bool = False
    is_cross: bool = False

    @property
    def name(self) -> str:
        return self.report.flow_name

    @property
    def status(self) -> FlowLoadStatus:
        return self.report.status
