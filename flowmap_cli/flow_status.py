"""Reconcile the current scan against the flow database.

Edges are identified by ``(flow_name, current_node, next_node)`` and never
by location: the same edge at a new place is *moved*, not a second edge,
and two comments declaring the same edge are *duplicates* wherever they sit.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Sequence

from .models import (
    DbLocation,
    DuplicateEdge,
    EdgeKey,
    EdgeLocation,
    FlowEdge,
    FlowLoadStatus,
    FlowRecord,
    FlowStatusReport,
    FlowSummary,
    MissingEdge,
    MovedEdge,
    ParsedComment,
)


def _group_by_edge(comments: Iterable[ParsedComment]) -> "OrderedDict[EdgeKey, List[ParsedComment]]":
    groups: "OrderedDict[EdgeKey, List[ParsedComment]]" = OrderedDict()
    for comment in comments:
        groups.setdefault(comment.edge_key, []).append(comment)
    return groups


def _overall_status(
    duplicates: Sequence[DuplicateEdge],
    missing: Sequence[MissingEdge],
    moved: Sequence[MovedEdge],
    present: int,
    total: int,
    extras: int,
) -> FlowLoadStatus:
    # Hazards first: duplicates and missing edges must never read as "partial".
    if duplicates:
        return "duplicates"
    if missing:
        return "missing"
    if moved:
        return "moved"
    if present == total and extras == 0:
        return "loaded"
    return "partial"


def compute_flow_status(
    flow: Optional[FlowRecord],
    parsed_comments: Sequence[ParsedComment],
    flow_name: Optional[str] = None,
) -> FlowStatusReport:
    """Classify the stored edges of one flow against its current comments.

    *parsed_comments* should already be restricted to this flow; comments of
    other flows are ignored.  *flow* may be ``None`` for a flow that only
    exists in source, in which case *flow_name* names it.
    """
    name = flow.name if flow is not None else flow_name
    if name is None:
        raise ValueError("flow_name is required when no flow record is given")
    comments = [c for c in parsed_comments if c.flow_name == name]
    annotations = flow.annotations if flow is not None else []

    groups = _group_by_edge(comments)
    duplicates = [
        DuplicateEdge(
            current_node=key[1],
            next_node=key[2],
            locations=tuple(EdgeLocation(c.relative_path, c.line) for c in members),
        )
        for key, members in groups.items()
        if len(members) > 1
    ]

    # First occurrence stands in for its edge so duplicates never inflate counts.
    representatives: Dict[EdgeKey, ParsedComment] = {key: members[0] for key, members in groups.items()}
    matched = set()
    present = 0
    moved: List[MovedEdge] = []
    missing: List[MissingEdge] = []

    for annotation in annotations:
        key = annotation.edge_key
        comment = representatives.get(key)
        if comment is None:
            missing.append(MissingEdge(
                current_node=annotation.current_node,
                next_node=annotation.next_node,
                db_location=DbLocation.of(annotation),
                raw_comment=annotation.raw_comment,
            ))
            continue

        matched.add(key)
        if comment.relative_path == annotation.file_path and comment.line == annotation.line:
            present += 1
        else:
            moved.append(MovedEdge(
                current_node=annotation.current_node,
                next_node=annotation.next_node,
                db_location=DbLocation.of(annotation),
                source_location=EdgeLocation(comment.relative_path, comment.line),
            ))

    extras = sum(1 for key in representatives if key not in matched)
    total = len(annotations)

    if not annotations and not comments:
        status: FlowLoadStatus = "notLoaded"
    else:
        status = _overall_status(duplicates, missing, moved, present, total, extras)

    return FlowStatusReport(
        flow_name=name,
        status=status,
        present=present,
        total=total,
        extras=extras,
        dirty=present != total or extras > 0,
        duplicates=duplicates,
        moved=moved,
        missing=missing,
    )


def compute_flow_summaries(
    flows: Sequence[FlowRecord],
    parsed_comments: Sequence[ParsedComment],
) -> List[FlowSummary]:
    """One summary per flow known to the database or the current scan."""
    by_flow: Dict[str, List[ParsedComment]] = {}
    for comment in parsed_comments:
        by_flow.setdefault(comment.flow_name, []).append(comment)
    db_by_name = {flow.name: flow for flow in flows}

    summaries: List[FlowSummary] = []
    for name in sorted(set(db_by_name) | set(by_flow)):
        db_flow = db_by_name.get(name)
        comments = by_flow.get(name, [])
        report = compute_flow_status(db_flow, comments, flow_name=name)

        nodes = set()
        edges: List[FlowEdge] = []
        if comments:
            for c in comments:
                nodes.update((c.current_node, c.next_node))
                edges.append(FlowEdge(name, c.current_node, c.next_node, c.relative_path, c.line))
        elif db_flow is not None:
            for a in db_flow.annotations:
                nodes.update((a.current_node, a.next_node))
                edges.append(FlowEdge(name, a.current_node, a.next_node, a.file_path, a.line))

        if comments:
            declared_cross = any(c.cross_declared for c in comments) or bool(db_flow and db_flow.declared_cross)
        else:
            declared_cross = bool(db_flow and db_flow.declared_cross)
        is_cross = db_flow.is_cross if db_flow is not None else declared_cross

        summaries.append(FlowSummary(
            id=db_flow.id if db_flow is not None else f"unsaved::{name}",
            report=report,
            nodes=sorted(nodes),
            edges=sorted(edges, key=lambda e: e.line_number),
            declared_cross=declared_cross,
            is_cross=is_cross,
        ))
    return summaries
