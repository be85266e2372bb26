"""Turn a workspace scan into stored flow records pinned to HEAD."""

from __future__ import annotations

import hashlib
import logging
from typing import Dict, Iterable, List, Optional, Protocol

from .models import Annotation, FlowRecord, ScanResult
from .storage import FlowStore, now_iso

logger = logging.getLogger(__name__)


class HeadProvider(Protocol):
    async def get_head_commit(self) -> str:
        ...


def normalize_relative_path(relative_path: str) -> str:
    return relative_path.replace("\\", "/")


def build_annotation_id(repo_id: str, file_path: str, line: int, flow_name: str) -> str:
    digest = hashlib.sha1("|".join([repo_id, file_path, str(line), flow_name]).encode("utf-8")).hexdigest()
    return f"{repo_id}::{flow_name}::{digest}"


def flow_id_for(repo_id: str, flow_name: str) -> str:
    return f"{repo_id}::{flow_name}"


async def export_flows(
    store: FlowStore,
    git: HeadProvider,
    scan: ScanResult,
    target_flow_names: Optional[Iterable[str]] = None,
) -> List[FlowRecord]:
    """Persist *scan* as the new state of the database.

    Without *target_flow_names* every stored flow is replaced; with it only
    the named flows are upserted and all others are left untouched.

    Raises:
        GitError: if HEAD cannot be resolved.
        FlowStoreError: if the database cannot be loaded.
    """
    store.load()
    repo_id = store.repo_id or ""
    head_commit = await git.get_head_commit()
    targets = set(target_flow_names) if target_flow_names is not None else None

    grouped: Dict[str, List[Annotation]] = {}
    for comment in scan.parsed:
        if targets is not None and comment.flow_name not in targets:
            continue
        rel_path = normalize_relative_path(comment.relative_path)
        grouped.setdefault(comment.flow_name, []).append(Annotation(
            id=build_annotation_id(repo_id, rel_path, comment.line, comment.flow_name),
            repo_id=repo_id,
            file_path=rel_path,
            commit_hash=head_commit,
            line=comment.line,
            iso_line=comment.iso_line,
            column=comment.column,
            context_before=tuple(comment.context_before),
            context_line=comment.context_line,
            context_after=tuple(comment.context_after),
            symbol_path=comment.symbol_path,
            node_type=comment.node_type,
            flow_name=comment.flow_name,
            current_node=comment.current_node,
            next_node=comment.next_node,
            cross_declared=comment.cross_declared,
            raw_comment=comment.raw_comment,
        ))

    now = now_iso()
    flows: List[FlowRecord] = []
    for flow_name, annotations in grouped.items():
        flow_id = flow_id_for(repo_id, flow_name)
        previous = store.get_flow_by_id(flow_id)
        declared_cross = any(a.cross_declared for a in annotations)
        flows.append(FlowRecord(
            id=flow_id,
            name=flow_name,
            annotations=sorted(annotations, key=lambda a: a.line),
            declared_cross=declared_cross,
            is_cross=declared_cross,
            description=previous.description if previous else "",
            tags=list(previous.tags) if previous else [],
            created_at=previous.created_at if previous and previous.created_at else now,
            updated_at=now,
        ))

    if targets is not None:
        for flow in flows:
            store.upsert_flow(flow)
    else:
        store.replace_all_flows(flows)
    store.set_malformed(scan.malformed)
    store.save()

    logger.info(
        "Exported %d flow(s) at %s (%d malformed comment(s))",
        len(flows), head_commit[:12], len(scan.malformed),
    )
    return store.get_all_flows()
