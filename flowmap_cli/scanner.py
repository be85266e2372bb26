"""Discover flow comments in a working tree.

A flow comment is any line containing the configured tag followed by::

    [cross] FLOW : CURRENT => NEXT

Lines that carry the tag but not this grammar are reported as malformed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Union

from .config import DEFAULT_CONTEXT_LINES, DEFAULT_TAG, REPO_CONFIG_NAME, SKIP_DIRS
from .line_mapper import split_lines
from .models import MalformedComment, ParsedComment, ScanResult
from .symbols import build_symbol_index

logger = logging.getLogger(__name__)

_EDGE_PATTERN = re.compile(r"^(cross\s+)?([^\s:]+)\s*:\s*([^\s=>]+)\s*=>\s*(\S+)", re.IGNORECASE)
MALFORMED_REASON = 'Comment does not match "[tag] [cross] FLOW : CURRENT => NEXT" format'


def parse_comment_line(
    line_text: str,
    tag: str,
    *,
    file_path: str,
    relative_path: str,
    line_number: int,
    iso_line: int = 0,
    column: int = 1,
    context_before: Sequence[str] = (),
    context_line: Optional[str] = None,
    context_after: Sequence[str] = (),
) -> Union[ParsedComment, MalformedComment]:
    raw_text = line_text.strip()
    idx = raw_text.lower().find(tag.lower())
    body = raw_text[idx + len(tag):].strip() if idx >= 0 else raw_text

    match = _EDGE_PATTERN.match(body)
    if match is None:
        return MalformedComment(
            file_path=relative_path,
            line_number=line_number,
            raw_text=raw_text,
            reason=MALFORMED_REASON,
        )

    cross_token, flow_name, current_node, next_node = match.groups()
    return ParsedComment(
        flow_name=flow_name,
        current_node=current_node,
        next_node=next_node,
        cross_declared=bool(cross_token),
        raw_comment=raw_text,
        file_path=file_path,
        relative_path=relative_path,
        line=line_number,
        iso_line=iso_line,
        column=column,
        context_before=tuple(context_before),
        context_line=line_text if context_line is None else context_line,
        context_after=tuple(context_after),
    )


def compute_iso_lines(lines: Sequence[str], tag: str) -> List[int]:
    """Running count of lines that do not carry *tag*, one entry per line."""
    iso: List[int] = []
    counter = 0
    for text in lines:
        if tag not in text:
            counter += 1
        iso.append(counter)
    return iso


def iter_source_files(root: Path, exclude_dirs: Iterable[str] = ()) -> Iterator[Path]:
    skipped = SKIP_DIRS | set(exclude_dirs)
    for path in sorted(root.rglob("*")):
        if not path.is_file() or path.name == REPO_CONFIG_NAME:
            continue
        if any(part in skipped for part in path.relative_to(root).parts[:-1]):
            continue
        yield path


def scan_file(
    path: Path,
    root: Path,
    tag: str = DEFAULT_TAG,
    context_lines: int = DEFAULT_CONTEXT_LINES,
) -> ScanResult:
    """Parse every tagged line of one file."""
    result = ScanResult()
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.debug("Skipping unreadable file %s: %s", path, exc)
        return result
    if tag not in text:
        return result

    relative_path = path.relative_to(root).as_posix()
    lines = split_lines(text)
    iso_lines = compute_iso_lines(lines, tag)
    symbol_index = None

    for idx, line in enumerate(lines):
        if tag not in line:
            continue
        outcome = parse_comment_line(
            line,
            tag,
            file_path=str(path),
            relative_path=relative_path,
            line_number=idx + 1,
            iso_line=iso_lines[idx],
            column=line.index(tag) + 1,
            context_before=lines[max(0, idx - context_lines): idx],
            context_line=line,
            context_after=lines[idx + 1: idx + 1 + context_lines],
        )
        if isinstance(outcome, MalformedComment):
            result.malformed.append(outcome)
            continue

        if symbol_index is None:
            symbol_index = build_symbol_index(relative_path, text)
        symbol = symbol_index.symbol_at(outcome.line)
        if symbol is not None:
            outcome = replace(outcome, symbol_path=symbol.path, node_type=symbol.node_type)
        result.parsed.append(outcome)
    return result


def scan_workspace(
    root: Path,
    tag: str = DEFAULT_TAG,
    context_lines: int = DEFAULT_CONTEXT_LINES,
    exclude_dirs: Iterable[str] = (),
) -> ScanResult:
    """Scan every file under *root* for flow comments."""
    root = root.resolve()
    result = ScanResult()
    for path in iter_source_files(root, exclude_dirs):
        file_result = scan_file(path, root, tag, context_lines)
        result.parsed.extend(file_result.parsed)
        result.malformed.extend(file_result.malformed)
    logger.debug(
        "Scanned %s: %d comment(s), %d malformed",
        root, len(result.parsed), len(result.malformed),
    )
    return result
