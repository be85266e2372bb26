"""Persistence layer for exported flows.

The database is a single pretty-printed JSON document, normally
``.flowmap/flows.json`` inside the repository, so it can be committed and
reviewed alongside the code it describes::

    {
      "schemaVersion": 1,
      "dbScope": "repo",
      "dbRepoId": "github.com/acme/app",
      "meta": {"createdAt": "...", "toolVersion": "0.1.0"},
      "flows": {"<flow id>": {...}}
    }
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from . import __version__
from .models import FlowRecord, MalformedComment

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = 1


class FlowStoreError(RuntimeError):
    """Raised when the flow database cannot be read or is used before loading."""


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def migrate(data: Dict[str, Any]) -> Dict[str, Any]:
    """Upgrade an older document to the current schema."""
    result = dict(data)
    if not result.get("schemaVersion"):
        result["schemaVersion"] = CURRENT_SCHEMA_VERSION
    result.setdefault("dbScope", "repo")
    result.setdefault("meta", {})
    if not isinstance(result.get("flows"), dict):
        result["flows"] = {}
    return result


class FlowStore:
    """Load, query and save the flow database of one repository."""

    def __init__(self, db_path: Path, repo_id: Optional[str] = None) -> None:
        self.db_path = Path(db_path)
        self._default_repo_id = repo_id
        self._meta: Dict[str, Any] = {}
        self._repo_id: Optional[str] = None
        self._flows: Optional[Dict[str, FlowRecord]] = None
        self._malformed: List[MalformedComment] = []

    # ------------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------------

    @property
    def loaded(self) -> bool:
        return self._flows is not None

    def load(self) -> None:
        """Read the database, creating an empty one on first use.

        Raises:
            FlowStoreError: if the file exists but is not valid JSON.
        """
        if self._flows is not None:
            return

        if not self.db_path.exists():
            self._create_default()
            self.save()
            logger.info("Created flow database at %s", self.db_path)
            return

        try:
            payload = json.loads(self.db_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise FlowStoreError(f"Unable to parse flow DB at {self.db_path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise FlowStoreError(f"Unable to parse flow DB at {self.db_path}: not an object")

        data = migrate(payload)
        self._repo_id = data.get("dbRepoId") or self._default_repo_id
        self._meta = dict(data["meta"])
        try:
            self._flows = {
                str(flow_id): FlowRecord.from_dict(flow)
                for flow_id, flow in data["flows"].items()
            }
        except (KeyError, TypeError, ValueError) as exc:
            raise FlowStoreError(f"Malformed flow record in {self.db_path}: {exc}") from exc
        logger.debug("Loaded %d flow(s) from %s", len(self._flows), self.db_path)

    def _create_default(self) -> None:
        self._repo_id = self._default_repo_id
        self._meta = {"createdAt": now_iso(), "toolVersion": __version__}
        self._flows = {}

    def to_dict(self) -> Dict[str, Any]:
        flows = self._require()
        return {
            "schemaVersion": CURRENT_SCHEMA_VERSION,
            "dbScope": "repo",
            "dbRepoId": self._repo_id,
            "meta": dict(self._meta),
            "flows": {flow_id: flow.to_dict() for flow_id, flow in flows.items()},
        }

    def save(self) -> None:
        if self._flows is None:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path.write_text(json.dumps(self.to_dict(), indent=2) + "\n", encoding="utf-8")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _require(self) -> Dict[str, FlowRecord]:
        if self._flows is None:
            raise FlowStoreError("FlowStore.load() must be called before accessing the DB.")
        return self._flows

    @property
    def repo_id(self) -> Optional[str]:
        self._require()
        return self._repo_id

    def get_all_flows(self) -> List[FlowRecord]:
        return list(self._require().values())

    def get_flow_by_id(self, flow_id: str) -> Optional[FlowRecord]:
        return self._require().get(flow_id)

    def get_flow_by_name(self, name: str) -> Optional[FlowRecord]:
        for flow in self._require().values():
            if flow.name == name:
                return flow
        return None

    # ------------------------------------------------------------------
    # Mutations (in memory until save())
    # ------------------------------------------------------------------

    def replace_all_flows(self, flows: Iterable[FlowRecord]) -> None:
        self._require()
        self._flows = {flow.id: flow for flow in flows}

    def upsert_flow(self, flow: FlowRecord) -> None:
        self._require()[flow.id] = flow

    def set_malformed(self, malformed: Iterable[MalformedComment]) -> None:
        self._malformed = list(malformed)

    def get_malformed(self) -> List[MalformedComment]:
        return list(self._malformed)
