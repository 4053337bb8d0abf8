"""Flow Store - where the runtime looks up flows by id."""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from flowengine.errors import FlowValidationError
from flowengine.graph.flow import Flow, load_flow

logger = logging.getLogger(__name__)


class FlowStore(ABC):
    @abstractmethod
    async def get(self, flow_id: str) -> Flow | None:
        """Return the flow, or None when ``flow_id`` is unknown."""

    async def list_ids(self) -> list[str]:
        return []


class InMemoryFlowStore(FlowStore):
    def __init__(self, flows: dict[str, Flow] | list[Flow] | None = None):
        if isinstance(flows, list):
            flows = {f.id: f for f in flows if f.id}
        self._flows: dict[str, Flow] = dict(flows or {})

    def add(self, flow: Flow, flow_id: str | None = None) -> None:
        key = flow_id or flow.id
        if not key:
            raise ValueError("Flow has no id")
        self._flows[key] = flow

    async def get(self, flow_id: str) -> Flow | None:
        return self._flows.get(flow_id)

    async def list_ids(self) -> list[str]:
        return sorted(self._flows)


class FileFlowStore(FlowStore):
    """
    Loads ``{directory}/{flow_id}.json`` on demand.

    Parsed flows are cached by file modification time, so edits on disk are
    picked up without a restart. A file that fails validation is reported
    and treated as missing.
    """

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)
        self._cache: dict[str, tuple[float, Flow]] = {}

    def _path(self, flow_id: str) -> Path | None:
        if not flow_id or "/" in flow_id or flow_id.startswith("."):
            return None
        return self.directory / f"{flow_id}.json"

    async def get(self, flow_id: str) -> Flow | None:
        path = self._path(flow_id)
        if path is None:
            return None

        def _load() -> Flow | None:
            if not path.exists():
                return None
            mtime = path.stat().st_mtime
            cached = self._cache.get(flow_id)
            if cached and cached[0] == mtime:
                return cached[1]
            flow = load_flow(path, flow_id=flow_id)
            self._cache[flow_id] = (mtime, flow)
            return flow

        try:
            return await asyncio.to_thread(_load)
        except FlowValidationError as e:
            logger.error(f"❌ Flow {flow_id} failed validation: {e}")
            return None

    async def list_ids(self) -> list[str]:
        if not self.directory.exists():
            return []
        return sorted(p.stem for p in self.directory.glob("*.json"))
