"""Flow store backed by YAML or JSON files on disk."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import ValidationError as SchemaError

from ..contracts import Flow
from ..errors import FlowNotFoundError, ValidationError
from .store import FlowStore

logger = logging.getLogger(__name__)

FLOW_SUFFIXES = (".yaml", ".yml", ".json")


def load_flow_file(path: str | Path) -> List[Flow]:
    """Parse one file holding a flow, or a list of flows under ``flows``.

    Unparseable files and flows that do not match the schema raise
    :class:`~flowengine.errors.ValidationError`.
    """
    path = Path(path)
    text = path.read_text()
    try:
        if path.suffix == ".json":
            data: Any = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ValidationError(str(path), [f"cannot parse file: {exc}"]) from exc

    if isinstance(data, dict) and "flows" in data:
        data = data["flows"]
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise ValidationError(str(path), ["file does not contain a flow definition"])

    flows: List[Flow] = []
    for item in data:
        try:
            flows.append(Flow.model_validate(item))
        except SchemaError as exc:
            flow_id = item.get("id") if isinstance(item, dict) else None
            problems = [
                f"{'.'.join(str(part) for part in error['loc']) or 'flow'}: {error['msg']}"
                for error in exc.errors()
            ]
            raise ValidationError(str(flow_id or path), problems) from exc
    return flows


class FileFlowStore(FlowStore):
    """Load flows from a single file or every flow file in a directory.

    Files are re-read on every lookup so edits made by the authoring tool
    are picked up by the next execution.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _files(self) -> List[Path]:
        if self.path.is_dir():
            return sorted(p for p in self.path.iterdir() if p.suffix in FLOW_SUFFIXES)
        if self.path.exists():
            return [self.path]
        logger.warning(f"Flow path {self.path} does not exist")
        return []

    def _load(self) -> Dict[str, Flow]:
        flows: Dict[str, Flow] = {}
        for file in self._files():
            for flow in load_flow_file(file):
                if flow.id in flows:
                    logger.warning(f"Duplicate flow id {flow.id} in {file}, keeping the first")
                    continue
                flows[flow.id] = flow
        return flows

    async def get_flow(self, flow_id: str) -> Flow:
        flow = self._load().get(flow_id)
        if flow is None:
            raise FlowNotFoundError(flow_id)
        return flow

    async def list_flows(self) -> List[Flow]:
        return list(self._load().values())
