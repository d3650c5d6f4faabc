"""Remote metadata records: recoverable facts of a running container on the engine host."""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from workstation.constants import METADATA_DIR, METADATA_FILE_MODE
from workstation.errors import DockerError, WorkstationError, reclassify
from workstation.models import MetadataRecord, SessionSnapshot


class MetadataStore:
    """Reads, writes and deletes one JSON record per container name.

    The start-time snapshot (baseline, data directories, volumes) lives in a
    sibling ``<container>.session.json`` so the record keeps its fixed fields.
    """

    def __init__(self, host, logger):
        self.host = host
        self.logger = logger

    def path(self, container: str) -> str:
        return self.host.join(self.host.home(), METADATA_DIR, f"{container}.json")

    def snapshot_path(self, container: str) -> str:
        return self.host.join(self.host.home(), METADATA_DIR, f"{container}.session.json")

    def _write(self, path: str, content: str):
        try:
            self.host.write_text(path, content, METADATA_FILE_MODE)
        except WorkstationError as exc:
            raise reclassify(exc, DockerError, f"Could not write metadata record {path}.") from exc
        except OSError as exc:
            raise DockerError(f"Could not write metadata record {path}: {exc}") from exc
        self.logger.debug("Metadata record written to %s", path)

    def _read(self, path: str, container: str) -> Optional[Dict[str, Any]]:
        try:
            content = self.host.read_text(path)
        except WorkstationError as exc:
            self.logger.warning("Could not read metadata record %s: %s", path, exc)
            return None
        if not content:
            return None

        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            self.logger.warning("Metadata record %s is not valid JSON: %s", path, exc)
            return None
        if not isinstance(data, dict) or data.get("container") != container:
            self.logger.warning("Metadata record %s does not belong to %s.", path, container)
            return None
        return data

    def write(self, record: MetadataRecord):
        self._write(self.path(record.container), record.to_json())

    def read(self, container: str) -> Optional[MetadataRecord]:
        data = self._read(self.path(container), container)
        return MetadataRecord.from_dict(data) if data is not None else None

    def write_snapshot(self, snapshot: SessionSnapshot):
        self._write(self.snapshot_path(snapshot.container), snapshot.to_json())

    def read_snapshot(self, container: str) -> Optional[SessionSnapshot]:
        data = self._read(self.snapshot_path(container), container)
        return SessionSnapshot.from_dict(data) if data is not None else None

    def delete(self, container: str, keep_snapshot: bool = False) -> bool:
        """Removes the record and, unless kept, the snapshot; True when the record existed."""
        path = self.path(container)
        removed = self.host.remove(path)
        if removed:
            self.logger.debug("Metadata record %s removed.", path)
        else:
            self.logger.debug("No metadata record at %s.", path)
        if not keep_snapshot:
            self.host.remove(self.snapshot_path(container))
        return removed

    @staticmethod
    def timestamp() -> str:
        return datetime.now(timezone.utc).isoformat()
