"""
JSON export for VisTrace
"""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..models import Trace
from .. import __version__


logger = logging.getLogger(__name__)


class JsonExporter:
    """
    Snapshot sink writing one JSON document per trace.

    Each snapshot overwrites the trace's file (<trace id>.json), so
    repeated updates of the same trace are idempotent. Write failures
    are logged and never reach the discovery pipeline.
    """

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)

    def path_for(self, trace_id: str) -> Path:
        return self.output_dir / f"{trace_id}.json"

    def build(self, trace: Trace) -> dict:
        """
        Build the JSON document for a trace.

        Args:
            trace: Trace snapshot

        Returns:
            JSON-serializable dict
        """
        return {
            "meta": {
                "version": __version__,
                "generator": "VisTrace",
                "generated_at": datetime.now().isoformat()
            },
            "trace": trace.to_dict(),
        }

    def export(self, trace: Trace, output_path: Optional[Path] = None) -> dict:
        """
        Export a trace snapshot to JSON.

        Args:
            trace: Trace snapshot
            output_path: File to write (defaults to <output_dir>/<trace id>.json)

        Returns:
            JSON-serializable dict
        """
        data = self.build(trace)
        self._write_file(data, Path(output_path) if output_path else self.path_for(trace.id))
        return data

    def __call__(self, trace: Trace):
        """Snapshot subscriber"""
        try:
            self.export(trace)
        except OSError as e:
            logger.warning("Could not write snapshot for trace %s: %s", trace.id, e)

    def _write_file(self, data: dict, path: Path):
        """Write JSON atomically via a temp file in the same directory"""
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + '.tmp')
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise


def export_json(trace: Trace, output_path: Path) -> dict:
    """Convenience function for JSON export"""
    exporter = JsonExporter(Path(output_path).parent)
    return exporter.export(trace, output_path)
