from __future__ import annotations
import json
from dataclasses import dataclass
from pathlib import Path
from app.core.config import settings


@dataclass
class WorkspaceManager:
    """Per-project scratch directory under ``settings.workspaces_dir``."""
    project_id: str
    base_dir: Path | None = None

    @property
    def root(self) -> Path:
        return Path(self.base_dir or settings.workspaces_dir) / self.project_id

    @property
    def patches_dir(self) -> Path:
        return self.root / "patches"

    def ensure(self) -> "WorkspaceManager":
        self.patches_dir.mkdir(parents=True, exist_ok=True)
        return self

    def write_json(self, path: Path, payload) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return path

    def read_json(self, path: Path):
        return json.loads(path.read_text(encoding="utf-8"))
