from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
import getpass
import json
import uuid

from lrmsync import hash as lrmhash
from lrmsync.config import Config, load_config

PROJECT_DIRNAME = ".lrmsync"


def project_dir(root: Path) -> Path:
    return root / PROJECT_DIRNAME


def _project_path(root: Path) -> Path:
    return project_dir(root) / "project.json"


def config_path(root: Path) -> Path:
    return project_dir(root) / "config.json"


def state_path(root: Path) -> Path:
    return project_dir(root) / "sync-state.json"


def _read_project(project_path: Path) -> dict:
    payload = json.loads(project_path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"project.json must be a JSON object: {project_path}")
    if "clone_id" not in payload:
        raise ValueError(f"project.json missing clone_id: {project_path}")
    return payload


def _default_actor() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "cli"


@dataclass(frozen=True)
class Project:
    """A local working copy: its clone metadata plus the shared config."""

    root: Path
    project_data: dict
    config: Config

    @property
    def project_id(self) -> str:
        return self.config.cloud.project_id

    @property
    def clone_id(self) -> str:
        return str(self.project_data["clone_id"])

    @property
    def actor(self) -> str:
        return self.config.actor or _default_actor()

    @property
    def state_path(self) -> Path:
        return state_path(self.root)

    @classmethod
    def load_project_data(cls, root: Path) -> dict:
        return _read_project(_project_path(root))

    @classmethod
    def ensure_project_data(cls, root: Path) -> dict:
        project_path = _project_path(root)
        if project_path.exists():
            return cls.load_project_data(root)

        project_dir(root).mkdir(parents=True, exist_ok=True)
        payload = {
            "format": 1,
            "clone_id": uuid.uuid4().hex,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        project_path.write_text(lrmhash.canonical_json(payload), encoding="utf-8")
        return payload

    @classmethod
    def load(cls, root: Path) -> "Project":
        project_data = cls.load_project_data(root)
        config = load_config(config_path(root))
        return cls(root=root, project_data=project_data, config=config)

    @classmethod
    def load_or_init(cls, root: Path) -> "Project":
        cls.ensure_project_data(root)
        return cls.load(root)


def write_config(root: Path, data: dict) -> Config:
    """Validate and write ``.lrmsync/config.json``."""
    config = Config.model_validate(data)
    path = config_path(root)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config.data, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return config
