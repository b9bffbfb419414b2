"""Run folders for CLI invocations: one directory per run, JSON artifacts inside.

    runs/<stamp>_<name>/
        input/<drawing>.dxf
        artifacts/toolpaths.json
        logs.txt  manifest.json  metrics.json  summary.md
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunPaths:
    run_id: str
    run_dir: Path
    input_dir: Path
    artifacts_dir: Path
    logs_path: Path
    manifest_path: Path
    metrics_path: Path
    summary_path: Path

    @property
    def toolpaths_path(self) -> Path:
        return self.artifacts_dir / "toolpaths.json"


def slugify(value: str) -> str:
    value = re.sub(r"[^a-z0-9]+", "-", value.strip().lower())
    return value.strip("-") or "drawing"


def create_run_id(name: str) -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return f"{stamp}_{slugify(name)}"


def prepare_run_dir(runs_root: str, name: str) -> RunPaths:
    """Create a fresh run directory; a numeric suffix keeps same-second runs apart."""
    root = Path(runs_root)
    root.mkdir(parents=True, exist_ok=True)

    base_id = create_run_id(name)
    run_id = base_id
    suffix = 1
    while (root / run_id).exists():
        suffix += 1
        run_id = f"{base_id}-{suffix}"

    run_dir = root / run_id
    paths = RunPaths(
        run_id=run_id,
        run_dir=run_dir,
        input_dir=run_dir / "input",
        artifacts_dir=run_dir / "artifacts",
        logs_path=run_dir / "logs.txt",
        manifest_path=run_dir / "manifest.json",
        metrics_path=run_dir / "metrics.json",
        summary_path=run_dir / "summary.md",
    )
    paths.input_dir.mkdir(parents=True)
    paths.artifacts_dir.mkdir(parents=True)
    logger.debug("Prepared run directory %s", run_dir)
    return paths


def copy_input_drawing(drawing_path: str, input_dir: Path) -> Path:
    src = Path(drawing_path)
    dst = input_dir / src.name
    if src.resolve() != dst.resolve():
        shutil.copy2(src, dst)
    return dst


def file_sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with Path(path).open("rb") as f:
        for block in iter(lambda: f.read(1 << 16), b""):
            digest.update(block)
    return digest.hexdigest()


def attach_log_file(path: Path, level: int = logging.DEBUG) -> logging.Handler:
    """Mirror root logging into *path*; the caller removes the handler when done."""
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logging.getLogger().addHandler(handler)
    return handler


def write_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
        f.write("\n")


def write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def update_latest_pointer(runs_root: str, run_dir: Path) -> None:
    """Point ``<runs_root>/latest`` at *run_dir*."""
    root = Path(runs_root)
    latest = root / "latest"
    if latest.is_symlink() or latest.is_file():
        latest.unlink()
    elif latest.exists():
        shutil.rmtree(latest)

    try:
        latest.symlink_to(os.path.relpath(run_dir, root))
    except OSError:
        # No symlinks on this filesystem.
        latest.mkdir(parents=True, exist_ok=True)
        (latest / "latest_run.txt").write_text(run_dir.name, encoding="utf-8")
