from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path

import ezdxf
import pytest

REPO_ROOT = Path(__file__).resolve().parent.parent
SCRIPT = REPO_ROOT / "scripts" / "prepare_toolpaths.py"


@pytest.fixture
def plate_dxf(tmp_path: Path) -> Path:
    doc = ezdxf.new()
    msp = doc.modelspace()
    msp.add_lwpolyline([(0, 0), (80, 0), (80, 40), (0, 40)], close=True)
    msp.add_circle((20, 20), 6)
    msp.add_circle((60, 20), 6)
    msp.add_text("not geometry")
    path = tmp_path / "plate.dxf"
    doc.saveas(path)
    return path


def test_prepare_toolpaths_cli_runs_and_emits_artifacts(plate_dxf: Path, tmp_path: Path):
    runs_dir = tmp_path / "runs"
    cmd = [
        sys.executable,
        str(SCRIPT),
        "--dxf",
        str(plate_dxf),
        "--name",
        "plate test",
        "--runs-dir",
        str(runs_dir),
        "--kerf",
        "0.5",
        "--lead-type",
        "arc",
        "--lead-length",
        "3",
        "--workers",
        "2",
    ]
    proc = subprocess.run(cmd, capture_output=True, text=True)
    assert proc.returncode == 0, proc.stderr
    assert "Run ID:" in proc.stdout

    run_dirs = sorted(
        [path for path in runs_dir.iterdir() if path.is_dir() and path.name != "latest"]
    )
    assert len(run_dirs) == 1
    run_dir = run_dirs[0]
    assert run_dir.name.endswith("_plate-test")

    assert (run_dir / "input" / "plate.dxf").exists()
    toolpaths = json.loads((run_dir / "artifacts" / "toolpaths.json").read_text(encoding="utf-8"))
    assert toolpaths["schema_version"] == "toolpath_prep.toolpaths.v1"
    assert toolpaths["run_id"] == run_dir.name
    assert len(toolpaths["parts"]) == 1
    assert len(toolpaths["toolpaths"]) == 3
    assert all(path["lead_in"]["type"] == "arc" for path in toolpaths["toolpaths"])

    metrics = json.loads((run_dir / "metrics.json").read_text(encoding="utf-8"))
    assert metrics["counts"]["hole_count"] == 2
    assert metrics["shape_count"] == 3
    assert len(metrics["input_sha256"]) == 64

    manifest = json.loads((run_dir / "manifest.json").read_text(encoding="utf-8"))
    assert manifest["config"]["kerf"] == 0.5
    assert manifest["config"]["lead_type"] == "arc"

    summary = (run_dir / "summary.md").read_text(encoding="utf-8")
    assert summary.startswith(f"# Run {run_dir.name}")
    logs = (run_dir / "logs.txt").read_text(encoding="utf-8")
    assert "unsupported TEXT" in logs


def test_prepare_toolpaths_cli_rejects_missing_file(tmp_path: Path):
    cmd = [sys.executable, str(SCRIPT), "--dxf", str(tmp_path / "missing.dxf"),
           "--runs-dir", str(tmp_path / "runs")]
    proc = subprocess.run(cmd, capture_output=True, text=True)
    assert proc.returncode == 2
    assert "not found" in proc.stderr
    assert not (tmp_path / "runs").exists()
