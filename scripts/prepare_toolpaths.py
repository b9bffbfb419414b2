#!/usr/bin/env python3
"""Prepare toolpaths for a DXF drawing (chains -> parts -> offsets -> leads)."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from toolpath_prep import (
    ChainDetectionConfig,
    CutDirection,
    LeadConfig,
    LeadType,
    PartDetectionConfig,
    PipelineConfig,
    prepare_toolpaths,
    shapes_from_dxf,
)
from toolpath_prep.pipeline import result_status, summarize
from toolpath_prep.run_protocol import (
    attach_log_file,
    copy_input_drawing,
    file_sha256,
    prepare_run_dir,
    update_latest_pointer,
    write_json,
    write_text,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Turn a 2D DXF drawing into kerf-compensated toolpaths with leads"
    )
    parser.add_argument("--dxf", required=True, help="Path to input drawing (.dxf)")
    parser.add_argument("--name", default=None, help="Run name (defaults to the file stem)")
    parser.add_argument("--runs-dir", default="runs", help="Runs output root")
    parser.add_argument(
        "--layer",
        action="append",
        default=None,
        help="Only import entities on this layer (repeatable)",
    )
    parser.add_argument(
        "--tolerance",
        type=float,
        default=0.1,
        help="Endpoint connectivity and containment tolerance (drawing units)",
    )
    parser.add_argument(
        "--kerf",
        type=float,
        default=0.0,
        help="Signed kerf offset; positive cuts outside shells, 0 disables",
    )
    parser.add_argument(
        "--cut-direction",
        choices=[d.value for d in CutDirection],
        default=CutDirection.COUNTERCLOCKWISE.value,
        help="Traversal direction for closed chains",
    )
    parser.add_argument(
        "--lead-type",
        choices=[t.value for t in LeadType],
        default=LeadType.NONE.value,
        help="Lead-in/lead-out shape",
    )
    parser.add_argument(
        "--lead-length", type=float, default=0.0, help="Lead-in/lead-out length"
    )
    parser.add_argument(
        "--workers", type=int, default=1, help="Worker threads for per-part work"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logs"
    )
    return parser


def _build_summary(*, run_id: str, elapsed_s: float, status: str, counts: dict) -> str:
    return "\n".join(
        [
            f"# Run {run_id}",
            "",
            f"- Status: **{status.upper()}**",
            f"- Duration: {elapsed_s:.2f}s",
            f"- Chains: {counts['chain_count']} ({counts['closed_chain_count']} closed)",
            f"- Parts: {counts['part_count']} with {counts['hole_count']} hole(s)",
            f"- Toolpaths: {counts['toolpath_count']}",
            f"- Leads: {counts['lead_in_count']} in, {counts['lead_out_count']} out",
            f"- Warnings: {counts['detection_warning_count']} detection, "
            f"{counts['toolpath_warning_count']} toolpath",
            f"- Failed offsets: {', '.join(counts['failed_offsets']) or 'none'}",
            "",
            "## Scope",
            "- Geometry preparation only: no G-code is emitted by this command",
            "",
        ]
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    drawing = Path(args.dxf)
    if not drawing.is_file():
        parser.error(f"DXF file not found: {drawing}")
    name = args.name or drawing.stem

    lead = LeadConfig(type=LeadType(args.lead_type), length=float(args.lead_length))
    config = PipelineConfig(
        chains=ChainDetectionConfig(tolerance=args.tolerance),
        parts=PartDetectionConfig(tolerance=args.tolerance),
        lead_in=lead,
        lead_out=lead,
        kerf=float(args.kerf),
        cut_direction=CutDirection(args.cut_direction),
        max_workers=max(1, int(args.workers)),
    )
    try:
        config.validate()
    except ValueError as exc:
        parser.error(str(exc))

    started = time.perf_counter()
    run_paths = prepare_run_dir(args.runs_dir, name)
    log_handler = attach_log_file(run_paths.logs_path)
    try:
        copied = copy_input_drawing(str(drawing), run_paths.input_dir)
        shapes = shapes_from_dxf(copied, layers=args.layer)
        result = prepare_toolpaths(shapes, config)
    finally:
        logging.getLogger().removeHandler(log_handler)
        log_handler.close()
    elapsed = time.perf_counter() - started

    status = result_status(result)
    counts = summarize(result)
    payload = result.to_dict()
    payload["run_id"] = run_paths.run_id
    payload["status"] = status
    write_json(run_paths.toolpaths_path, payload)

    write_json(
        run_paths.metrics_path,
        {
            "run_id": run_paths.run_id,
            "status": status,
            "elapsed_s": round(elapsed, 3),
            "input_sha256": file_sha256(copied),
            "shape_count": len(shapes),
            "counts": counts,
        },
    )
    write_text(
        run_paths.summary_path,
        _build_summary(run_id=run_paths.run_id, elapsed_s=elapsed, status=status, counts=counts),
    )
    write_json(
        run_paths.manifest_path,
        {
            "run_id": run_paths.run_id,
            "design_name": name,
            "created_utc": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "input_drawing": str(copied),
            "status": status,
            "config": {
                "tolerance": args.tolerance,
                "kerf": config.kerf,
                "cut_direction": config.cut_direction.value,
                "lead_type": lead.type.value,
                "lead_length": lead.length,
                "layers": args.layer,
                "max_workers": config.max_workers,
            },
            "artifacts": {
                "toolpaths_json": str(run_paths.toolpaths_path),
                "metrics": str(run_paths.metrics_path),
                "summary": str(run_paths.summary_path),
                "logs": str(run_paths.logs_path),
            },
        },
    )
    update_latest_pointer(args.runs_dir, run_paths.run_dir)

    print(f"Run ID: {run_paths.run_id}")
    print(f"Run dir: {run_paths.run_dir}")
    print(f"Status: {status.upper()}")
    print(f"Chains: {counts['chain_count']}")
    print(f"Parts: {counts['part_count']}")
    print(f"Toolpaths: {counts['toolpath_count']}")
    print(f"Toolpaths JSON: {run_paths.toolpaths_path}")
    print(f"Metrics: {run_paths.metrics_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
