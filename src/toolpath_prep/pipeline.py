"""
End-to-end toolpath preparation.

    shapes -> chains -> parts -> offsets -> leads -> toolpaths

Every stage is a pure function of the previous one.  Per-part offset and
lead work is independent, so with ``max_workers > 1`` it fans out over a
thread pool; results are gathered back in part order.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from toolpath_prep.chains import detect_chains
from toolpath_prep.containment import PartRegion
from toolpath_prep.contracts import (
    Chain,
    ChainOffsetResult,
    LeadType,
    Part,
    PipelineConfig,
    PipelineResult,
    Shape,
    Toolpath,
)
from toolpath_prep.leads import calculate_leads, orient_chain
from toolpath_prep.offset import offset_chain
from toolpath_prep.parts import detect_parts
from toolpath_prep.winding import detect_winding

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _ChainWork:
    toolpath: Toolpath
    offset: Optional[ChainOffsetResult]


def _chain_depths(part: Part) -> Dict[str, int]:
    """Nesting depth per chain id: shell 0, holes 1, islands 2, ..."""
    depths = {part.shell.chain_id: 0}
    stack = [(hole, 1) for hole in part.holes]
    while stack:
        hole, depth = stack.pop()
        depths[hole.chain_id] = depth
        stack.extend((child, depth + 1) for child in hole.holes)
    return depths


def _prepare_chain(
    chain: Chain,
    depth: int,
    part: Part,
    arena: Mapping[str, Chain],
    region: Optional[PartRegion],
    config: PipelineConfig,
) -> _ChainWork:
    warnings: List[str] = []
    offset_result: Optional[ChainOffsetResult] = None
    cut = None
    if config.kerf != 0:
        offset_result = offset_chain(chain, config.kerf, config.offset)
        warnings.extend(offset_result.warnings)
        warnings.extend(offset_result.errors)
        # holes keep the tool on the waste side, islands flip back
        cut = offset_result.preferred(config.kerf if depth % 2 == 0 else -config.kerf)
        if cut is None:
            warnings.append("No usable kerf offset; cutting source geometry")

    leads = calculate_leads(
        chain,
        config.lead_in,
        config.lead_out,
        cut_direction=config.cut_direction,
        part=part,
        chains=arena,
        offset_chain=cut,
        search=config.lead_search,
        region=region,
    )
    warnings.extend(leads.warnings)

    # Same traversal the leads were built against.
    shapes = cut.shapes if cut is not None else chain.shapes
    closed = cut.closed if cut is not None else chain.closed
    oriented = orient_chain(
        Chain(
            id=chain.id,
            shapes=tuple(shapes),
            closed=closed,
            winding=detect_winding(shapes, config.lead_search.tolerance),
        ),
        config.cut_direction,
    )

    toolpath = Toolpath(
        chain_id=chain.id,
        part_id=part.id,
        shapes=oriented.shapes,
        offset_side=cut.side if cut is not None else None,
        lead_in=leads.lead_in,
        lead_out=leads.lead_out,
        warnings=tuple(warnings),
    )
    return _ChainWork(toolpath, offset_result)


def _prepare_part(part: Part, arena: Mapping[str, Chain], config: PipelineConfig) -> List[_ChainWork]:
    region = None
    if part.closed:
        region = PartRegion(part, arena, config.parts.tessellation_tolerance)
    depths = _chain_depths(part)
    return [
        _prepare_chain(arena[chain_id], depths[chain_id], part, arena, region, config)
        for chain_id in part.chain_ids()
    ]


def prepare_toolpaths(
    shapes: Sequence[Shape],
    config: Optional[PipelineConfig] = None,
) -> PipelineResult:
    """Run chain detection, part detection, offsets and leads over *shapes*.

    Chains dropped by part detection (duplicates, overlaps, zero area) get no
    toolpath; the reason is in ``PipelineResult.warnings``.
    """
    config = config or PipelineConfig()
    config.validate()

    chains = detect_chains(shapes, replace(config.chains, normalize=True))
    closed_count = sum(1 for chain in chains if chain.closed)
    logger.info("Chains: %d (%d closed, %d open)", len(chains), closed_count, len(chains) - closed_count)

    detection = detect_parts(chains, config.parts)
    holes = sum(len(part.chain_ids()) - 1 for part in detection.parts)
    logger.info("Parts: %d with %d hole(s); %d detection warning(s)",
                len(detection.parts), holes, len(detection.warnings))

    def work(part: Part) -> List[_ChainWork]:
        return _prepare_part(part, detection.chains, config)

    if config.max_workers > 1 and len(detection.parts) > 1:
        logger.debug("Preparing %d parts on %d workers", len(detection.parts), config.max_workers)
        with ThreadPoolExecutor(max_workers=config.max_workers) as pool:
            per_part = list(pool.map(work, detection.parts))
    else:
        per_part = [work(part) for part in detection.parts]

    toolpaths: List[Toolpath] = []
    offsets: Dict[str, ChainOffsetResult] = {}
    for items in per_part:
        for item in items:
            toolpaths.append(item.toolpath)
            if item.offset is not None:
                offsets[item.toolpath.chain_id] = item.offset

    flagged = sum(1 for path in toolpaths if path.warnings)
    logger.info("Toolpaths: %d (%d with warnings)", len(toolpaths), flagged)
    return PipelineResult(
        chains=tuple(chains),
        parts=detection.parts,
        offsets=offsets,
        toolpaths=tuple(toolpaths),
        warnings=detection.warnings,
    )


def summarize(result: PipelineResult) -> Dict[str, object]:
    """Counts for metrics files and run summaries."""
    failed: Tuple[str, ...] = tuple(
        chain_id for chain_id, offset in result.offsets.items() if not offset.success
    )
    return {
        "chain_count": len(result.chains),
        "closed_chain_count": sum(1 for chain in result.chains if chain.closed),
        "part_count": len(result.parts),
        "hole_count": sum(len(part.chain_ids()) - 1 for part in result.parts if part.closed),
        "toolpath_count": len(result.toolpaths),
        "lead_in_count": sum(1 for path in result.toolpaths if path.lead_in.type is not LeadType.NONE),
        "lead_out_count": sum(1 for path in result.toolpaths if path.lead_out.type is not LeadType.NONE),
        "detection_warning_count": len(result.warnings),
        "toolpath_warning_count": sum(len(path.warnings) for path in result.toolpaths),
        "failed_offsets": list(failed),
    }


def result_status(result: PipelineResult) -> str:
    if any(not offset.success for offset in result.offsets.values()):
        return "error"
    if result.warnings or any(path.warnings for path in result.toolpaths):
        return "warning"
    return "ok"
