"""Public API for 2D toolpath preparation: chains, parts, offsets and leads."""

from toolpath_prep.chains import detect_chains, normalize_chain, reverse_chain
from toolpath_prep.contracts import (
    Arc,
    Chain,
    ChainDetectionConfig,
    ChainOffsetResult,
    Circle,
    CutDirection,
    Ellipse,
    Lead,
    LeadConfig,
    LeadResult,
    LeadSearchConfig,
    LeadType,
    Line,
    OffsetChain,
    OffsetConfig,
    OffsetSide,
    Part,
    PartDetectionConfig,
    PartDetectionResult,
    PipelineConfig,
    PipelineResult,
    Polyline,
    Spline,
    Toolpath,
    Winding,
)
from toolpath_prep.dxf_import import shapes_from_dxf
from toolpath_prep.leads import calculate_leads
from toolpath_prep.offset import offset_chain
from toolpath_prep.parts import detect_parts
from toolpath_prep.pipeline import prepare_toolpaths
from toolpath_prep.shapes import key_points, sample_at_intervals
from toolpath_prep.winding import detect_winding

__all__ = [
    "Arc",
    "Chain",
    "ChainDetectionConfig",
    "ChainOffsetResult",
    "Circle",
    "CutDirection",
    "Ellipse",
    "Lead",
    "LeadConfig",
    "LeadResult",
    "LeadSearchConfig",
    "LeadType",
    "Line",
    "OffsetChain",
    "OffsetConfig",
    "OffsetSide",
    "Part",
    "PartDetectionConfig",
    "PartDetectionResult",
    "PipelineConfig",
    "PipelineResult",
    "Polyline",
    "Spline",
    "Toolpath",
    "Winding",
    "calculate_leads",
    "detect_chains",
    "detect_parts",
    "detect_winding",
    "key_points",
    "normalize_chain",
    "offset_chain",
    "prepare_toolpaths",
    "reverse_chain",
    "sample_at_intervals",
    "shapes_from_dxf",
]
