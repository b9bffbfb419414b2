"""Contracts for the toolpath-preparation pipeline.

Shape records, chains, parts, offsets, leads and the configuration structs
passed explicitly into every entry point.  Everything here is frozen: each
stage builds new values instead of patching old ones.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

Point2D = Tuple[float, float]
Vec2 = Tuple[float, float]


# ---------------------------------------------------------------------------
# Shape variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Line:
    start: Point2D
    end: Point2D
    id: Optional[str] = None
    layer: Optional[str] = None


@dataclass(frozen=True)
class Arc:
    """Circular arc; angles in radians, swept CCW unless ``clockwise``."""

    center: Point2D
    radius: float
    start_angle: float
    end_angle: float
    clockwise: bool = False
    id: Optional[str] = None
    layer: Optional[str] = None


@dataclass(frozen=True)
class Circle:
    center: Point2D
    radius: float
    id: Optional[str] = None
    layer: Optional[str] = None


@dataclass(frozen=True)
class Polyline:
    """Polyline made of Line/Arc sub-shapes (bulges already expanded)."""

    shapes: Tuple["Shape", ...]
    closed: bool = False
    id: Optional[str] = None
    layer: Optional[str] = None


@dataclass(frozen=True)
class Spline:
    """Rational B-spline.  Empty ``knots``/``weights`` mean clamped uniform / ones."""

    control_points: Tuple[Point2D, ...]
    degree: int = 3
    knots: Tuple[float, ...] = ()
    weights: Tuple[float, ...] = ()
    fit_points: Tuple[Point2D, ...] = ()
    closed: bool = False
    id: Optional[str] = None
    layer: Optional[str] = None


@dataclass(frozen=True)
class Ellipse:
    """Ellipse or elliptical arc.

    ``major_axis_endpoint`` is relative to ``center``.  A missing parameter
    range means the full ellipse.
    """

    center: Point2D
    major_axis_endpoint: Vec2
    minor_to_major_ratio: float
    start_param: Optional[float] = None
    end_param: Optional[float] = None
    id: Optional[str] = None
    layer: Optional[str] = None


Shape = Union[Line, Arc, Circle, Polyline, Spline, Ellipse]
SHAPE_TYPES = (Line, Arc, Circle, Polyline, Spline, Ellipse)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Winding(Enum):
    CLOCKWISE = "clockwise"
    COUNTERCLOCKWISE = "counterclockwise"
    NONE = "none"


class CutDirection(Enum):
    CLOCKWISE = "clockwise"
    COUNTERCLOCKWISE = "counterclockwise"
    NONE = "none"


class OffsetSide(Enum):
    INNER = "inner"
    OUTER = "outer"
    LEFT = "left"
    RIGHT = "right"


class LeadType(Enum):
    NONE = "none"
    LINE = "line"
    ARC = "arc"


# ---------------------------------------------------------------------------
# Chains and parts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SamplePoint:
    point: Point2D
    direction: Vec2


@dataclass(frozen=True)
class BoundingBox:
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def area(self) -> float:
        return self.width * self.height

    def contains_box(self, other: "BoundingBox", tolerance: float = 0.0) -> bool:
        return (
            other.min_x >= self.min_x - tolerance
            and other.min_y >= self.min_y - tolerance
            and other.max_x <= self.max_x + tolerance
            and other.max_y <= self.max_y + tolerance
        )

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.min_x, self.min_y, self.max_x, self.max_y)


@dataclass(frozen=True)
class Chain:
    """Connected group of shapes.

    ``closed`` is ``None`` until the chain has been analyzed.
    """

    id: str
    shapes: Tuple[Shape, ...]
    closed: Optional[bool] = None
    winding: Winding = Winding.NONE


@dataclass(frozen=True)
class Hole:
    chain_id: str
    bounding_box: BoundingBox
    holes: Tuple["Hole", ...] = ()


@dataclass(frozen=True)
class PartShell:
    chain_id: str
    bounding_box: BoundingBox


@dataclass(frozen=True)
class Part:
    id: str
    shell: PartShell
    holes: Tuple[Hole, ...] = ()
    closed: bool = True

    def chain_ids(self) -> List[str]:
        """Shell id followed by every hole id, depth first."""
        ids = [self.shell.chain_id]
        stack = list(reversed(self.holes))
        while stack:
            hole = stack.pop()
            ids.append(hole.chain_id)
            stack.extend(reversed(hole.holes))
        return ids


@dataclass(frozen=True)
class DetectionWarning:
    kind: str
    chain_id: str
    message: str


@dataclass(frozen=True)
class PartDetectionResult:
    parts: Tuple[Part, ...]
    warnings: Tuple[DetectionWarning, ...]
    chains: Dict[str, Chain] = field(default_factory=dict)

    def part_for_chain(self, chain_id: str) -> Optional[Part]:
        for part in self.parts:
            if chain_id in part.chain_ids():
                return part
        return None


# ---------------------------------------------------------------------------
# Offsets and leads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OffsetChain:
    id: str
    original_chain_id: str
    side: OffsetSide
    closed: bool
    shapes: Tuple[Shape, ...]
    continuous: bool = True


@dataclass(frozen=True)
class ChainOffsetResult:
    chain_id: str
    success: bool
    closed: bool
    inner: Optional[OffsetChain] = None
    outer: Optional[OffsetChain] = None
    left: Optional[OffsetChain] = None
    right: Optional[OffsetChain] = None
    warnings: Tuple[str, ...] = ()
    errors: Tuple[str, ...] = ()

    def offsets(self) -> List[OffsetChain]:
        found = [self.inner, self.outer, self.left, self.right]
        return [item for item in found if item is not None]

    def preferred(self, kerf: float) -> Optional[OffsetChain]:
        """Offset that kerf compensation cuts along (``None`` for zero kerf)."""
        if kerf == 0:
            return None
        if self.closed:
            return self.outer if kerf > 0 else self.inner
        return self.left if kerf > 0 else self.right


@dataclass(frozen=True)
class Lead:
    type: LeadType
    points: Tuple[Point2D, ...] = ()
    warnings: Tuple[str, ...] = ()


def _no_lead() -> Lead:
    return Lead(LeadType.NONE)


@dataclass(frozen=True)
class LeadResult:
    """Both leads of one chain; a disabled lead has type ``NONE`` and no points."""

    lead_in: Lead = field(default_factory=_no_lead)
    lead_out: Lead = field(default_factory=_no_lead)
    warnings: Tuple[str, ...] = ()
    severity: Optional[str] = None  # None / "info" / "warning"


@dataclass(frozen=True)
class Toolpath:
    """One cut: the shapes to follow plus the leads that join them."""

    chain_id: str
    part_id: Optional[str]
    shapes: Tuple[Shape, ...]
    offset_side: Optional[OffsetSide] = None
    lead_in: Lead = field(default_factory=_no_lead)
    lead_out: Lead = field(default_factory=_no_lead)
    warnings: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PipelineResult:
    chains: Tuple[Chain, ...]
    parts: Tuple[Part, ...]
    offsets: Dict[str, ChainOffsetResult]
    toolpaths: Tuple[Toolpath, ...]
    warnings: Tuple[DetectionWarning, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": "toolpath_prep.toolpaths.v1",
            "units": "drawing",
            "chains": [to_payload(chain) for chain in self.chains],
            "parts": [to_payload(part) for part in self.parts],
            "offsets": {key: to_payload(value) for key, value in self.offsets.items()},
            "toolpaths": [to_payload(path) for path in self.toolpaths],
            "warnings": [to_payload(warning) for warning in self.warnings],
        }


def to_payload(value: Any) -> Any:
    """JSON-ready form of a contract value.

    Dataclasses become dicts; shape records also get a ``"type"`` tag so the
    variant survives the round trip.
    """
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        payload: Dict[str, Any] = {}
        if isinstance(value, SHAPE_TYPES):
            payload["type"] = type(value).__name__.lower()
        for item in fields(value):
            payload[item.name] = to_payload(getattr(value, item.name))
        return payload
    if isinstance(value, dict):
        return {str(key): to_payload(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_payload(item) for item in value]
    if isinstance(value, float):
        return round(value, 9)
    return value


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def _require_positive(name: str, value: float) -> None:
    if not value > 0:
        raise ValueError(f"{name} must be > 0, got {value!r}")


def _require_non_negative(name: str, value: float) -> None:
    if not value >= 0:
        raise ValueError(f"{name} must be >= 0, got {value!r}")


@dataclass(frozen=True)
class ChainDetectionConfig:
    tolerance: float = 0.1
    normalize: bool = False  # reorder each chain into a walkable traversal

    def validate(self) -> None:
        _require_positive("tolerance", self.tolerance)


@dataclass(frozen=True)
class PartDetectionConfig:
    tolerance: float = 0.1
    tessellation_tolerance: float = 0.05

    def validate(self) -> None:
        _require_positive("tolerance", self.tolerance)
        _require_positive("tessellation_tolerance", self.tessellation_tolerance)


@dataclass(frozen=True)
class OffsetConfig:
    joint_tolerance: float = 0.05
    chain_tolerance: float = 0.1
    max_extension: float = 5.0
    snap_threshold: float = 0.1
    tessellation_tolerance: float = 0.05

    def validate(self) -> None:
        _require_positive("joint_tolerance", self.joint_tolerance)
        _require_positive("chain_tolerance", self.chain_tolerance)
        _require_non_negative("max_extension", self.max_extension)
        _require_non_negative("snap_threshold", self.snap_threshold)
        _require_positive("tessellation_tolerance", self.tessellation_tolerance)


@dataclass(frozen=True)
class LeadConfig:
    """One lead (in or out).  ``angle`` overrides the automatic direction (degrees, 0 = +X)."""

    type: LeadType = LeadType.NONE
    length: float = 0.0
    flip_side: bool = False
    angle: Optional[float] = None
    fit: bool = True

    def validate(self) -> None:
        _require_non_negative("length", self.length)
        if not isinstance(self.type, LeadType):
            raise ValueError(f"Unknown lead type: {self.type!r}")


@dataclass(frozen=True)
class LeadSearchConfig:
    rotation_step_deg: float = 5.0
    max_rotation_deg: float = 90.0
    length_factors: Tuple[float, ...] = (1.0, 0.75, 0.5, 0.25)
    sample_spacing: float = 0.5
    tolerance: float = 0.1

    def validate(self) -> None:
        _require_positive("rotation_step_deg", self.rotation_step_deg)
        _require_non_negative("max_rotation_deg", self.max_rotation_deg)
        _require_positive("sample_spacing", self.sample_spacing)
        _require_positive("tolerance", self.tolerance)
        if not self.length_factors:
            raise ValueError("length_factors must not be empty")
        for factor in self.length_factors:
            if not 0 < factor <= 1:
                raise ValueError(f"length factor out of range (0, 1]: {factor!r}")


@dataclass(frozen=True)
class PipelineConfig:
    """Everything the end-to-end pipeline needs."""

    chains: ChainDetectionConfig = field(default_factory=ChainDetectionConfig)
    parts: PartDetectionConfig = field(default_factory=PartDetectionConfig)
    offset: OffsetConfig = field(default_factory=OffsetConfig)
    lead_in: LeadConfig = field(default_factory=LeadConfig)
    lead_out: LeadConfig = field(default_factory=LeadConfig)
    lead_search: LeadSearchConfig = field(default_factory=LeadSearchConfig)
    kerf: float = 0.0
    cut_direction: CutDirection = CutDirection.COUNTERCLOCKWISE
    max_workers: int = 1

    def validate(self) -> None:
        self.chains.validate()
        self.parts.validate()
        self.offset.validate()
        self.lead_in.validate()
        self.lead_out.validate()
        self.lead_search.validate()
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers!r}")
