"""Tests for lead-in / lead-out synthesis."""
import math

import pytest

from toolpath_prep.chains import analyze_chain
from toolpath_prep.containment import PartRegion
from toolpath_prep.contracts import (
    Chain,
    Circle,
    CutDirection,
    Lead,
    LeadConfig,
    LeadSearchConfig,
    LeadType,
    Line,
    OffsetSide,
    Winding,
)
from toolpath_prep.leads import (
    arc_lead_points,
    base_direction,
    build_lead_points,
    calculate_leads,
    lead_violations,
    rotation_offsets,
    validate_lead_config,
)
from toolpath_prep.offset import offset_chain
from toolpath_prep.parts import detect_parts
from toolpath_prep.shapes import distance, polyline_from_vertices


def _slot_chain():
    """Notched plate outline starting halfway up the slot's left wall."""
    corners = [
        (19, 35), (19, 40), (0, 40), (0, 0), (40, 0), (40, 40),
        (21, 40), (21, 30), (19, 30),
    ]
    lines = tuple(Line(corners[i], corners[(i + 1) % len(corners)]) for i in range(len(corners)))
    return analyze_chain(Chain("slot", lines), 0.1)


def _plate_with_pinhole():
    shell = analyze_chain(Chain("shell", (polyline_from_vertices(
        [(0, 0), (20, 0), (20, 20), (0, 20)], closed=True),)), 0.1)
    hole = analyze_chain(Chain("hole", (Circle((10, 10), 1),)), 0.1)
    detection = detect_parts([shell, hole])
    return detection.parts[0], detection.chains


class TestLeadGeometry:

    def test_rotation_offsets_alternate(self):
        assert rotation_offsets(5, 15) == [0.0, 5, -5, 10, -10, 15, -15]

    def test_line_lead_in_ends_at_connection(self):
        points = build_lead_points(LeadType.LINE, (0, 0), (1, 0), (0, 1), 5.0, 0.5, lead_in=True)
        assert points[0] == pytest.approx((5, 0))
        assert points[-1] == (0, 0)
        assert len(points) == 11

    def test_line_lead_out_starts_at_connection(self):
        points = build_lead_points(LeadType.LINE, (1, 1), (0, 1), (1, 0), 2.0, 0.5, lead_in=False)
        assert points[0] == (1, 1)
        assert points[-1] == pytest.approx((1, 3))

    def test_arc_lead_is_a_quarter_circle(self):
        length = math.pi
        points = arc_lead_points((0, 0), (0, 1), (1, 0), length, 0.1, lead_in=True)
        radius = length / (math.pi / 2)
        assert points[-1] == (0, 0)
        for p in points:
            assert distance(p, (0, radius)) == pytest.approx(radius)
        travelled = sum(distance(points[i], points[i + 1]) for i in range(len(points) - 1))
        assert travelled == pytest.approx(length, rel=1e-2)
        # arrives moving along the cut tangent
        dx, dy = points[-1][0] - points[-2][0], points[-1][1] - points[-2][1]
        assert dx > 0
        assert abs(dy) < dx


class TestValidation:
    """Advisory checks on lead settings."""

    def test_none_type_with_length(self, ccw_square_chain):
        warnings, severity = validate_lead_config(
            LeadConfig(LeadType.NONE, 3.0), ccw_square_chain, "Lead-in")
        assert severity == "info"
        assert 'type is "none"' in warnings[0]

    def test_very_long_lead(self, ccw_square_chain):
        warnings, severity = validate_lead_config(
            LeadConfig(LeadType.LINE, 25.0), ccw_square_chain, "Lead-out")
        assert severity == "warning"
        assert "very large" in warnings[0]

    def test_very_short_lead(self, ccw_square_chain):
        warnings, severity = validate_lead_config(
            LeadConfig(LeadType.ARC, 0.3), ccw_square_chain, "Lead-in")
        assert severity == "info"
        assert "very short" in warnings[0]

    def test_reasonable_lead(self, ccw_square_chain):
        assert validate_lead_config(
            LeadConfig(LeadType.LINE, 5.0), ccw_square_chain, "Lead-in") == ([], None)

    def test_negative_length_rejected(self, ccw_square_chain):
        with pytest.raises(ValueError):
            calculate_leads(ccw_square_chain, LeadConfig(LeadType.LINE, -1.0), LeadConfig())


class TestDirection:
    """Base direction comes from local geometry at the connection point."""

    def test_square_corner_points_outward(self, ccw_square_chain):
        chain = analyze_chain(ccw_square_chain, 0.1)
        direction, tangent = base_direction(chain, True, 5.0, None, LeadSearchConfig())
        assert direction == pytest.approx((-math.sqrt(0.5), -math.sqrt(0.5)))
        assert tangent == pytest.approx((1, 0))

    def test_lead_in_outside_square(self, ccw_square_chain):
        chain = analyze_chain(ccw_square_chain, 0.1)
        result = calculate_leads(
            chain, LeadConfig(LeadType.LINE, 5.0), LeadConfig(),
            cut_direction=CutDirection.COUNTERCLOCKWISE,
        )
        assert result.lead_out == Lead(LeadType.NONE)
        assert result.lead_in.points[-1] == pytest.approx((0, 0))
        far = result.lead_in.points[0]
        assert far[0] < 0 and far[1] < 0
        assert distance(far, (0, 0)) == pytest.approx(5.0)

    def test_angle_override_is_absolute(self, ccw_square_chain):
        chain = analyze_chain(ccw_square_chain, 0.1)
        result = calculate_leads(
            chain, LeadConfig(LeadType.LINE, 2.0, angle=90.0), LeadConfig(),
            cut_direction=CutDirection.COUNTERCLOCKWISE,
        )
        assert result.lead_in.points[0] == pytest.approx((0, 2), abs=1e-12)

    def test_flip_side(self):
        chain = Chain("open", (Line((0, 0), (10, 0)),), closed=False)
        plain = calculate_leads(chain, LeadConfig(LeadType.LINE, 2.0), LeadConfig())
        flipped = calculate_leads(chain, LeadConfig(LeadType.LINE, 2.0, flip_side=True), LeadConfig())
        assert plain.lead_in.points[0] == pytest.approx((0, 2))
        assert flipped.lead_in.points[0] == pytest.approx((0, -2))

    def test_cut_direction_reverses_chain(self, ccw_square_chain):
        chain = analyze_chain(ccw_square_chain, 0.1)
        assert chain.winding is Winding.COUNTERCLOCKWISE
        result = calculate_leads(
            chain, LeadConfig(LeadType.LINE, 2.0), LeadConfig(LeadType.LINE, 2.0),
            cut_direction=CutDirection.CLOCKWISE,
        )
        # reversed traversal starts where the original ended: back at (0, 0)
        assert result.lead_in.points[-1] == pytest.approx((0, 0))
        assert result.lead_out.points[0] == pytest.approx((0, 0))

    def test_disabled_leads_are_none_type_leads(self, ccw_square_chain):
        chain = analyze_chain(ccw_square_chain, 0.1)
        result = calculate_leads(
            chain, LeadConfig(LeadType.NONE, 3.0), LeadConfig(LeadType.LINE, 0.0),
            cut_direction=CutDirection.COUNTERCLOCKWISE,
        )
        for lead in (result.lead_in, result.lead_out):
            assert lead.type is LeadType.NONE
            assert lead.points == ()
            assert lead.warnings == ()

    def test_closed_chain_without_cut_direction_is_flagged(self, ccw_square_chain):
        chain = analyze_chain(ccw_square_chain, 0.1)
        result = calculate_leads(chain, LeadConfig(LeadType.LINE, 2.0), LeadConfig())
        assert any("cut direction" in w for w in result.warnings)
        assert result.severity == "info"


class TestCollisionAvoidance:
    """Leads avoid the part's solid region wherever they can."""

    def test_concave_slot_search_beats_base_candidate(self):
        chain = _slot_chain()
        detection = detect_parts([chain])
        part = detection.parts[0]
        region = PartRegion(part, detection.chains)
        search = LeadSearchConfig()

        direction, tangent = base_direction(chain, True, 5.0, region, search)
        assert direction == pytest.approx((1, 0))
        baseline = build_lead_points(LeadType.LINE, (19, 35), direction, tangent, 5.0,
                                     search.sample_spacing, lead_in=True)
        baseline_hits = lead_violations(baseline, region, (19, 35), search.tolerance)
        assert baseline_hits > 0

        result = calculate_leads(
            chain, LeadConfig(LeadType.LINE, 5.0), LeadConfig(),
            cut_direction=CutDirection.COUNTERCLOCKWISE,
            part=part, chains=detection.chains, search=search,
        )
        lead = result.lead_in
        hits = lead_violations(lead.points, region, (19, 35), search.tolerance)
        assert hits < baseline_hits
        assert hits == 0
        assert lead.warnings == ()
        assert distance(lead.points[0], (19, 35)) == pytest.approx(5.0)

    def test_unavoidable_collision_is_reported(self):
        part, arena = _plate_with_pinhole()
        result = calculate_leads(
            arena["hole"], LeadConfig(LeadType.LINE, 5.0, fit=False), LeadConfig(),
            cut_direction=CutDirection.COUNTERCLOCKWISE, part=part, chains=arena,
        )
        assert result.lead_in is not None
        assert result.lead_in.points
        assert result.severity == "warning"
        assert any("hole" in w and "cannot be avoided" in w for w in result.warnings)

    def test_shortened_lead_fits_small_hole(self):
        part, arena = _plate_with_pinhole()
        result = calculate_leads(
            arena["hole"], LeadConfig(LeadType.LINE, 5.0), LeadConfig(),
            cut_direction=CutDirection.COUNTERCLOCKWISE, part=part, chains=arena,
        )
        lead = result.lead_in
        assert lead.warnings == ()
        assert distance(lead.points[0], lead.points[-1]) < 2.0

    def test_offset_chain_replaces_source_geometry(self, ccw_square_chain):
        chain = analyze_chain(ccw_square_chain, 0.1)
        outer = offset_chain(chain, 1.0).outer
        assert outer.side is OffsetSide.OUTER
        result = calculate_leads(
            chain, LeadConfig(LeadType.LINE, 2.0), LeadConfig(),
            cut_direction=CutDirection.COUNTERCLOCKWISE, offset_chain=outer,
        )
        assert result.lead_in.points[-1] == pytest.approx((-1, -1))
