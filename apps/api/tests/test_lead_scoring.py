from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.crm.scoring import (
    MAX_SCORE,
    EngagementCounts,
    LeadSnapshot,
    ScoreBreakdown,
    build_reasons,
    compute_score,
)


NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _counts(counts: EngagementCounts):
    calls: list[int] = []

    def load() -> EngagementCounts:
        calls.append(1)
        return counts

    return load, calls


def _never_called() -> EngagementCounts:
    raise AssertionError("relationship counts must not be loaded for sold leads")


def test_sold_status_short_circuits_without_loading_counts() -> None:
    lead = LeadSnapshot(status="SOLD")

    result = compute_score(lead, _never_called, NOW)

    assert result.score == MAX_SCORE
    assert result.breakdown.sold_override is True
    assert result.reasons == ["Lead is sold"]


def test_sold_timestamp_alone_also_overrides() -> None:
    lead = LeadSnapshot(status="NEGOTIATING", sold_at=NOW - timedelta(days=1))

    assert compute_score(lead, _never_called, NOW).score == MAX_SCORE


def test_contactability_is_additive_and_capped() -> None:
    full = LeadSnapshot(
        status="NEW",
        first_name="Dana",
        last_name="Cruz",
        email="dana@example.com",
        phone="+1 (555) 010-2030",
        vehicle_interest="RAV4",
    )
    partial = LeadSnapshot(status="NEW", first_name="Dana", email="dana@example.com", phone="555-0102")

    load, _ = _counts(EngagementCounts())
    assert compute_score(full, load, NOW).breakdown.contactability == 30
    # short phone does not count, lone first name is a partial
    assert compute_score(partial, load, NOW).breakdown.contactability == 8 + 3


def test_engagement_bonuses_are_independent_and_capped_at_35() -> None:
    lead = LeadSnapshot(status="NEW", email="x@example.com")

    outbound_only, _ = _counts(EngagementCounts(outbound_messages=1))
    everything, _ = _counts(EngagementCounts(outbound_messages=2, inbound_messages=1, calls=2))

    assert compute_score(lead, outbound_only, NOW).breakdown.engagement == 10
    assert compute_score(lead, everything, NOW).breakdown.engagement == 35


def test_appointment_tiers_are_exclusive() -> None:
    lead = LeadSnapshot(status="NEW", email="x@example.com")

    showed, _ = _counts(EngagementCounts(showed_appointments=1, upcoming_appointments=2))
    upcoming, _ = _counts(EngagementCounts(upcoming_appointments=1))
    none, _ = _counts(EngagementCounts())

    assert compute_score(lead, showed, NOW).breakdown.appointment == 25
    assert compute_score(lead, upcoming, NOW).breakdown.appointment == 15
    assert compute_score(lead, none, NOW).breakdown.appointment == 0


@pytest.mark.parametrize(
    ("status", "points"),
    [("NEW", 0), ("CONTACTED", 5), ("QUALIFIED", 10), ("APPOINTMENT_SET", 15), ("NEGOTIATING", 20), ("LOST", 0)],
)
def test_stage_points(status: str, points: int) -> None:
    load, _ = _counts(EngagementCounts())
    assert compute_score(LeadSnapshot(status=status), load, NOW).breakdown.stage == points


@pytest.mark.parametrize(
    ("age", "points"),
    [
        (timedelta(hours=2), 5),
        (timedelta(days=2), 2),
        (timedelta(days=7), 0),
        (timedelta(days=14), 0),
        (timedelta(days=15), -5),
    ],
)
def test_freshness_bands(age: timedelta, points: int) -> None:
    load, _ = _counts(EngagementCounts())
    lead = LeadSnapshot(status="NEW", last_activity_at=NOW - age)
    assert compute_score(lead, load, NOW).breakdown.freshness == points


def test_no_show_penalty_and_clamp_at_zero() -> None:
    lead = LeadSnapshot(status="LOST", last_activity_at=NOW - timedelta(days=30))
    load, calls = _counts(EngagementCounts(no_show_appointments=2))

    result = compute_score(lead, load, NOW)

    assert result.breakdown.penalty == -10
    assert result.breakdown.freshness == -5
    assert result.score == 0
    assert calls == [1]
    assert "Missed appointment (-10)" in result.reasons
    assert "No activity in over 14 days (-5)" in result.reasons


def test_score_is_bounded_at_100_for_an_active_lead() -> None:
    lead = LeadSnapshot(
        status="NEGOTIATING",
        first_name="A",
        last_name="B",
        email="a@example.com",
        phone="5550102030",
        vehicle_interest="Truck",
        last_activity_at=NOW,
    )
    load, _ = _counts(EngagementCounts(outbound_messages=5, inbound_messages=3, calls=3, showed_appointments=1))

    result = compute_score(lead, load, NOW)

    # 30 + 35 + 25 + 20 + 5 = 115 before the clamp
    assert result.score == 100
    assert result.breakdown.sold_override is False


def test_scoring_is_deterministic() -> None:
    lead = LeadSnapshot(status="QUALIFIED", first_name="Kim", email="kim@example.com", last_activity_at=NOW - timedelta(days=2))
    load, _ = _counts(EngagementCounts(outbound_messages=3, upcoming_appointments=1))

    first = compute_score(lead, load, NOW)
    second = compute_score(lead, load, NOW)

    assert first == second
    assert first.as_dict() == second.as_dict()


def test_reasons_mirror_breakdown() -> None:
    breakdown = ScoreBreakdown(contactability=14, engagement=20, appointment=15, stage=5, freshness=2)

    reasons = build_reasons(breakdown, EngagementCounts(outbound_messages=3))

    assert reasons == [
        "Contact details on file (+14)",
        "Two-way engagement recorded (+20)",
        "Upcoming appointment booked (+15)",
        "Pipeline stage progress (+5)",
        "Recent activity (+2)",
        "No reply from the customer yet",
    ]
    assert build_reasons(ScoreBreakdown()) == ["No scoring signals yet"]
