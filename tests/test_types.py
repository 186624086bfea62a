"""Tests for evodyn.types: kind enums and result types."""

import pytest

from evodyn.types import (
    AnalyticMethod,
    AnalyticResult,
    ContinuousMutationType,
    DiscreteMutationType,
    FitnessMapType,
    SetResult,
    SpeciesUpdateType,
    UpdateType,
    accepted,
    parse_kind,
    rejected,
)


# ── Enum tests ────────────────────────────────────────────────────────

class TestKinds:
    def test_yaml_keys(self):
        assert FitnessMapType("exponential") is FitnessMapType.EXPONENTIAL
        assert UpdateType("best-random") is UpdateType.BEST_RANDOM
        assert UpdateType("imitate-better") is UpdateType.IMITATE_BETTER
        assert SpeciesUpdateType("turns") is SpeciesUpdateType.TURNS

    def test_closed_sets(self):
        assert len(FitnessMapType) == 4
        assert len(DiscreteMutationType) == 4
        assert len(ContinuousMutationType) == 4
        assert len(UpdateType) == 7
        assert len(SpeciesUpdateType) == 4


class TestParseKind:
    def test_member_passthrough(self):
        assert parse_kind(UpdateType, UpdateType.THERMAL) is UpdateType.THERMAL

    def test_value(self):
        assert parse_kind(UpdateType, "best-response") is UpdateType.BEST_RESPONSE

    def test_name_case_insensitive(self):
        assert parse_kind(UpdateType, "BEST_RANDOM") is UpdateType.BEST_RANDOM
        assert parse_kind(FitnessMapType, " Convex ") is FitnessMapType.CONVEX

    def test_unknown(self):
        assert parse_kind(UpdateType, "fermi-dirac") is None
        assert parse_kind(UpdateType, 3) is None

    def test_other_enum_member_rejected(self):
        assert parse_kind(FitnessMapType, UpdateType.BEST) is None


# ── Result types ──────────────────────────────────────────────────────

class TestSetResult:
    def test_truthiness(self):
        assert SetResult(ok=True)
        assert not SetResult(ok=False)

    def test_accepted(self):
        assert accepted(True).changed
        assert not accepted(False).changed
        assert accepted(False).ok

    def test_rejected_warns(self):
        with pytest.warns(UserWarning, match="bad value"):
            r = rejected("bad value")
        assert not r.ok
        assert not r.changed
        assert r.reason == "bad value"


class TestAnalyticResult:
    def test_exact_default(self):
        r = AnalyticResult(0.25)
        assert r.available
        assert r.exact
        assert r.value == 0.25

    def test_unavailable_distinct_from_zero(self):
        r = AnalyticResult.unavailable("too large")
        assert not r.available
        assert r.value is None
        assert r.method is AnalyticMethod.UNAVAILABLE
        assert AnalyticResult(0.0).available

    def test_approximation(self):
        r = AnalyticResult(0.5, AnalyticMethod.INFINITE_POPULATION)
        assert r.available
        assert not r.exact
