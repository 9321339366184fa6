"""
test_aggregator.py — Testes da consolidação de resultados.
"""

import pytest

from steelplanner.aggregator import aggregate, module_usage
from steelplanner.models import CutItem, CuttingPlan, Remainder, Solution, SourceType, UnsatisfiedDemand


def _module_plan(source_length, cut_length, waste=0.0, remainders=()):
    return CuttingPlan(
        source_type=SourceType.MODULE,
        source_id=f"HRB400-20-{source_length:g}",
        specification="HRB400-20",
        source_length=source_length,
        cuts=[CutItem(design_piece_id="viga", length=cut_length)],
        waste=waste,
        new_remainders=list(remainders),
    )


@pytest.fixture
def solutions():
    plans = [
        _module_plan(6000, 4000, waste=100, remainders=[
            Remainder(id="R1", specification="HRB400-20", length=1900, kind="pseudo"),
        ]),
        _module_plan(6000, 5800, waste=200),
        _module_plan(9000, 8000, remainders=[
            Remainder(id="R2", specification="HRB400-20", length=1000),
        ]),
        CuttingPlan(
            source_type=SourceType.REMAINDER,
            source_id="R1",
            specification="HRB400-20",
            source_length=1900,
            cuts=[CutItem(design_piece_id="grampo", length=1800)],
            waste=100,
        ),
    ]
    return {
        "HRB400-20": Solution(
            group_key="HRB400-20",
            cutting_plans=plans,
            unsatisfied=[UnsatisfiedDemand(design_piece_id="viga_longa", length=12000, reason="sem barra")],
        )
    }


class TestAggregate:

    def test_totals(self, solutions):
        result = aggregate(solutions, execution_time=12.5)

        assert result.success is True
        assert result.total_module_used == 3
        assert result.total_material == pytest.approx(21000)
        assert result.total_waste == pytest.approx(400)
        assert result.total_real_remainder == pytest.approx(1000)
        assert result.total_pseudo_remainder == pytest.approx(1900)
        assert result.execution_time == 12.5

    def test_loss_rate(self, solutions):
        result = aggregate(solutions)

        assert result.total_loss_rate == pytest.approx(400 / 21000 * 100)

    def test_unsatisfied_and_remainders_are_collected(self, solutions):
        result = aggregate(solutions)

        assert [u.design_piece_id for u in result.unsatisfied] == ["viga_longa"]
        assert [r.id for r in result.real_remainders] == ["R2"]

    def test_empty_solution_has_zero_loss(self):
        result = aggregate({})

        assert result.total_material == 0
        assert result.total_loss_rate == 0.0
        assert result.module_usage == []


class TestResultContract:

    def test_report_fields_are_fixed(self, solutions):
        fields = aggregate(solutions).report_fields()

        assert set(fields) == {
            "success", "solutions", "totalModuleUsed", "totalMaterial", "totalWaste",
            "totalRealRemainder", "totalPseudoRemainder", "totalLossRate", "executionTime", "error",
        }

    def test_extensions_default_to_empty(self):
        result = aggregate({})

        assert result.unsatisfied == []
        assert result.module_usage == []
        assert result.real_remainders == []


class TestModuleUsage:

    def test_grouped_by_specification_and_length(self, solutions):
        usage = aggregate(solutions).module_usage

        assert [(u.length, u.count) for u in usage] == [(6000, 2), (9000, 1)]
        six = usage[0]
        assert six.total_length == pytest.approx(12000)
        assert six.total_used == pytest.approx(9800)
        assert six.total_waste == pytest.approx(300)
        assert six.total_remainder == pytest.approx(1900)
        assert six.utilization == pytest.approx((12000 - 300) / 12000 * 100)

    def test_no_rows(self):
        assert module_usage([]) == []
