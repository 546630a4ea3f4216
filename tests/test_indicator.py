import numpy as np
import pytest

from campy_qmra import (
    IndicatorTable,
    InvalidIndicatorTable,
    SimulationResults,
    risk_at_percentiles,
)


def make_table():
    return IndicatorTable.from_pairs([(50, 40), (80, 540), (95, 1000)], [0.4, 2.4, 8.0])


def test_exact_entry_returns_tabulated_risk():
    table = make_table()
    assert table.risk_for_count(40) == 0.4
    assert table.risk_for_count(540) == 2.4
    assert table.risk_for_count(1000) == 8.0


def test_clamps_outside_table():
    table = make_table()
    assert table.risk_for_count(0) == 0.4
    assert table.risk_for_count(1e6) == 8.0


def test_linear_between_entries():
    table = make_table()
    assert table.risk_for_count(290) == pytest.approx(1.4)


def test_inverse_lookup():
    table = make_table()
    assert table.count_for_risk(2.4) == pytest.approx(540.0)
    assert table.count_for_risk(5.2) == pytest.approx(770.0)
    assert table.count_for_risk(100.0) == 1000.0


def test_inverse_lookup_needs_increasing_risk():
    table = IndicatorTable.from_pairs([(50, 40), (80, 540)], [1.0, 1.0])
    assert table.risk_for_count(100) == 1.0
    with pytest.raises(InvalidIndicatorTable):
        table.count_for_risk(1.0)


@pytest.mark.parametrize("pairs,risks", [
    ([], []),
    ([(50, 40), (80, 540)], [0.4]),
    ([(50, 540), (80, 40)], [0.4, 2.4]),
    ([(80, 40), (50, 540)], [0.4, 2.4]),
    ([(50, -1), (80, 540)], [0.4, 2.4]),
    ([(50, 40), (120, 540)], [0.4, 2.4]),
    ([(50, 40), (80, float("nan"))], [0.4, 2.4]),
])
def test_malformed_tables_rejected(pairs, risks):
    with pytest.raises(InvalidIndicatorTable):
        IndicatorTable.from_pairs(pairs, risks)


def test_risk_at_percentiles():
    outcomes = np.arange(101)
    r = risk_at_percentiles(outcomes, 100, [0, 50, 100])
    assert np.allclose(r, [0.0, 50.0, 100.0])


def test_from_simulation_pairs_risk_with_percentiles():
    res = SimulationResults(
        outcomes=np.arange(101),
        n_people=1000,
        n_trials=101,
        seed_entropy=0,
        shared_water_body=True,
        concentration=None,
    )
    table = IndicatorTable.from_simulation([(50, 40), (90, 800)], res)
    assert table.risks == pytest.approx((5.0, 9.0))
    assert table.risk_for_count(800) == pytest.approx(9.0)
