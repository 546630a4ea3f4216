import numpy as np
import pytest

from campy_qmra import (
    dose_response,
    DoseResponse,
    InvalidDose,
    InvalidParameters,
    DOSE_N50,
)


def test_zero_dose_is_exactly_zero():
    assert dose_response(0.0) == 0.0
    assert np.all(dose_response(np.zeros(5)) == 0.0)


def test_median_infectious_dose_gives_half():
    assert dose_response(DOSE_N50) == pytest.approx(0.5, rel=1e-9)
    assert DoseResponse(alpha=0.3, n50=50.0).probability(50.0) == pytest.approx(0.5, rel=1e-9)


def test_monotone_and_open_unit_interval():
    doses = np.concatenate([[1e-300, 1e-12, 1e-6], np.logspace(-3, 7, 200)])
    p = dose_response(doses)
    assert np.all(np.diff(p) >= 0)
    assert np.all(p > 0.0)
    assert np.all(p < 1.0)


def test_tiny_dose_keeps_precision():
    # first-order: alpha * dose / N50 * (2^(1/alpha) - 1)
    d = 1e-9
    slope = 0.145 * (2 ** (1 / 0.145) - 1) / 896.0
    assert dose_response(d) == pytest.approx(slope * d, rel=1e-6)


def test_scalar_in_scalar_out():
    assert isinstance(dose_response(10.0), float)
    assert dose_response([1.0, 2.0]).shape == (2,)


def test_negative_or_nan_dose_rejected():
    with pytest.raises(InvalidDose):
        dose_response(-1.0)
    with pytest.raises(InvalidDose):
        dose_response(np.array([1.0, -1e-12]))
    with pytest.raises(InvalidDose):
        dose_response(float("nan"))


@pytest.mark.parametrize("alpha,n50", [(0.0, 896.0), (0.145, 0.0), (-1.0, 10.0), (1e-6, 896.0)])
def test_bad_constants_rejected(alpha, n50):
    with pytest.raises(InvalidParameters):
        DoseResponse(alpha=alpha, n50=n50)
