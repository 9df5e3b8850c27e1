import pytest

from mocap_ekf.low_pass import LowPassFilter


def test_first_sample_seeds_filter():
    lpf = LowPassFilter(alpha=0.7)
    assert not lpf.seeded
    assert lpf.value is None
    assert lpf.update(3.5) == 3.5
    assert lpf.seeded


def test_alpha_one_holds_previous_output():
    lpf = LowPassFilter(alpha=1.0)
    lpf.update(2.0)
    for u in (-5.0, 100.0, 0.0):
        assert lpf.update(u) == 2.0


def test_alpha_zero_passes_input():
    lpf = LowPassFilter(alpha=0.0)
    lpf.update(2.0)
    for u in (-5.0, 100.0, 0.0):
        assert lpf.update(u) == u


def test_recursion_matches_closed_form():
    lpf = LowPassFilter(alpha=0.2)
    lpf.update(10.0)
    assert lpf.update(0.0) == pytest.approx(2.0)
    assert lpf.update(0.0) == pytest.approx(0.4)


def test_reset_reseeds_on_next_sample():
    lpf = LowPassFilter(alpha=0.5)
    lpf.update(1.0)
    lpf.update(3.0)
    lpf.reset()
    assert lpf.update(-4.0) == -4.0


def test_alpha_out_of_range_rejected():
    with pytest.raises(ValueError):
        LowPassFilter(alpha=1.5)
    with pytest.raises(ValueError):
        LowPassFilter(alpha=-0.1)
