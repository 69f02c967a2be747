import numpy as np
import pytest

from shapesynth import utils


def test_expo_map_endpoints():
    assert utils.expo_map(0.0, 110.0, 1760.0) == pytest.approx(110.0)
    assert utils.expo_map(1.0, 110.0, 1760.0) == pytest.approx(1760.0)
    assert utils.expo_map(0.5, 110.0, 1760.0) == pytest.approx(440.0)


def test_db_to_byte_matches_analyser_range():
    np.testing.assert_array_equal(
        utils.db_to_byte([-120.0, -100.0, -65.0, -30.0, 0.0]),
        np.array([0, 0, 127, 255, 255], dtype=np.uint8),
    )


def test_match_channels_up_and_down_mix():
    mono = np.arange(4, dtype=float)[None, None, :]
    stereo = utils.match_channels(mono, 2)
    assert stereo.shape == (1, 2, 4)
    np.testing.assert_array_equal(stereo[0, 1], mono[0, 0])
    folded = utils.match_channels(np.stack([mono[0, 0], -mono[0, 0]])[None], 1)
    np.testing.assert_array_equal(folded, np.zeros((1, 1, 4)))


def test_linear_segment_holds_outside_the_ramp():
    times = np.array([0.0, 1.0, 1.5, 2.0, 3.0])
    np.testing.assert_allclose(utils.linear_segment(0.0, 1.0, 1.0, 2.0, times), [0.0, 0.0, 0.5, 1.0, 1.0])
    np.testing.assert_allclose(utils.linear_segment(0.0, 1.0, 1.0, 1.0, times), [0.0, 1.0, 1.0, 1.0, 1.0])


def test_assert_bcf_rejects_flat_arrays():
    with pytest.raises(ValueError):
        utils.assert_BCF(np.zeros(8), name="flat")


def test_sawtooth_blep_smooths_the_wrap():
    phase = np.array([0.0, 0.25, 0.5, 0.75, 0.999])
    dphi = np.full(5, 0.01)
    naive = 2.0 * phase - 1.0
    smoothed = utils.osc_saw_blep(phase, dphi)
    np.testing.assert_allclose(smoothed[1:4], naive[1:4])
    assert abs(smoothed[-1]) < abs(naive[-1])
    assert abs(smoothed[0]) < abs(naive[0])


def test_square_blep_meets_both_edges_halfway():
    phase = np.array([0.0, 0.25, 0.5, 0.75, 0.999])
    dphi = np.full(5, 0.01)
    out = utils.osc_square_blep(phase, dphi)
    np.testing.assert_allclose(out, [0.0, 1.0, 0.0, -1.0, -0.19], atol=1e-9)
    dense = np.linspace(0.0, 1.0, 4096, endpoint=False)
    assert np.max(np.abs(utils.osc_square_blep(dense, np.full(4096, 0.01)))) <= 1.0
