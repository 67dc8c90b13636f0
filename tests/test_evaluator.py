import numpy as np
import pytest
from severity import BurnSeverityEvaluator, Sample, SeverityConfig


@pytest.fixture
def evaluator(settings):
    return BurnSeverityEvaluator(settings)


def test_burnt_pixel_is_opaque_red(evaluator, burnt_pixel):
    red, green, blue, alpha = evaluator.evaluate_pixel(burnt_pixel)
    assert (red, green, blue) == (255, 0, 0)
    assert alpha == pytest.approx(1.0)


def test_pixel_rbr(evaluator, burnt_pixel):
    assert evaluator.pixel_rbr(*burnt_pixel) == pytest.approx(1.0614, abs=1e-4)


def test_moderate_pixel(evaluator):
    # pre NBR 0.64, post NBR 0.32 -> RBR 0.4
    samples = [Sample(0.82, 0.18, 4), Sample(0.66, 0.34, 5)]
    red, green, blue, alpha = evaluator.evaluate_pixel(samples)
    assert (red, green, blue) == (102, 153, 0)
    assert alpha == pytest.approx(0.25)


def test_unburnt_pixel_is_transparent_but_colored(evaluator):
    samples = [Sample(0.5, 0.1, 4), Sample(0.5, 0.1, 4)]
    assert evaluator.evaluate_pixel(samples) == (0, 255, 0, 0.0)


@pytest.mark.parametrize('count', [0, 1, 3])
def test_wrong_sample_count_is_transparent(evaluator, count):
    samples = [Sample(0.5, 0.1, 4)] * count
    assert evaluator.evaluate_pixel(samples) == (0, 0, 0, 0)


@pytest.mark.parametrize('scl', [0, 1, 3, 6, 7, 8, 9, 10, 11])
def test_excluded_surface_is_transparent(evaluator, scl):
    assert evaluator.evaluate_pixel([Sample(0.5, 0.1, scl), Sample(0.2, 0.3, 4)]) == (0, 0, 0, 0)
    assert evaluator.evaluate_pixel([Sample(0.5, 0.1, 4), Sample(0.2, 0.3, scl)]) == (0, 0, 0, 0)


def test_data_mask_ignored_by_default(evaluator):
    samples = [Sample(0.5, 0.1, 4, data_mask=0), Sample(0.2, 0.3, 4)]
    assert evaluator.evaluate_pixel(samples)[3] == pytest.approx(1.0)


def test_data_mask_when_enabled(burnt_pixel):
    evaluator = BurnSeverityEvaluator(SeverityConfig(use_data_mask=True))
    samples = [Sample(0.5, 0.1, 4, data_mask=0), Sample(0.2, 0.3, 4)]
    assert evaluator.evaluate_pixel(samples) == (0, 0, 0, 0)
    assert evaluator.evaluate_pixel(burnt_pixel)[3] == pytest.approx(1.0)


def test_zero_reflectance_is_transparent(evaluator):
    assert evaluator.evaluate_pixel([Sample(0.0, 0.0, 4), Sample(0.2, 0.3, 4)]) == (0, 0, 0, 0)
    assert evaluator.evaluate_pixel([Sample(0.5, 0.1, 4), Sample(0.0, 0.0, 4)]) == (0, 0, 0, 0)


def test_zero_pre_fire_nbr_is_transparent(evaluator):
    assert evaluator.evaluate_pixel([Sample(0.3, 0.3, 4), Sample(0.2, 0.3, 4)]) == (0, 0, 0, 0)


def test_output_ranges(evaluator):
    rng = np.random.default_rng(7)
    for _ in range(500):
        nir, swir, post_nir, post_swir = rng.uniform(0, 1, 4)
        red, green, blue, alpha = evaluator.evaluate_pixel([Sample(nir, swir, 4), Sample(post_nir, post_swir, 5)])
        for channel in (red, green, blue):
            assert isinstance(channel, int)
            assert 0 <= channel <= 255
        assert 0.0 <= alpha <= 1.0


def _raster_samples():
    # dataMask flags one pixel in each scene as no data
    pre = Sample(np.array([[0.5, 0.5, 0.82], [0.0, 0.3, 0.5]]),
                 np.array([[0.1, 0.1, 0.18], [0.0, 0.3, 0.1]]),
                 np.array([[4, 4, 4], [4, 4, 9]]),
                 np.array([[1, 1, 0], [1, 1, 1]]))
    post = Sample(np.array([[0.2, 0.5, 0.66], [0.2, 0.2, 0.2]]),
                  np.array([[0.3, 0.1, 0.34], [0.3, 0.3, 0.3]]),
                  np.array([[4, 4, 5], [4, 4, 4]]),
                  np.array([[1, 0, 1], [1, 1, 1]]))
    return pre, post


def test_relativized_burn_ratio_marks_invalid_pixels(evaluator):
    values = evaluator.relativized_burn_ratio(*_raster_samples())
    assert values[0, 0] == pytest.approx(1.0614, abs=1e-4)
    assert values[0, 1] == pytest.approx(0.0)
    assert values[0, 2] == pytest.approx(0.4)
    assert np.isnan(values[1]).all()


def test_raster_data_mask_when_enabled():
    evaluator = BurnSeverityEvaluator(SeverityConfig(use_data_mask=True))
    pre, post = _raster_samples()
    values = evaluator.relativized_burn_ratio(pre, post)
    assert values[0, 0] == pytest.approx(1.0614, abs=1e-4)
    assert np.isnan(values[0, 1])
    assert np.isnan(values[0, 2])

    rgba = evaluator.evaluate_raster(pre, post)
    assert rgba[0, 1].tolist() == [0, 0, 0, 0]
    assert rgba[0, 2].tolist() == [0, 0, 0, 0]
    assert rgba[0, 0].tolist() == pytest.approx([255, 0, 0, 1.0])


@pytest.mark.parametrize('use_data_mask', [False, True])
def test_raster_matches_pixel_evaluation(use_data_mask):
    evaluator = BurnSeverityEvaluator(SeverityConfig(use_data_mask=use_data_mask))
    pre, post = _raster_samples()
    rgba = evaluator.evaluate_raster(pre, post)
    assert rgba.shape == (2, 3, 4)
    for row in range(2):
        for col in range(3):
            samples = [Sample(pre.nir[row, col], pre.swir[row, col], pre.scl[row, col], pre.data_mask[row, col]),
                       Sample(post.nir[row, col], post.swir[row, col], post.scl[row, col], post.data_mask[row, col])]
            assert rgba[row, col].tolist() == pytest.approx(list(evaluator.evaluate_pixel(samples)))


def test_raster_shape_mismatch(evaluator):
    pre = Sample(np.ones((2, 2)), np.ones((2, 2)), np.full((2, 2), 4))
    post = Sample(np.ones((3, 2)), np.ones((3, 2)), np.full((3, 2), 4))
    with pytest.raises(ValueError):
        evaluator.evaluate_raster(pre, post)
