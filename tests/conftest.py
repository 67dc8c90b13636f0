import matplotlib

# No display on test machines
matplotlib.use('Agg')

import pytest
from severity import Sample, SeverityConfig


@pytest.fixture
def settings():
    return SeverityConfig()


@pytest.fixture
def burnt_pixel():
    # pre fire NBR 0.667, post fire NBR -0.2
    return [Sample(0.5, 0.1, 4), Sample(0.2, 0.3, 4)]
