import random

import pytest

from tests.helpers import quiet_rules


@pytest.fixture
def rules():
    return quiet_rules()


@pytest.fixture
def rng():
    return random.Random(1234)
