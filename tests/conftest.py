import os

# sin ficheros de log durante los tests
os.environ["LOG_TO_FILE"] = "false"

import pytest  # noqa: E402

from tests.fakes import FakeChain, make_config  # noqa: E402


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def config_factory():
    return make_config
