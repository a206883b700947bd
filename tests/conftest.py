import pytest


@pytest.fixture(autouse=True)
def fast_settings(settings, tmp_path):
    settings.TEMP_DIR = str(tmp_path / "temp")
    settings.SETTLE_SECONDS = 0
    settings.NETWORK_WAIT_SECONDS = 0
    settings.STRATEGY_TIMEOUT_SECONDS = 5
    settings.MAX_ADDRESS_VARIANTS = 3
    settings.BASIC_AUTH_USER = ""
    settings.BASIC_AUTH_PASS = ""
    return settings
