from tvtracker.config import FeatureFlags, Settings


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("TVTRACKER_CATALOG_TIMEOUT_MS", "2500")
    monkeypatch.setenv("TVTRACKER_FLAG_SEARCH", "false")

    assert Settings().catalog_timeout_ms == 2500
    assert FeatureFlags().search is False
    assert FeatureFlags().archive is True
