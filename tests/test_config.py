from relay_worker.config import Settings, get_settings, parse_csv, reset_settings


def test_policy_constants_have_documented_defaults(monkeypatch):
    for key in ("SIMILARITY_FLOOR", "HEURISTIC_MATCH_THRESHOLD", "EXTERNAL_MATCH_THRESHOLD", "RETENTION_CRON"):
        monkeypatch.delenv(key, raising=False)
    s = Settings()
    assert (s.dedupe_candidate_window_days, s.dedupe_candidate_limit) == (30, 100)
    assert (s.dedupe_scan_window_days, s.dedupe_scan_limit) == (7, 50)
    assert (s.similarity_floor, s.heuristic_match_threshold, s.external_match_threshold) == (0.5, 0.8, 0.7)
    assert (s.retention_interaction_batch, s.retention_session_batch, s.retention_replay_batch) == (1000, 1000, 500)
    assert s.retention_cron == "0 3 * * *"


def test_environment_overrides_and_cache_reset(monkeypatch):
    monkeypatch.setenv("HEURISTIC_MATCH_THRESHOLD", "0.9")
    reset_settings()
    assert get_settings().heuristic_match_threshold == 0.9
    monkeypatch.setenv("HEURISTIC_MATCH_THRESHOLD", "0.85")
    assert get_settings().heuristic_match_threshold == 0.9
    reset_settings()
    assert get_settings().heuristic_match_threshold == 0.85


def test_parse_csv():
    assert parse_csv(" bug, feedback ,,") == ["bug", "feedback"]
    assert parse_csv(None) == []
