"""
Tests for SLA policy loading and reload
"""
from src.config import Settings
from src.sla.domain import SLAPolicy
from src.sla.infrastructure import SLAConfigManager, policy_from_settings


class TestPolicyFromSettings:
    def test_reads_targets_and_thresholds(self):
        settings = Settings(
            sla_p1_hours=2, sla_p2_hours=8, sla_p3_hours=48,
            sla_warning_threshold=30, sla_critical_threshold=70,
        )

        policy = policy_from_settings(settings)

        assert policy.target_hours == {"P1": 2, "P2": 8, "P3": 48}
        assert policy.warning_threshold == 30
        assert policy.critical_threshold == 70


class TestSLAConfigManager:
    def test_missing_file_uses_defaults(self, tmp_path):
        defaults = SLAPolicy(target_hours={"P1": 3})
        manager = SLAConfigManager(defaults)

        assert manager.load(tmp_path / "absent.yaml") == defaults
        assert manager.get_policy() == defaults

    def test_file_overrides_merge_over_defaults(self, tmp_path):
        path = tmp_path / "sla.yaml"
        path.write_text("target_hours:\n  P1: 1\nwarning_threshold: 10\n")
        manager = SLAConfigManager()

        policy = manager.load(path)

        assert policy.target_hours == {"P1": 1, "P2": 12.0, "P3": 24.0}
        assert policy.warning_threshold == 10
        assert policy.critical_threshold == 60

    def test_reload_picks_up_changes(self, tmp_path):
        path = tmp_path / "sla.yaml"
        path.write_text("critical_threshold: 50\n")
        manager = SLAConfigManager()
        manager.load(path)

        path.write_text("critical_threshold: 80\n")

        assert manager.reload() is True
        assert manager.get_policy().critical_threshold == 80

    def test_invalid_reload_keeps_previous_policy(self, tmp_path):
        path = tmp_path / "sla.yaml"
        path.write_text("critical_threshold: 50\n")
        manager = SLAConfigManager()
        manager.load(path)

        path.write_text("warning_threshold: 90\n")
        assert manager.reload() is False

        path.write_text("target_hours: [unclosed\n")
        assert manager.reload() is False

        assert manager.get_policy().critical_threshold == 50

    def test_reload_before_load_is_noop(self):
        assert SLAConfigManager().reload() is False

    def test_watching_lifecycle(self, tmp_path):
        path = tmp_path / "sla.yaml"
        path.write_text("warning_threshold: 25\n")
        manager = SLAConfigManager()
        manager.load(path)

        manager.start_watching()
        try:
            assert manager.is_watching
        finally:
            manager.stop_watching()

        assert not manager.is_watching
