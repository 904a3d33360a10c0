"""
Config Validation Tests
=======================

Validación Pydantic en load time: config inválida falla antes de arrancar.
"""
import pytest
from pydantic import ValidationError

from stopguard.config import StopGuardConfig


@pytest.mark.unit
class TestDefaults:

    def test_defaults_match_documented_constants(self):
        config = StopGuardConfig()

        assert config.stability.needed == 4
        assert config.dedup.min_confidence == 0.65
        assert config.dedup.max_spatial_overlap_for_new == 0.35
        assert config.dedup.forget_after == 8.0
        assert config.detection.min_area == 0.02
        assert config.detection.max_area == 0.80
        assert config.motion.moving_speed_threshold == 2.0
        assert config.motion.stopped_speed_threshold == 0.5
        assert config.motion.required_stop_duration == 2.0
        assert config.announcer.min_speak_interval == 6.0
        assert config.drive.store == 'memory'
        assert config.mqtt.qos.events == 1

    def test_sentinel_normalized(self):
        config = StopGuardConfig(detection={"label_sentinel": "Stop_Sign"})

        assert config.detection.label_sentinel == "stop sign"


@pytest.mark.unit
class TestInvalidConfig:

    def test_single_frame_stability_rejected(self):
        with pytest.raises(ValidationError):
            StopGuardConfig(stability={"needed": 1})

    def test_area_range_inverted(self):
        with pytest.raises(ValidationError, match="min_area"):
            StopGuardConfig(detection={"min_area": 0.5, "max_area": 0.5})

    def test_aspect_ratio_range_inverted(self):
        with pytest.raises(ValidationError, match="min_aspect_ratio"):
            StopGuardConfig(detection={"min_aspect_ratio": 1.5, "max_aspect_ratio": 1.4})

    def test_speed_thresholds_inverted(self):
        with pytest.raises(ValidationError, match="stopped_speed_threshold"):
            StopGuardConfig(motion={"stopped_speed_threshold": 3.0, "moving_speed_threshold": 2.0})

    def test_confidence_out_of_range(self):
        with pytest.raises(ValidationError):
            StopGuardConfig(dedup={"min_confidence": 1.5})

    def test_unknown_store_rejected(self):
        with pytest.raises(ValidationError):
            StopGuardConfig(drive={"store": "sqlite"})

    def test_invalid_qos_rejected(self):
        with pytest.raises(ValidationError):
            StopGuardConfig(mqtt={"qos": {"events": 3}})

    @pytest.mark.parametrize("path", ["my_detector", "pkg.module:", ":detect"])
    def test_detector_path_needs_module_and_callable(self, path):
        with pytest.raises(ValidationError, match="module:callable"):
            StopGuardConfig(detection={"detector": path})

    def test_detector_path_accepted(self):
        config = StopGuardConfig(detection={"detector": "vision.yolo:detect"})

        assert config.detection.detector == "vision.yolo:detect"
        assert StopGuardConfig().detection.detector is None


@pytest.mark.unit
class TestFromYaml:

    def test_partial_yaml_merged_with_defaults(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "stability:\n"
            "  needed: 6\n"
            "mqtt:\n"
            "  broker:\n"
            "    host: broker.local\n"
        )

        config = StopGuardConfig.from_yaml(str(config_file))

        assert config.stability.needed == 6
        assert config.mqtt.broker.host == "broker.local"
        assert config.dedup.forget_after == 8.0

    def test_empty_yaml_uses_defaults(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("")

        config = StopGuardConfig.from_yaml(str(config_file))

        assert config.stability.needed == 4

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            StopGuardConfig.from_yaml(str(tmp_path / "missing.yaml"))

    def test_env_credentials_override_yaml(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MQTT_USERNAME", "env-user")
        monkeypatch.setenv("MQTT_PASSWORD", "env-pass")
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "mqtt:\n"
            "  broker:\n"
            "    username: yaml-user\n"
        )

        config = StopGuardConfig.from_yaml(str(config_file))

        assert config.mqtt.broker.username == "env-user"
        assert config.mqtt.broker.password == "env-pass"

    def test_shipped_config_is_valid(self):
        from pathlib import Path

        shipped = Path(__file__).resolve().parents[2] / "config" / "stopguard" / "config.yaml"
        if not shipped.exists():
            pytest.skip("config.yaml no incluido en esta instalación")

        config = StopGuardConfig.from_yaml(str(shipped))

        assert config.drive.store in ('memory', 'json')
