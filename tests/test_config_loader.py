import pytest

from overlaysync.config_loader import DEFAULT_CONFIG, ConfigLoader
from overlaysync.exceptions import ConfigurationError
from overlaysync.exclusion import ExclusionPolicy


def write(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_values_override_defaults(tmp_path):
    config = ConfigLoader().load_config(write(tmp_path, "min_sync_interval: 0.5\ndevice: cpu\n"))
    assert config["min_sync_interval"] == 0.5
    assert config["device"] == "cpu"
    assert config["undo_depth"] == DEFAULT_CONFIG["undo_depth"]


def test_empty_file_gives_defaults(tmp_path):
    assert ConfigLoader().load_config(write(tmp_path, "")) == ConfigLoader.with_defaults({})


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        ConfigLoader().load_config(str(tmp_path / "nope.yaml"))


def test_directory_is_not_a_config(tmp_path):
    with pytest.raises(ConfigurationError):
        ConfigLoader().load_config(str(tmp_path))


@pytest.mark.parametrize("text", [
    "key: [unclosed",
    "- just\n- a list\n",
    "min_hold_duration: -1\n",
    "snap_window_ms: lots\n",
    "undo_depth: 0\n",
    "alignment_method: guess\n",
    "granularity: chapter\n",
])
def test_invalid_configs(tmp_path, text):
    with pytest.raises(ConfigurationError):
        ConfigLoader().load_config(write(tmp_path, text))


def test_bad_exclusion_pattern_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        ExclusionPolicy.from_config({"exclude_text_patterns": ["(unclosed"]})
