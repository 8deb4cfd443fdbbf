import json
import logging

import pytest
import yaml

from overlaysync.audio_decoder import AudioDecoder
from overlaysync.cli import CLIHandler
from overlaysync.log_setup import parse_log_level, setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def workspace(tmp_path, document, monkeypatch):
    monkeypatch.setattr(AudioDecoder, "probe_duration", lambda self, path: 8.0)
    config = tmp_path / "config.yaml"
    config.write_text(yaml.safe_dump({
        "log_dir": str(tmp_path / "logs"),
        "output_dir": str(tmp_path / "blocks"),
        "snap_to_silence": False,
    }), encoding="utf-8")
    doc = tmp_path / "chapter.yaml"
    doc.write_text(yaml.safe_dump(document), encoding="utf-8")
    audio = tmp_path / "chapter.mp3"
    audio.write_bytes(b"\x00" * 16)
    return tmp_path, str(config), str(doc), str(audio)


def run_cli(argv):
    with pytest.raises(SystemExit) as exit_info:
        CLIHandler().run(argv)
    return exit_info.value.code


def test_linear_sync_from_the_command_line(workspace):
    tmp_path, config, doc, audio = workspace
    code = run_cli(["-d", doc, "-a", audio, "-c", config, "--method", "linear", "--granularity", "paragraph"])
    assert code == 0
    with open(tmp_path / "blocks" / "chapter.sync.json", encoding="utf-8") as f:
        record = json.load(f)
    assert record["granularity"] == "paragraph"
    assert {b["level"] for b in record["blocks"]} == {"paragraph", "sentence", "word"}
    assert (tmp_path / "logs" / "overlaysync.log").exists()


def test_marks_script_is_replayed(workspace):
    tmp_path, config, doc, audio = workspace
    marks = tmp_path / "marks.yaml"
    marks.write_text(yaml.safe_dump([{"start": 1}, {"mark": [0.5, 1.5]}]), encoding="utf-8")
    assert run_cli(["-d", doc, "-a", audio, "-c", config, "--marks", str(marks)]) == 0
    with open(tmp_path / "blocks" / "chapter.sync.json", encoding="utf-8") as f:
        blocks = json.load(f)["blocks"]
    assert [b["id"] for b in blocks if b["level"] == "sentence"] == ["page1_p1_s1"]


def test_missing_inputs_exit_with_error(workspace):
    tmp_path, config, doc, _ = workspace
    assert run_cli(["-d", doc, "-a", str(tmp_path / "missing.mp3"), "-c", config]) == 1
    assert run_cli(["-d", doc, "-a", doc, "-c", str(tmp_path / "nope.yaml")]) == 1


def test_empty_window_is_rejected(workspace):
    _, config, doc, audio = workspace
    assert run_cli(["-d", doc, "-a", audio, "-c", config, "--method", "linear", "--start", "5", "--end", "2"]) == 1


def test_parse_log_level():
    assert parse_log_level("debug") == logging.DEBUG
    assert parse_log_level("WARNING") == logging.WARNING
    assert parse_log_level("chatty") == logging.INFO
    assert parse_log_level(None, default=logging.ERROR) == logging.ERROR


def test_console_only_logging_writes_no_file(tmp_path):
    assert setup_logging(logging.DEBUG) is None
    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("numba").level == logging.WARNING
    path = setup_logging(logging.INFO, log_dir=str(tmp_path / "logs"), log_file="run.log")
    assert path == str(tmp_path / "logs" / "run.log")
