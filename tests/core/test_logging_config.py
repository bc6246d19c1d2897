"""Tests for configure_logging: stdlib-backed structlog and the file sink."""

import json

from sentinel.core.logging import LogContext, configure_logging, get_logger


def _events(path):
    return [json.loads(line) for line in path.read_text().splitlines() if line.startswith("{")]


class TestConfigureLogging:
    def test_file_sink_gets_json_lines(self, tmp_path):
        log_file = tmp_path / "log" / "sentinel.log"
        configure_logging(level="INFO", json_format=True, log_file=log_file)

        get_logger("sentinel.test").info("hello", x=1)

        event = _events(log_file)[-1]
        assert event["event"] == "hello"
        assert event["x"] == 1
        assert event["logger"] == "sentinel.test"
        assert event["level"] == "info"
        assert event["service"] == "sentinel"
        assert "timestamp" in event

    def test_parent_directory_created(self, tmp_path):
        log_file = tmp_path / "nested" / "dir" / "sentinel.log"
        configure_logging(level="INFO", json_format=True, log_file=log_file)
        assert log_file.parent.is_dir()

    def test_level_filters_file_output(self, tmp_path):
        log_file = tmp_path / "sentinel.log"
        configure_logging(level="WARNING", json_format=True, log_file=log_file)

        logger = get_logger("sentinel.test")
        logger.info("dropped")
        logger.warning("kept")

        assert [e["event"] for e in _events(log_file)] == ["kept"]

    def test_bound_context_reaches_file(self, tmp_path):
        log_file = tmp_path / "sentinel.log"
        configure_logging(level="INFO", json_format=True, service="sentinel-webcron", log_file=log_file)

        with LogContext(task_id=7, task_type="logrotate"):
            get_logger("sentinel.test").info("task.finished")

        event = _events(log_file)[-1]
        assert event["task_id"] == 7
        assert event["task_type"] == "logrotate"
        assert event["service"] == "sentinel-webcron"

    def test_exception_rendered(self, tmp_path):
        log_file = tmp_path / "sentinel.log"
        configure_logging(level="INFO", json_format=True, log_file=log_file)

        try:
            raise ValueError("bad")
        except ValueError:
            get_logger("sentinel.test").exception("task.exception")

        assert "ValueError: bad" in _events(log_file)[-1]["exception"]

    def test_console_format_with_unnamed_logger(self, capsys):
        configure_logging(level="INFO", json_format=False, add_timestamp=False)

        get_logger().warning("plain.warning", reason="test")

        assert "plain.warning" in capsys.readouterr().err

    def test_unknown_level_falls_back_to_info(self, tmp_path):
        log_file = tmp_path / "sentinel.log"
        configure_logging(level="CHATTY", json_format=True, log_file=log_file)

        get_logger("sentinel.test").info("visible")

        assert _events(log_file)[-1]["event"] == "visible"
