import logging

from unfurl.logging_config import ContextFilter, build_logging_config, logging_context


def _record():
    return logging.LogRecord("unfurl", logging.INFO, __file__, 1, "msg", None, None)


def test_context_filter_defaults():
    record = _record()
    assert ContextFilter().filter(record) is True
    assert record.room_id == "-"
    assert record.sender == "-"


def test_logging_context_sets_and_resets():
    with logging_context(room_id="!room:example.org", sender="@alice:example.org"):
        record = _record()
        ContextFilter().filter(record)
        assert record.room_id == "!room:example.org"
        assert record.sender == "@alice:example.org"

    record = _record()
    ContextFilter().filter(record)
    assert record.room_id == "-"


def test_config_with_and_without_file_handler(tmp_path):
    config = build_logging_config("DEBUG", str(tmp_path))
    assert set(config["handlers"]) == {"console", "file"}
    assert config["handlers"]["file"]["filename"] == str(tmp_path / "unfurl.log")

    config = build_logging_config("INFO", "")
    assert list(config["handlers"]) == ["console"]
    assert config["root"]["handlers"] == ["console"]
