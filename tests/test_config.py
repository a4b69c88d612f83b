import logging

from proximity_attend.config import DEFAULT_API_URL, Settings
from proximity_attend.utils import logger as layered_logging
from proximity_attend.utils.logger import LayeredFormatter, debug_detail, get_logger

SETTINGS_KEYS = [
    "ATTENDANCE_API_URL",
    "ATTENDANCE_DOMAIN",
    "TEACHER_ID",
    "COURSE_ID",
    "LOCATION_DESIRED_ACCURACY_M",
    "LOCATION_MAX_DURATION_MS",
    "FIXED_LATITUDE",
    "FIXED_LONGITUDE",
    "TONE_AMPLITUDE",
]


def _clear_env(monkeypatch):
    # setenv first so monkeypatch removes whatever load_env adds later.
    for key in SETTINGS_KEYS:
        monkeypatch.setenv(key, "placeholder")
        monkeypatch.delenv(key)


def test_defaults_without_environment(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.chdir(tmp_path)

    settings = Settings.from_env()

    assert settings.api_url == DEFAULT_API_URL
    assert settings.desired_accuracy_m == 20.0
    assert settings.max_duration_ms == 5000
    assert settings.fixed_latitude is None
    assert settings.teacher_id is None


def test_env_file_fills_missing_values_only(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.chdir(tmp_path)
    (tmp_path / ".env").write_text(
        "\n".join(
            [
                "# classroom laptop",
                'ATTENDANCE_DOMAIN="https://attend.example.edu"',
                "LOCATION_MAX_DURATION_MS='30000'",
                "FIXED_LATITUDE=40.5",
                "FIXED_LONGITUDE=-73.25",
                "TEACHER_ID=from-file",
            ]
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("TEACHER_ID", "from-shell")

    settings = Settings.from_env()

    assert settings.domain == "https://attend.example.edu"
    assert settings.max_duration_ms == 30000
    assert (settings.fixed_latitude, settings.fixed_longitude) == (40.5, -73.25)
    assert settings.teacher_id == "from-shell"


def test_malformed_numbers_fall_back_to_defaults(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("LOCATION_MAX_DURATION_MS", "five seconds")
    monkeypatch.setenv("TONE_AMPLITUDE", "loud")

    settings = Settings.from_env(env_file=None)

    assert settings.max_duration_ms == 5000
    assert settings.tone_amplitude == 0.1


def test_layered_formatter_prefixes_layer_icon(monkeypatch):
    monkeypatch.setattr("proximity_attend.utils.logger.NO_COLOR", True)
    record = logging.LogRecord("proximity_attend.test", logging.INFO, __file__, 1, "Getting location...", None, None)
    record.layer = "step"

    assert LayeredFormatter("%(message)s").format(record) == "▶ Getting location..."


class _RecordingHandler(logging.Handler):
    def __init__(self):
        super().__init__(logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)


def _record_base_logger():
    handler = _RecordingHandler()
    base = logging.getLogger(layered_logging.BASE_LOGGER_NAME)
    base.addHandler(handler)
    return base, handler


def test_exception_is_logged_on_error_layer_with_traceback():
    base, handler = _record_base_logger()
    try:
        try:
            raise RuntimeError("device busy")
        except RuntimeError:
            get_logger("audio").exception("Attendance run failed")
    finally:
        base.removeHandler(handler)

    [record] = handler.records
    assert record.layer == "error"
    assert record.levelno == logging.ERROR
    assert record.exc_info[0] is RuntimeError


def test_debug_detail_uses_debug_layer():
    base, handler = _record_base_logger()
    try:
        debug_detail("Backend http://127.0.0.1:3000")
    finally:
        base.removeHandler(handler)

    [record] = handler.records
    assert record.layer == "debug"
    assert record.levelno == logging.DEBUG
