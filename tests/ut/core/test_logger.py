"""日志配置测试"""

from __future__ import annotations

import json
import logging

from modkit.utils.logger import JSONFormatter, reset_logging, setup_logging


class TestLogger:
    def test_json_formatter_extra_fields(self) -> None:
        record = logging.LogRecord(
            "modkit.core.dep_manager", logging.INFO, __file__, 1,
            "已解析 %s", ("h/a/r@v1.0.0",), None,
        )
        record.module_key = "h/a/r@v1.0.0"
        data = json.loads(JSONFormatter().format(record))
        assert data["level"] == "INFO"
        assert data["message"] == "已解析 h/a/r@v1.0.0"
        assert data["module_key"] == "h/a/r@v1.0.0"
        assert "url" not in data

    def test_setup_replaces_handlers(self) -> None:
        try:
            setup_logging("DEBUG", json_output=True)
            setup_logging("WARNING")
            root = logging.getLogger()
            assert root.level == logging.WARNING
            assert len(root.handlers) == 1
            assert not isinstance(root.handlers[0].formatter, JSONFormatter)
        finally:
            reset_logging()
