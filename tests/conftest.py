import pytest

from reducex import global_error_handler


@pytest.fixture
def error_reports():
    """收集送到 global_error_handler 的錯誤。"""
    reports = []
    global_error_handler.register_handler(reports.append)
    yield reports
    global_error_handler.unregister_handler(reports.append)
