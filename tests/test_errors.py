import logging

import pytest

from reducex import (
    ConfigurationError,
    ErrorHandler,
    ReducexError,
    ReducerNotBoundError,
    StoreClosedError,
    UnhandledActionError,
    handle_error,
)


class TestExceptions:

    def test_str_includes_details(self):
        error = StoreClosedError("submit")

        assert str(error) == "Store is closed (operation='submit')"
        assert error.to_dict()["error_type"] == "StoreClosedError"
        assert error.to_dict()["details"] == {"operation": "submit"}

    def test_not_bound_error_names_operation(self):
        error = ReducerNotBoundError("TodoReducer", "emit")

        assert "emit()" in error.message
        assert error.details["reducer_name"] == "TodoReducer"

    def test_unhandled_action_keeps_action(self):
        action = object()

        error = UnhandledActionError("TodoReducer", action)

        assert error.action is action
        assert error.action_type == "object"

    def test_hierarchy(self):
        assert issubclass(StoreClosedError, ReducexError)
        assert issubclass(ConfigurationError, ReducexError)


class TestErrorHandler:

    def test_plain_exceptions_are_wrapped(self):
        handler = ErrorHandler(log_to_console=False)
        reports = []
        handler.register_handler(reports.append)
        cause = KeyError("missing")

        handler.handle(cause, {"store": "todo"})

        assert isinstance(reports[0], ReducexError)
        assert reports[0].__cause__ is cause
        assert reports[0].details == {"error_type": "KeyError", "store": "todo"}

    def test_reducex_errors_pass_through(self):
        handler = ErrorHandler(log_to_console=False)
        reports = []
        handler.register_handler(reports.append)
        error = StoreClosedError("submit")

        handler.handle(error)

        assert reports == [error]

    def test_failing_handler_does_not_stop_others(self, caplog):
        handler = ErrorHandler(log_to_console=False)
        reports = []

        def broken(error):
            raise RuntimeError("handler bug")

        handler.register_handler(broken)
        handler.register_handler(reports.append)

        with caplog.at_level(logging.ERROR, logger="reducex.errors"):
            handler.handle(ValueError("x"))

        assert len(reports) == 1
        assert "handler bug" in caplog.text

    def test_unregister(self):
        handler = ErrorHandler(log_to_console=False)
        reports = []
        handler.register_handler(reports.append)
        handler.unregister_handler(reports.append)

        handler.handle(ValueError("x"))

        assert reports == []

    def test_logs_to_console(self, caplog):
        handler = ErrorHandler()

        with caplog.at_level(logging.ERROR, logger="reducex.errors"):
            handler.handle(StoreClosedError("submit"))

        assert "StoreClosedError" in caplog.text

    def test_log_includes_original_traceback(self, caplog):
        handler = ErrorHandler()

        def load():
            raise KeyError("missing")

        try:
            load()
        except KeyError as err:
            cause = err

        with caplog.at_level(logging.ERROR, logger="reducex.errors"):
            handler.handle(cause)

        assert caplog.records[-1].exc_info[1] is cause
        assert "Traceback" in caplog.text
        assert "in load" in caplog.text

    def test_log_to_file(self, tmp_path):
        log_file = tmp_path / "errors.log"
        handler = ErrorHandler(log_to_console=False, log_to_file=True, log_file=str(log_file))

        handler.handle(ValueError("written"))
        handler.close()

        assert "written" in log_file.read_text(encoding="utf-8")

    def test_log_to_file_requires_path(self):
        with pytest.raises(ConfigurationError):
            ErrorHandler(log_to_file=True)


def test_handle_error_decorator_reports_and_reraises(error_reports):
    @handle_error
    def explode():
        raise ValueError("kaboom")

    with pytest.raises(ValueError, match="kaboom"):
        explode()

    assert error_reports[-1].details["function"].endswith("explode")
