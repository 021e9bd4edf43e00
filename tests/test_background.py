"""Tests for the background dispatcher."""

import logging
import threading

from contractdesk.background import BackgroundDispatcher


class TestBackgroundDispatcher:
    """Tests for BackgroundDispatcher."""

    def test_runs_task(self):
        done = threading.Event()
        with BackgroundDispatcher(max_workers=1) as dispatcher:
            future = dispatcher.submit("set", done.set)
        assert future.done()
        assert done.is_set()

    def test_failure_logged_not_raised(self, caplog):
        """Test a failing task is logged and does not propagate."""
        def explode():
            raise RuntimeError("smtp down")

        with caplog.at_level(logging.ERROR, logger="contractdesk.background"):
            with BackgroundDispatcher(max_workers=1) as dispatcher:
                future = dispatcher.submit("notify:admin", explode)

        assert isinstance(future.exception(), RuntimeError)
        assert "Background task 'notify:admin' failed: smtp down" in caplog.text

    def test_passes_arguments(self):
        results = []
        with BackgroundDispatcher() as dispatcher:
            dispatcher.submit("append", results.append, 42)
        assert results == [42]
