"""Tests for the operator CLI."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

from saga_worker import cli
from saga_worker.errors import NotFoundError
from saga_worker.services.submission import SubmissionResult
from saga_worker.services.worker import HandleOutcome, HandleResult


class TestCli:
    @patch("saga_worker.cli.submit_saga")
    @patch("saga_worker.cli.SagaStore")
    def test_submit_without_dispatch(self, mock_store, mock_submit, capsys):
        mock_submit.return_value = SubmissionResult("job-1", "pending", False)
        assert cli.main(["submit", "12345", "0xabc", "--no-dispatch"]) == 0
        assert json.loads(capsys.readouterr().out)["job_id"] == "job-1"
        queue = mock_submit.call_args.kwargs["queue"]
        assert queue.dispatcher.dispatch("x", {}) is None

    @patch("saga_worker.cli.SagaWorker")
    @patch("saga_worker.cli.JobQueue")
    @patch("saga_worker.cli.SagaStore")
    def test_drain_exit_code(self, mock_store, mock_queue, mock_worker, capsys):
        worker = MagicMock()
        worker.drain.return_value = [
            HandleResult("a", HandleOutcome.completed),
            HandleResult("b", HandleOutcome.failed, error="boom"),
        ]
        mock_worker.return_value.__enter__.return_value = worker
        assert cli.main(["drain", "--max-jobs", "2"]) == 1
        worker.drain.assert_called_once_with(max_jobs=2)
        assert [r["outcome"] for r in json.loads(capsys.readouterr().out)] == ["completed", "failed"]

    @patch("saga_worker.cli.get_saga_view")
    @patch("saga_worker.cli.SagaStore")
    def test_status_not_found(self, mock_store, mock_view, capsys):
        mock_view.side_effect = NotFoundError("saga x not found")
        assert cli.main(["status", "x"]) == 2
        assert "saga x not found" in capsys.readouterr().err

    @patch("saga_worker.cli.JobQueue")
    def test_counts(self, mock_queue, capsys):
        mock_queue.return_value.counts.return_value = {"waiting": 2, "active": 1}
        assert cli.main(["counts"]) == 0
        assert json.loads(capsys.readouterr().out) == {"waiting": 2, "active": 1}
