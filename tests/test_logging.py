"""Tests for file logging and request/job correlation prefixes."""

from __future__ import annotations

import pytest

from ffmux.utils import logging as flog


@pytest.fixture
def log_dir(tmp_path):
    flog.setup_logging(flog.Verbosity.SILENT, log_dir=tmp_path)
    yield tmp_path
    flog._request_id_var.set("")
    flog.set_job_id("")
    flog.setup_logging(flog.Verbosity.NORMAL, log_dir=tmp_path)


class TestCorrelation:
    def test_ids_prefix_app_log(self, log_dir):
        flog.set_request_id("abc123")
        flog.set_job_id("job42")
        flog.info("render accepted")
        text = (log_dir / "app.log").read_text()
        assert "[req=abc123 job=job42] render accepted" in text

    def test_request_id_generated_when_empty(self, log_dir):
        rid = flog.set_request_id("")
        assert len(rid) == 12

    def test_render_log_separate_file(self, log_dir):
        flog.render_log("Running: ffmpeg -y", level="warning")
        assert "Running: ffmpeg -y" in (log_dir / "render.log").read_text()
        assert "Running: ffmpeg -y" not in (log_dir / "app.log").read_text()
