"""Tests for log formatting and job context."""

import logging

from mediaflow.logging_config import JobContextFilter, StructuredFormatter, job_log_context


def _record(name: str = "mediaflow.services.pipeline.orchestrator") -> logging.LogRecord:
    return logging.LogRecord(name, logging.INFO, __file__, 1, "stage done", None, None)


def test_records_inside_job_context_carry_job_id():
    context_filter = JobContextFilter()

    with job_log_context("job_abc"):
        inside = _record()
        context_filter.filter(inside)
    outside = _record()
    context_filter.filter(outside)

    assert inside.job_id == "job_abc"
    assert outside.job_id == "-"


def test_nested_contexts_restore_outer_job():
    context_filter = JobContextFilter()

    with job_log_context("outer"):
        with job_log_context("inner"):
            pass
        record = _record()
        context_filter.filter(record)

    assert record.job_id == "outer"


def test_structured_format_shortens_logger_name():
    record = _record()
    record.job_id = "job_1"

    line = StructuredFormatter().format(record)

    fields = [part.strip() for part in line.split("|")]
    assert fields[1:] == ["INFO", "pipeline.orchestrator", "job_1", "stage done"]
