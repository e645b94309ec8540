"""Tests for PhaseTimer reports and Prometheus export."""

import json

import pytest

from cutover.metrics.timing import PhaseTimer, ResourceSample, format_duration, sample_resources
from tests.helpers.fake_clock import FakeClock


def _sample():
    return ResourceSample(cpu_percent=12.5, memory_percent=40.0, memory_used_gb=3.2, process_rss_mb=55.0)


@pytest.fixture
def timer():
    clock = FakeClock(start=100.0)
    t = PhaseTimer(clock=clock, sampler=_sample)
    t.start_all()
    with t.phase("build"):
        clock.tick(65.0)
    t.start("stage_files")
    clock.tick(1.5)
    t.end("stage_files")
    t.end_all()
    return t


def test_format_duration():
    assert format_duration(0) == "00:00:00"
    assert format_duration(3725.9) == "01:02:05"


def test_durations(timer):
    assert timer.phases["build"].duration_s == 65.0
    assert timer.phases["stage_files"].duration_s == 1.5
    assert timer.total_s == 66.5


def test_end_without_start_is_zero_length():
    t = PhaseTimer(clock=FakeClock(), sampler=_sample)
    assert t.end("decision") == 0.0


def test_summary_lines(timer):
    text = "\n".join(timer.summary_lines())
    assert "[build] 00:01:05 (65000ms)" in text
    assert "[stage_files] 00:00:01 (1500ms)" in text
    assert "Total: 00:01:06" in text


def test_write_reports(timer, tmp_path):
    text_path, json_path = timer.write_reports(tmp_path, "2026-01-01_00-00-00", outcome="cut_over")
    assert text_path.name == "timing-2026-01-01_00-00-00.txt"
    data = json.loads(json_path.read_text(encoding="utf-8"))
    assert data["outcome"] == "cut_over"
    assert [p["name"] for p in data["phases"]] == ["build", "stage_files"]
    assert data["phases"][0]["end"]["cpu_percent"] == 12.5


def test_prometheus_registry(timer):
    registry = timer.build_registry(outcome="held_for_manual_review")
    assert registry.get_sample_value("cutover_phase_duration_seconds", {"phase": "build"}) == 65.0
    assert registry.get_sample_value("cutover_total_duration_seconds") == 66.5
    assert registry.get_sample_value("cutover_outcome", {"kind": "held_for_manual_review"}) == 1.0


def test_export_textfile(timer, tmp_path):
    path = timer.export_metrics(tmp_path / "node" / "cutover.prom", outcome="cut_over")
    content = path.read_text()
    assert 'cutover_phase_duration_seconds{phase="build"} 65.0' in content
    assert 'cutover_outcome{kind="cut_over"} 1.0' in content


def test_real_sampler():
    sample = sample_resources()
    assert 0.0 <= sample.memory_percent <= 100.0
    assert sample.process_rss_mb > 0
