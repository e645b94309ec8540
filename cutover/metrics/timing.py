"""
Phase timing and resource snapshots for a rollout run.

Each phase records wall time plus CPU/memory samples (psutil) at start and
end. At the end of a run the timer renders a text summary, an optional JSON
report, and Prometheus gauges on a private registry for a node-exporter
textfile collector.
"""

import logging
import platform
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

import psutil
from prometheus_client import CollectorRegistry, Gauge, write_to_textfile

from cutover.common.artifacts import write_json_atomic, write_text_atomic

logger = logging.getLogger(__name__)

MB = 1024 * 1024
GB = 1024 * MB


@dataclass(frozen=True)
class ResourceSample:
    cpu_percent: float
    memory_percent: float
    memory_used_gb: float
    process_rss_mb: float


def sample_resources() -> ResourceSample:
    """System CPU/memory and this process's RSS."""
    vm = psutil.virtual_memory()
    try:
        rss = psutil.Process().memory_info().rss
    except psutil.Error:
        rss = 0
    return ResourceSample(
        cpu_percent=psutil.cpu_percent(interval=None),
        memory_percent=vm.percent,
        memory_used_gb=round((vm.total - vm.available) / GB, 2),
        process_rss_mb=round(rss / MB, 2),
    )


def format_duration(seconds: float) -> str:
    """Seconds -> HH:MM:SS."""
    total = int(seconds)
    return f"{total // 3600:02d}:{total % 3600 // 60:02d}:{total % 60:02d}"


@dataclass
class PhaseRecord:
    name: str
    start: float
    started_at: str
    start_sample: ResourceSample
    end: Optional[float] = None
    end_sample: Optional[ResourceSample] = None

    @property
    def duration_s(self) -> Optional[float]:
        return None if self.end is None else self.end - self.start


@dataclass
class PhaseTimer:
    clock: Callable[[], float] = time.monotonic
    sampler: Callable[[], ResourceSample] = sample_resources
    phases: Dict[str, PhaseRecord] = field(default_factory=dict)
    started: Optional[float] = None
    finished: Optional[float] = None

    def start_all(self) -> None:
        self.started = self.clock()
        # First cpu_percent(None) call only primes the counters
        self.sampler()

    def end_all(self) -> float:
        self.finished = self.clock()
        return self.total_s

    @property
    def total_s(self) -> float:
        if self.started is None:
            return 0.0
        end = self.finished if self.finished is not None else self.clock()
        return end - self.started

    def start(self, name: str) -> None:
        self.phases[name] = PhaseRecord(
            name=name,
            start=self.clock(),
            started_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
            start_sample=self.sampler(),
        )

    def end(self, name: str) -> float:
        """Close a phase; an unknown phase is opened and closed at once."""
        if name not in self.phases:
            self.start(name)
        record = self.phases[name]
        record.end = self.clock()
        record.end_sample = self.sampler()
        return record.duration_s

    @contextmanager
    def phase(self, name: str) -> Iterator[PhaseRecord]:
        self.start(name)
        try:
            yield self.phases[name]
        finally:
            self.end(name)

    def summary_lines(self) -> List[str]:
        lines = ["===== Rollout timing and resource usage ====="]
        lines.append(
            f"System: {psutil.cpu_count() or 1} CPU(s), "
            f"{psutil.virtual_memory().total / GB:.2f} GB RAM, {platform.system()} {platform.release()}"
        )
        for record in self.phases.values():
            duration = record.duration_s
            if duration is None:
                lines.append(f"[{record.name}] unfinished")
                continue
            lines.append(f"[{record.name}] {format_duration(duration)} ({duration * 1000:.0f}ms)")
            if record.end_sample is not None:
                lines.append(
                    f"    cpu {record.start_sample.cpu_percent:.1f}% -> {record.end_sample.cpu_percent:.1f}%, "
                    f"mem {record.start_sample.memory_percent:.1f}% -> {record.end_sample.memory_percent:.1f}%, "
                    f"rss {record.end_sample.process_rss_mb:.1f} MB"
                )
        lines.append(f"Total: {format_duration(self.total_s)} ({self.total_s * 1000:.0f}ms)")
        return lines

    def to_dict(self, outcome: Optional[str] = None) -> Dict[str, Any]:
        return {
            "outcome": outcome,
            "total_s": round(self.total_s, 3),
            "phases": [
                {
                    "name": r.name,
                    "started_at": r.started_at,
                    "duration_s": None if r.duration_s is None else round(r.duration_s, 3),
                    "start": asdict(r.start_sample),
                    "end": asdict(r.end_sample) if r.end_sample is not None else None,
                }
                for r in self.phases.values()
            ],
        }

    def write_reports(self, log_dir: Union[str, Path], stamp: str, outcome: Optional[str] = None) -> Tuple[Path, Path]:
        """Write timing-<stamp>.txt and timing-<stamp>.json under log_dir."""
        log_dir = Path(log_dir)
        text_path = write_text_atomic(log_dir / f"timing-{stamp}.txt", "\n".join(self.summary_lines()) + "\n")
        json_path = write_json_atomic(log_dir / f"timing-{stamp}.json", self.to_dict(outcome))
        logger.debug("Timing reports written to %s and %s", text_path, json_path)
        return text_path, json_path

    def build_registry(self, outcome: Optional[str] = None) -> CollectorRegistry:
        registry = CollectorRegistry()
        phase_gauge = Gauge(
            "cutover_phase_duration_seconds", "Wall time per rollout phase",
            ["phase"], registry=registry,
        )
        total_gauge = Gauge(
            "cutover_total_duration_seconds", "Wall time of the whole rollout", registry=registry,
        )
        outcome_gauge = Gauge(
            "cutover_outcome", "Rollout outcome (1 for the reported kind)",
            ["kind"], registry=registry,
        )
        finished_gauge = Gauge(
            "cutover_last_run_timestamp_seconds", "Unix time the rollout finished", registry=registry,
        )
        for record in self.phases.values():
            if record.duration_s is not None:
                phase_gauge.labels(phase=record.name).set(record.duration_s)
        total_gauge.set(self.total_s)
        if outcome:
            outcome_gauge.labels(kind=outcome).set(1)
        finished_gauge.set_to_current_time()
        return registry

    def export_metrics(self, path: Union[str, Path], outcome: Optional[str] = None) -> Path:
        """Write Prometheus text exposition to path (atomic rename by prometheus_client)."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        write_to_textfile(str(path), self.build_registry(outcome))
        return path
