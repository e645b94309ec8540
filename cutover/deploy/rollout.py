#!/usr/bin/env python3
"""
Blue-green rollout of a single-host web app.

Phases run in strict order:

    BUILD -> START_NEW -> STAGE_FILES -> START_AND_WARM_TARGET
          -> STABILITY -> TRAFFIC_SPLIT -> DECISION -> RETIRE_OLD -> VERIFY_FINAL

The old ("main") instance is stopped only after the new ("running") instance
is stable and the proxy routes traffic to it, or when --force is given.
Otherwise the run ends held for manual review with the old instance serving.
A failure in any phase before the decision ends the run without touching the
old instance.

Usage:
    cutover [--skip-build] [--force] [--log] [--config cutover.yaml]
    python -m cutover.deploy.rollout -P -L
"""
import argparse
import asyncio
import logging
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

import yaml
from pydantic import ValidationError

from cutover.common.backoff import LinearBackoff, retry_check_async
from cutover.common.config import DeployConfig, load_config
from cutover.common.di import RolloutContext
from cutover.common.errors import CutoverError, FatalPhaseError, ProcessManagerError, one_line
from cutover.common.logging import configure_logging, log_file_path
from cutover.common.process_manager import Pm2ProcessManager
from cutover.deploy.builder import CommandBuilder
from cutover.deploy.staging import Stager
from cutover.metrics.timing import PhaseTimer
from cutover.probe.http import Endpoint, HttpProbe

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    BUILD = "build"
    START_NEW = "start_new"
    STAGE_FILES = "stage_files"
    START_AND_WARM_TARGET = "start_and_warm_target"
    STABILITY = "stability"
    TRAFFIC_SPLIT = "traffic_split"
    DECISION = "decision"
    RETIRE_OLD = "retire_old"
    VERIFY_FINAL = "verify_final"


class OutcomeKind(str, Enum):
    CUT_OVER = "cut_over"
    HELD_FOR_MANUAL_REVIEW = "held_for_manual_review"
    FAILED = "failed"


UNSTABLE_HINT = "running instance is not stable; check its logs and resources"
UNROUTED_HINT = "proxy is not routing traffic to the running instance; check the proxy configuration"


@dataclass(frozen=True)
class RolloutOutcome:
    kind: OutcomeKind
    reason: str = ""
    failed_phase: Optional[Phase] = None
    stability_confirmed: bool = False
    traffic_confirmed: bool = False
    forced: bool = False
    manual_command: Optional[str] = None
    unmet: Tuple[str, ...] = ()
    error: str = ""

    @property
    def exit_code(self) -> int:
        return 1 if self.kind is OutcomeKind.FAILED else 0


class RolloutStateMachine:
    """Runs the phases once and produces exactly one RolloutOutcome."""

    def __init__(self, ctx: RolloutContext, skip_build: bool = False, force: bool = False):
        self.ctx = ctx
        self.cfg: DeployConfig = ctx.cfg
        self.skip_build = skip_build
        self.force = force
        self.history: List[Phase] = []

        cfg = self.cfg
        self.main_endpoint = Endpoint(host=cfg.service_host, port=cfg.main_port)
        self.running_endpoint = Endpoint(host=cfg.service_host, port=cfg.running_port)
        self.external_endpoint = Endpoint.parse(cfg.external_host)

    @contextmanager
    def _phase(self, phase: Phase) -> Iterator[None]:
        """Time a phase and turn collaborator errors into FatalPhaseError."""
        self.history.append(phase)
        logger.info("==== %s ====", phase.value.upper())
        with self.ctx.timer.phase(phase.value):
            try:
                yield
            except CutoverError as e:
                raise FatalPhaseError(phase.value, e.message, cause=e) from e

    async def run(self) -> RolloutOutcome:
        timer = self.ctx.timer
        timer.start_all()
        try:
            return await self._run()
        except FatalPhaseError as e:
            logger.error("Rollout failed: %s", e.one_line())
            logger.error("The main instance (%s) was left untouched", self.cfg.main_process_name)
            return RolloutOutcome(
                kind=OutcomeKind.FAILED,
                reason=e.message,
                failed_phase=Phase(e.phase),
                forced=self.force,
                error=e.one_line(),
            )
        finally:
            timer.end_all()

    async def _run(self) -> RolloutOutcome:
        await self.build()
        await self.start_new()
        await self.stage_files()
        await self.start_and_warm_target()

        stability_ok = await self.stability_loop()
        traffic_ok = await self.traffic_loop()

        with self._phase(Phase.DECISION):
            unmet = []
            if not stability_ok:
                unmet.append(UNSTABLE_HINT)
            if not traffic_ok:
                unmet.append(UNROUTED_HINT)

            if unmet and not self.force:
                logger.error("Cutover conditions not met; keeping the main instance")
                for item in unmet:
                    logger.warning("Unmet: %s", item)
                logger.warning("After manual checks stop the main instance with: %s", self.cfg.manual_stop_command)
                return RolloutOutcome(
                    kind=OutcomeKind.HELD_FOR_MANUAL_REVIEW,
                    reason="cutover conditions not met",
                    stability_confirmed=stability_ok,
                    traffic_confirmed=traffic_ok,
                    manual_command=self.cfg.manual_stop_command,
                    unmet=tuple(unmet),
                )
            if unmet:
                logger.warning("!" * 60)
                logger.warning("FORCED CUTOVER: %s", "; ".join(unmet))
                logger.warning("!" * 60)

        await self.retire_old()
        await self.verify_final()
        return RolloutOutcome(
            kind=OutcomeKind.CUT_OVER,
            reason="forced" if unmet else "stability and traffic confirmed",
            stability_confirmed=stability_ok,
            traffic_confirmed=traffic_ok,
            forced=bool(unmet),
            unmet=tuple(unmet),
        )

    async def build(self) -> None:
        with self._phase(Phase.BUILD):
            if self.skip_build:
                logger.info("Skipping build")
                return
            self.ctx.builder.build()

    async def start_new(self) -> None:
        cfg = self.cfg
        pm = self.ctx.process_manager
        name = cfg.main_process_name
        with self._phase(Phase.START_NEW):
            if pm.is_registered(name):
                logger.info("Reloading %s", name)
                pm.reload(name)
            else:
                logger.info("%s not registered; starting from %s", name, cfg.process.ecosystem_file)
                pm.start(cfg.project_dir / cfg.process.ecosystem_file, cwd=cfg.project_dir)

            if not pm.is_registered(name):
                raise FatalPhaseError(Phase.START_NEW.value, f"{name} is not registered after start")

            ready = await self.ctx.readiness.wait_until_ready(
                self.main_endpoint, cfg.readiness.max_attempts, cfg.readiness.check_interval_ms,
            )
            if not ready:
                logger.warning("Main instance did not report ready; continuing")

            verdict = await self.ctx.warmup.warmup(
                self.main_endpoint,
                cfg.warmup.paths,
                cfg.warmup.main_attempts,
                cfg.warmup.main_timeout_ms,
                required_paths=cfg.warmup.required_paths,
            )
            if not verdict.overall:
                logger.warning("Main instance warmup incomplete; continuing")

    async def stage_files(self) -> None:
        with self._phase(Phase.STAGE_FILES):
            self.ctx.stager.stage(self.cfg.project_dir, self.cfg.running_dir)

    async def start_and_warm_target(self) -> None:
        cfg = self.cfg
        ctx = self.ctx
        pm = ctx.process_manager
        name = cfg.running_process_name
        phase = Phase.START_AND_WARM_TARGET
        with self._phase(phase):
            if pm.is_registered(name):
                logger.info("Reloading %s", name)
                pm.reload(name)
            else:
                logger.info("Registering %s from %s", name, cfg.running_dir)
                pm.start(cfg.running_dir / cfg.process.ecosystem_file, cwd=cfg.running_dir)

            await ctx.sleep(cfg.process.register_delay_ms / 1000.0)
            if not pm.is_registered(name):
                raise FatalPhaseError(phase.value, f"{name} is not registered after start")

            status = pm.status(name)
            if not status.online:
                logger.warning("%s is %s, not online; waiting %dms", name, status.status, cfg.process.not_online_wait_ms)
                await ctx.sleep(cfg.process.not_online_wait_ms / 1000.0)

            ready = await ctx.readiness.wait_until_ready(
                self.running_endpoint, cfg.readiness.max_attempts, cfg.readiness.check_interval_ms,
            )
            if not ready:
                raise FatalPhaseError(phase.value, f"{self.running_endpoint.url} never became ready")

            verdict = await ctx.warmup.warmup(
                self.running_endpoint,
                cfg.warmup.paths,
                cfg.warmup.attempts,
                cfg.warmup.timeout_ms,
                required_paths=cfg.warmup.required_paths,
            )
            if verdict.overall:
                return

            logger.warning("Warmup not fully successful; re-checking in %dms", cfg.rollout.warmup_recheck_delay_ms)
            await ctx.sleep(cfg.rollout.warmup_recheck_delay_ms / 1000.0)
            recheck = await ctx.readiness.wait_until_ready(
                self.running_endpoint, cfg.rollout.recheck_attempts, cfg.rollout.recheck_interval_ms,
            )
            if not recheck:
                raise FatalPhaseError(phase.value, "final readiness re-check failed; service may be unstable")
            logger.info("Running instance answers after re-check; continuing")

    async def stability_loop(self) -> bool:
        cfg = self.cfg
        with self._phase(Phase.STABILITY):
            verdict, attempts = await retry_check_async(
                self.ctx.stability.verify_stability,
                cfg.running_process_name,
                self.running_endpoint,
                cfg.warmup.paths,
                policy=LinearBackoff(cfg.rollout.retry_base_delay_ms, cfg.resources.stability_check_retries),
                is_success=lambda v: v.overall,
                on_retry=_retry_logger("Stability check"),
                sleep=self.ctx.sleep,
            )
            if not verdict.overall:
                logger.warning("Stability not confirmed after %d attempt(s): %s", attempts, verdict.reason)
            return verdict.overall

    async def traffic_loop(self) -> bool:
        cfg = self.cfg
        with self._phase(Phase.TRAFFIC_SPLIT):
            verdict, attempts = await retry_check_async(
                self.ctx.traffic.verify_split,
                self.external_endpoint,
                cfg.traffic.sample_size,
                policy=LinearBackoff(cfg.rollout.retry_base_delay_ms, cfg.traffic.retries),
                is_success=lambda v: v.overall,
                on_retry=_retry_logger("Traffic routing check"),
                sleep=self.ctx.sleep,
            )
            if not verdict.overall:
                logger.warning(
                    "Traffic routing not confirmed after %d attempt(s): %.0f%% to running",
                    attempts, verdict.routed_fraction * 100,
                )
            return verdict.overall

    async def retire_old(self) -> None:
        name = self.cfg.main_process_name
        with self._phase(Phase.RETIRE_OLD):
            logger.info("Stopping %s", name)
            self.ctx.process_manager.stop(name)
            logger.info("%s stopped", name)

    async def verify_final(self) -> None:
        cfg = self.cfg
        name = cfg.running_process_name
        with self._phase(Phase.VERIFY_FINAL):
            try:
                status = self.ctx.process_manager.status(name)
            except ProcessManagerError as e:
                logger.warning("Cannot query %s status: %s", name, e.message)
            else:
                if status.online:
                    logger.info("%s is online", name)
                else:
                    logger.warning("%s is %s; service may be unstable", name, status.status)

            ready = await self.ctx.readiness.wait_until_ready(
                self.running_endpoint, cfg.rollout.recheck_attempts, cfg.rollout.recheck_interval_ms,
            )
            if ready:
                logger.info("Running instance answers requests")
            else:
                logger.warning("Running instance may not be reachable")


def _retry_logger(label: str):
    def on_retry(attempt: int, max_attempts: int, delay_ms: int) -> None:
        logger.warning("%s failed (%d/%d); retrying in %dms", label, attempt, max_attempts, delay_ms)
    return on_retry


async def run_rollout(
    cfg: DeployConfig,
    skip_build: bool = False,
    force: bool = False,
    timer: Optional[PhaseTimer] = None,
) -> RolloutOutcome:
    """Wire the real collaborators and run the state machine once."""
    async with HttpProbe() as probe:
        ctx = RolloutContext(
            cfg=cfg,
            probe=probe,
            process_manager=Pm2ProcessManager(cfg.process.binary, timeout_s=cfg.process.timeout_s),
            builder=CommandBuilder(cfg.rollout.build_command, cfg.project_dir, timeout_s=cfg.rollout.build_timeout_s),
            stager=Stager(cfg.staging),
            timer=timer,
        )
        return await RolloutStateMachine(ctx, skip_build=skip_build, force=force).run()


def print_outcome(outcome: RolloutOutcome) -> None:
    print("")
    print("=" * 60)
    if outcome.kind is OutcomeKind.CUT_OVER:
        print("[OK] Rollout complete: the new version is serving")
        if outcome.forced:
            print("[WARN] Cut over with --force although checks failed:")
            for item in outcome.unmet:
                print(f"  - {item}")
    elif outcome.kind is OutcomeKind.HELD_FOR_MANUAL_REVIEW:
        print("[HOLD] Main instance kept running; manual check required")
        for item in outcome.unmet:
            print(f"  - {item}")
        print("[HOLD] Once verified, stop the main instance with:")
        print(f"  {outcome.manual_command}")
    else:
        phase = outcome.failed_phase.value if outcome.failed_phase else "unknown"
        print(f"[FAIL] Phase '{phase}' failed: {outcome.reason}")
        print(f"[FAIL] {outcome.error}")
    print("=" * 60)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cutover",
        description="Blue-green rollout: build, stage, warm up, verify, then retire the old instance.",
    )
    parser.add_argument("-P", "--skip-build", "--pass-build", dest="skip_build", action="store_true",
                        help="Skip the build step")
    parser.add_argument("-F", "--force", "--force-stop", dest="force", action="store_true",
                        help="Stop the old instance even if stability or routing is not confirmed")
    parser.add_argument("-L", "--log", dest="log", action="store_true",
                        help="Write the deployment log and timing report to the log directory")
    parser.add_argument("--config", default=None, help="YAML config file")
    parser.add_argument("--project-dir", default=None, help="Project directory (default: from config or cwd)")
    parser.add_argument("--metrics-textfile", default=None,
                        help="Write Prometheus metrics for a textfile collector to this path")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug output on the console")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        cfg = load_config(args.config, project_dir=args.project_dir)
        Endpoint.parse(cfg.external_host)
    except ValidationError as e:
        print(f"[ERROR] {one_line(e, 'E_CFG_INVALID')}")
        return 1
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"[ERROR] {one_line(e, 'E_CFG_LOAD')}")
        return 1

    started = datetime.now(timezone.utc)
    log_file = log_file_path(cfg.log_dir, started) if args.log else None
    configure_logging(verbose=args.verbose, log_file=log_file)
    if log_file is not None:
        logger.info("Logging to %s", log_file)

    timer = PhaseTimer()
    outcome = asyncio.run(run_rollout(cfg, skip_build=args.skip_build, force=args.force, timer=timer))

    print("")
    for line in timer.summary_lines():
        print(line)
    print_outcome(outcome)

    if args.log:
        stamp = started.strftime("%Y-%m-%d_%H-%M-%S")
        try:
            timer.write_reports(cfg.log_dir, stamp, outcome=outcome.kind.value)
        except OSError as e:
            logger.warning("Could not write timing report: %s", e)
    if args.metrics_textfile:
        try:
            timer.export_metrics(Path(args.metrics_textfile), outcome=outcome.kind.value)
        except OSError as e:
            logger.warning("Could not write metrics textfile: %s", e)

    return outcome.exit_code


def console_main() -> None:
    sys.exit(main())


if __name__ == "__main__":
    console_main()
