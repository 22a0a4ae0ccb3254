"""
Main entry point for running a timer plan.

Loads a plan, builds a TemporalController, and runs until the plan's
virtual duration has elapsed or the user stops it. The controller fires
timers on its own scheduler thread; this loop drains every timer's channel
into the console reporter and keeps the health endpoint current.
"""

import asyncio
import logging
import signal
from datetime import timedelta
from pathlib import Path

import click

from temporal import config
from temporal.core.controller import TemporalController
from temporal.debug.breakpoints import BreakpointHit
from temporal.output.console import ConsoleReporter
from temporal.plan.loader import ActionFactory, PlanLoader, TimerPlan, TimerSpec, parse_duration
from temporal.snapshot.io import load_snapshot, save_snapshot
from scripts.health_server import HealthServer

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def build_actions(controller: TemporalController, snapshot_dir: str) -> dict[str, ActionFactory]:
    """Built-in actions that plan timers can reference by name."""

    def log_action(spec: TimerSpec):
        def run():
            logger.info(f"[{spec.entry_id}] {spec.message or 'timer fired'}")
        return run

    def pause_action(spec: TimerSpec):
        def run():
            logger.info(f"[{spec.entry_id}] pausing all timers")
            controller.pause_all()
        return run

    def snapshot_action(spec: TimerSpec):
        def run():
            snapshot = controller.create_snapshot()
            millis = int(snapshot.virtual_now.total_seconds() * 1000)
            save_snapshot(snapshot, Path(snapshot_dir) / f"{spec.entry_id}-{millis}ms.yaml")
        return run

    return {"log": log_action, "pause": pause_action, "snapshot": snapshot_action}


async def drain_loop(
    controller: TemporalController,
    reporter: ConsoleReporter,
    stop_event: asyncio.Event,
    poll_s: float,
    duration: timedelta | None,
) -> None:
    """Forward fires to the reporter until the duration elapses or the user stops."""
    polls = 0
    while not stop_event.is_set():
        for entry in controller.entries.values():
            for value in entry.channel.drain():
                reporter.report_fire(entry, value)

        polls += 1
        if polls % max(1, int(5.0 / poll_s)) == 0:
            reporter.report_status(controller.status())

        if duration is not None and controller.now() >= duration:
            logger.info(f"Virtual duration {duration.total_seconds():.3f}s reached")
            break

        await asyncio.sleep(poll_s)


async def run(
    plan_path: str | None,
    speed: float | None,
    duration: str | None,
    restore: str | None,
    snapshot_out: str | None,
    health_port: int,
    health: bool,
    poll: float,
) -> None:
    """Run the timer plan."""
    print(f"\nTemporal timer runner v{VERSION}")
    print("=" * 40)

    plan: TimerPlan | None = None
    if plan_path:
        print(f"Loading plan: {plan_path}")
        plan = PlanLoader().load(plan_path)
        print(f"Loaded {len(plan.tickers)} tickers, {len(plan.timers)} timers, "
              f"{len(plan.breakpoints)} breakpoints")

    controller = TemporalController(
        speed=speed if speed is not None else config.DEFAULT_SPEED,
        name=plan.name if plan else "temporal",
    )
    reporter = ConsoleReporter()

    def on_break(hit: BreakpointHit) -> None:
        reporter.report_breakpoint(hit)
        print("Controller paused at breakpoint. Press Ctrl+C to stop.")

    controller.on_breakpoint(on_break)

    if plan:
        plan.apply(controller, build_actions(controller, config.SNAPSHOT_DIR))
        if speed is not None:
            controller.set_global_speed(speed)

    if restore:
        print(f"Restoring snapshot: {restore}")
        controller.restore_snapshot(load_snapshot(restore))
        if controller.global_paused:
            print("Snapshot was taken while paused, resuming")
            controller.resume_all()

    run_for = parse_duration(duration) if duration else (plan.duration if plan else None)

    health_server = None
    if health:
        health_server = HealthServer(controller, port=health_port, host=config.HEALTH_HOST)
        health_server.plan_name = plan.name if plan else "none"
        await health_server.start()

    print(f"\nRunning at {controller.global_speed}x "
          f"(virtual duration: {run_for.total_seconds() if run_for else 'unbounded'}s)")
    print("Press Ctrl+C to stop\n")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    if plan or restore:
        await drain_loop(controller, reporter, stop, poll, run_for)
    else:
        logger.info("No plan specified, running in standby mode")
        await stop.wait()

    print("\nShutting down...")
    controller.pause_all()
    if snapshot_out:
        save_snapshot(controller.create_snapshot(), snapshot_out)
        print(f"Final snapshot written to {snapshot_out}")

    status = controller.status()
    print(f"Ran for {status['virtual_time_s']:.3f} virtual seconds")
    for entry_id, info in status["timers"].items():
        print(f"  {entry_id:<20} {info['kind']:<9} {info['status']:<8} ticks={info['ticks']}")

    controller.close()
    if health_server:
        await health_server.stop()
    print("Runner stopped")


@click.command()
@click.option("--plan", "-p", "plan_path", default=None, help="Path to timer plan YAML file")
@click.option("--speed", type=float, default=None, help="Global speed multiplier (overrides the plan)")
@click.option("--duration", "-d", default=None, help="Virtual run time, e.g. 30s, 2m, 00:05:00")
@click.option("--restore", default=None, help="Snapshot file to restore before running")
@click.option("--snapshot-out", default=None, help="Write a final snapshot here on exit")
@click.option("--health-port", default=config.HEALTH_PORT, help="Health endpoint port")
@click.option("--health/--no-health", default=config.HEALTH_ENABLED, help="Serve /health")
@click.option("--poll", type=click.FloatRange(min=0, min_open=True), default=config.POLL_INTERVAL_S,
              help="Wall seconds between channel drains")
@click.option("--log-level", default=config.LOG_LEVEL, help="Logging level")
def main(
    plan_path: str | None, speed: float | None, duration: str | None,
    restore: str | None, snapshot_out: str | None, health_port: int,
    health: bool, poll: float, log_level: str,
) -> None:
    """Temporal timer runner: virtual-time timers with pause, step and snapshots."""
    logging.basicConfig(level=log_level.upper(), format=config.LOG_FORMAT)
    asyncio.run(run(plan_path, speed, duration, restore, snapshot_out, health_port, health, poll))


if __name__ == "__main__":
    main()
