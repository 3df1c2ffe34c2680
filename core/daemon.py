"""
Daemon Loop - runs heartbeat then export on a fixed interval.

Each step is its own child process, so a crash in one cannot leave the
other with broken state. Steps run one after the other, never together,
because both touch the identity store.

A failed step is logged and the loop keeps going. A failed heartbeat skips
that tick's export; the next tick starts from scratch.
"""

import sys
import signal
import asyncio
import logging
import contextlib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from .config import TreasuryConfig
from .units import iso_from_ms
from .identity_store import now_ms

logger = logging.getLogger("cxau.daemon")

MAIN_SCRIPT = Path(__file__).resolve().parent.parent / "main.py"


@dataclass(frozen=True)
class DaemonStep:
    label: str
    argv: tuple[str, ...]


def default_steps() -> list[DaemonStep]:
    return [
        DaemonStep("heartbeat", (sys.executable, str(MAIN_SCRIPT), "heartbeat")),
        DaemonStep("snapshot", (sys.executable, str(MAIN_SCRIPT), "export")),
    ]


class TreasuryDaemon:
    """
    Usage:
        daemon = TreasuryDaemon(config)
        await daemon.run()          # until stop() or SIGINT/SIGTERM
    """

    def __init__(self, config: TreasuryConfig, steps: Optional[Sequence[DaemonStep]] = None,
                 interval_seconds: Optional[float] = None):
        self.config = config
        self.steps = list(steps) if steps is not None else default_steps()
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else config.interval_minutes * 60
        )
        self.step_timeout = float(config.step_timeout_seconds)

        self._stop = asyncio.Event()
        self.ticks = 0
        self.failed_ticks = 0

    def stop(self):
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def run_step(self, step: DaemonStep) -> bool:
        """Run one child process to completion. True on exit code 0."""
        try:
            proc = await asyncio.create_subprocess_exec(*step.argv)
        except OSError as e:
            logger.error(f"[{step.label}] could not start: {e}")
            return False

        try:
            code = await asyncio.wait_for(proc.wait(), timeout=self.step_timeout)
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            logger.error(f"[{step.label}] timed out after {self.step_timeout:.0f}s, killed")
            return False

        if code != 0:
            logger.error(f"[{step.label}] failed with code {code}")
            return False
        return True

    async def tick(self) -> bool:
        logger.info(f"Tick start {iso_from_ms(now_ms())}")
        self.ticks += 1
        for step in self.steps:
            if not await self.run_step(step):
                self.failed_ticks += 1
                logger.warning(f"Tick aborted at {step.label}, retrying next interval")
                return False
        logger.info(f"Tick complete {iso_from_ms(now_ms())}")
        return True

    async def _sleep(self) -> None:
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)

    async def run(self, max_ticks: Optional[int] = None):
        logger.info(
            f"Daemon started. Interval: {self.interval_seconds / 60:g} min | "
            f"steps: {', '.join(s.label for s in self.steps)}"
        )
        while not self.stopping:
            await self.tick()
            if max_ticks is not None and self.ticks >= max_ticks:
                break
            await self._sleep()
        logger.info(f"Daemon stopped after {self.ticks} ticks ({self.failed_ticks} failed)")


async def _run_until_signalled(daemon: TreasuryDaemon):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, daemon.stop)
    await daemon.run()


def daemon_main(config: Optional[TreasuryConfig] = None) -> int:
    """Process entry for `main.py daemon`."""
    config = config or TreasuryConfig.from_env()
    asyncio.run(_run_until_signalled(TreasuryDaemon(config)))
    return 0
