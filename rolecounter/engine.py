"""
Reconciliation engine.

Three states, one debounce timer:

    IDLE --notify--> PENDING_DEBOUNCE --timer--> RUNNING --done--> IDLE
    IDLE / PENDING_DEBOUNCE --run_now / periodic tick--> RUNNING

While PENDING_DEBOUNCE, further notifications are coalesced into the armed
timer. While RUNNING, run_now and periodic ticks are skipped (never queued),
and notifications only mark a follow-up so the debounce window is armed again
once the current pass finishes. The timer handle is set exactly when the
state is PENDING_DEBOUNCE.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from typing import Optional, Set

from discord.ext import tasks

from rolecounter.audit import audit_log
from rolecounter.errors import ChannelNotFound, ChannelUpdateError, FetchFailed, NotFound
from rolecounter.membership import MembershipResolver
from rolecounter.models import DEFAULT_TEMPLATE, Binding, LabelVars, PassReport
from rolecounter.renderer import fit_label, render
from rolecounter.store import BindingStore
from rolecounter.updater import ChannelUpdater

DEFAULT_DEBOUNCE_SECONDS = 1.0
DEFAULT_INTERVAL_SECONDS = 60.0


class EngineState(enum.Enum):
    IDLE = "idle"
    PENDING_DEBOUNCE = "pending_debounce"
    RUNNING = "running"


class ReconciliationEngine:
    def __init__(
        self,
        store: BindingStore,
        resolver: MembershipResolver,
        updater: ChannelUpdater,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    ):
        self.store = store
        self.resolver = resolver
        self.updater = updater
        self.debounce_seconds = debounce_seconds
        self.interval_seconds = interval_seconds

        self.state = EngineState.IDLE
        self._timer: Optional[asyncio.TimerHandle] = None
        self._follow_up = False
        # Strong references so debounce-started passes are not garbage collected
        self._tasks: Set[asyncio.Task] = set()

        self.passes_run = 0
        self.last_report: Optional[PassReport] = None

        # Monotonic time the next periodic tick is due, and when the last periodic pass ended
        self._periodic_due: Optional[float] = None
        self._periodic_ended: Optional[float] = None

        self._periodic = tasks.loop(seconds=interval_seconds)(self._periodic_tick)

    # ---------------------------
    # Triggers
    # ---------------------------

    def notify_membership_change(self) -> None:
        """Called for every member join, leave or role change."""
        if self.state is EngineState.IDLE:
            self._arm_debounce()
        elif self.state is EngineState.RUNNING:
            self._follow_up = True

    async def run_now(self, trigger: str = "manual") -> Optional[PassReport]:
        """
        Run one pass immediately unless one is already running.
        Returns the pass report, or None when the request was skipped.
        """
        if self.state is EngineState.RUNNING:
            logging.info(f"[Reconcile] Pass already running; skipping {trigger} trigger.")
            return None
        self._begin()
        return await self._execute(trigger)

    @property
    def debounce_armed(self) -> bool:
        return self._timer is not None

    # ---------------------------
    # Periodic loop
    # ---------------------------

    def start(self) -> None:
        if not self._periodic.is_running():
            self._periodic.start()
            logging.info(f"[Reconcile] Periodic refresh every {self.interval_seconds:g}s started.")

    def stop(self) -> None:
        if self._periodic.is_running():
            self._periodic.cancel()
        self._cancel_debounce()
        if self.state is EngineState.PENDING_DEBOUNCE:
            self.state = EngineState.IDLE
        for task in list(self._tasks):
            task.cancel()

    def set_interval(self, seconds: float) -> None:
        self.interval_seconds = seconds
        self._periodic_due = None
        self._periodic_ended = None
        self._periodic.change_interval(seconds=seconds)
        logging.info(f"[Reconcile] Periodic refresh interval set to {seconds:g}s.")

    async def _periodic_tick(self) -> None:
        """
        tasks.Loop fires a late iteration immediately once an overrunning pass
        returns. A tick that came due while the previous periodic pass was
        still running is dropped so the next pass waits for its own interval.
        """
        now = time.monotonic()
        due = self._periodic_due if self._periodic_due is not None else now
        self._periodic_due = due + self.interval_seconds
        if self._periodic_ended is not None and self._periodic_ended > due:
            logging.info(
                f"[Periodic refresh] Tick came due {self._periodic_ended - due:.2f}s before the "
                f"previous pass ended; skipping until the next interval."
            )
            return
        try:
            await self.run_now("periodic")
        except Exception as e:
            logging.error(f"[Periodic refresh] Unexpected error: {e}", exc_info=True)
        finally:
            self._periodic_ended = time.monotonic()

    # ---------------------------
    # State transitions
    # ---------------------------

    def _arm_debounce(self) -> None:
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce_seconds, self._on_debounce_elapsed)
        self.state = EngineState.PENDING_DEBOUNCE

    def _cancel_debounce(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_debounce_elapsed(self) -> None:
        self._timer = None
        if self.state is not EngineState.PENDING_DEBOUNCE:
            return
        self._begin()
        task = asyncio.get_running_loop().create_task(self._execute("debounce"))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _begin(self) -> None:
        # A pass started from PENDING_DEBOUNCE sees every event the window held
        self._cancel_debounce()
        self.state = EngineState.RUNNING

    def _finish(self) -> None:
        if self._follow_up:
            self._follow_up = False
            self._arm_debounce()
        else:
            self.state = EngineState.IDLE

    # ---------------------------
    # Pass
    # ---------------------------

    async def _execute(self, trigger: str) -> PassReport:
        report = PassReport(trigger=trigger)
        try:
            snapshot = self.store.get_all()
            for binding in snapshot:
                try:
                    await self._reconcile_binding(binding, report)
                except Exception as e:
                    report.failed += 1
                    logging.error(
                        f"[Reconcile] Unexpected error for role {binding.group_id} "
                        f"in guild {binding.community_id}: {e}",
                        exc_info=True,
                    )
        finally:
            self.passes_run += 1
            self.last_report = report
            self._finish()
        if report.renamed or report.failed:
            logging.info(f"[Reconcile] {trigger} pass done: {report.summary()}.")
        else:
            logging.debug(f"[Reconcile] {trigger} pass done: {report.summary()}.")
        return report

    async def _reconcile_binding(self, binding: Binding, report: PassReport) -> None:
        try:
            snapshot = await self.resolver.resolve(binding.community_id, binding.group_id)
        except FetchFailed as e:
            logging.warning(f"[Reconcile] Skipping role {binding.group_id} this pass: {e}")
            report.skipped += 1
            return

        label = fit_label(
            render(
                binding.template or DEFAULT_TEMPLATE,
                LabelVars(
                    count=snapshot.count,
                    role_name=snapshot.group_name,
                    role_id=binding.group_id,
                    community_name=snapshot.community_name,
                ),
            )
        )

        if label == binding.last_applied_label:
            report.unchanged += 1
            return

        channel_id = binding.channel_id
        if not self.updater.is_renameable(channel_id):
            logging.debug(f"[Reconcile] Channel {channel_id} is not a voice channel; skipping.")
            report.skipped += 1
            return

        # Nothing applied yet this process: adopt the live name if it already matches
        if binding.last_applied_label is None and self.updater.current_label(channel_id) == label:
            self._record(binding, label)
            report.unchanged += 1
            return

        try:
            await self.updater.rename(channel_id, label, reason=f"Role counter update ({report.trigger})")
        except ChannelNotFound as e:
            report.failed += 1
            logging.error(
                f"[Reconcile] {e} Role {binding.group_id} in guild '{snapshot.community_name}' "
                f"needs cleanup with /removerole."
            )
            audit_log(
                f"Counter channel {channel_id} for role {binding.group_id} missing in guild "
                f"'{snapshot.community_name}' ({binding.community_id})."
            )
            return
        except ChannelUpdateError as e:
            report.failed += 1
            logging.warning(f"[Reconcile] {e}")
            return

        self._record(binding, label)
        report.renamed += 1
        logging.info(f"[{snapshot.community_name}] Renamed counter channel to '{label}'.")
        audit_log(
            f"Renamed counter channel {channel_id} to '{label}' in guild "
            f"'{snapshot.community_name}' ({binding.community_id})."
        )

    def _record(self, binding: Binding, label: str) -> None:
        try:
            self.store.record_applied_label(binding.community_id, binding.group_id, label)
        except NotFound:
            # Removed while this pass was running
            logging.debug(f"[Reconcile] Role {binding.group_id} was untracked mid-pass.")
