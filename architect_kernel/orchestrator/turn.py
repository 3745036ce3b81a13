"""
Turn Orchestrator — the simulation's control loop.

Each tick consults the oracle once and folds the decision into the
SimulationState:

  IDLE → RUNNING → (uplink logs → oracle → reasoning logs → execute → commit) → IDLE

Single-flight: a tick requested while another is RUNNING is a no-op.
All-or-nothing: a PLACE commits the new object, plan transition,
knowledge entry, progression update and iteration increment together.
An exception before the commit leaves all of them untouched; only the
log stream records that the tick failed.
"""

import asyncio
import contextlib
import logging
from datetime import datetime
from typing import Callable, Optional
from uuid import uuid4

from architect_kernel.knowledge.ledger import append_entry, derive_title
from architect_kernel.models.decision import Decision, OracleAction
from architect_kernel.models.simulation import (
    NetworkStatus,
    OrchestratorStatus,
    RenderView,
    SimulationConfig,
    SimulationState,
)
from architect_kernel.models.world import LogEntry, LogType, Vector3, WorldObject
from architect_kernel.oracle.adapter import DecisionOracleAdapter
from architect_kernel.persistence.store import SESSION_KEY, SessionStore
from architect_kernel.plan.state_machine import (
    check_plan_invariant,
    effective_plan,
    next_plan_state,
)
from architect_kernel.progression.tracker import update_progression
from architect_kernel.terrain.sampler import TerrainSampler, snap_to_terrain, terrain_height

logger = logging.getLogger(__name__)


PLAN_COMPLETE_PREFIX = "Construction objective achieved"
STEP_COMPLETE_PREFIX = "Plan step complete"
IDLE_TASK_AUTO = "Scanning topology..."
IDLE_TASK_MANUAL = "Standby"


class OrchestratorBusyError(RuntimeError):
    """Raised when a state change is requested while a tick is in flight."""
    pass


class TurnOrchestrator:
    """
    Owns the SimulationState and is its only writer.

    States:
      IDLE ⇄ RUNNING, guarded by the status flag alone. The flag is set
      before the first suspension point, so a concurrent run_tick() sees
      it and returns immediately.
    """

    def __init__(
        self,
        adapter: DecisionOracleAdapter,
        state: Optional[SimulationState] = None,
        config: Optional[SimulationConfig] = None,
        terrain: TerrainSampler = terrain_height,
        store: Optional[SessionStore] = None,
        session_key: str = SESSION_KEY,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.adapter = adapter
        self.config = config or SimulationConfig()
        self.terrain = terrain
        self.store = store
        self.session_key = session_key
        self._clock = clock or datetime.utcnow

        self._state = state or SimulationState.initial(now=self._clock())
        self._status = OrchestratorStatus.IDLE
        self._avatar_position: Vector3 = (0.0, 0.0, 0.0)
        self._current_task = "Analyzing local sector..."
        self._tick_count = 0
        self._closed = False
        self._autonomous = False
        self._stop_event: Optional[asyncio.Event] = None
        self._autonomous_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> SimulationState:
        """The current state. Collections are replaced, never mutated in place."""
        return self._state

    @property
    def status(self) -> OrchestratorStatus:
        return self._status

    @property
    def is_running(self) -> bool:
        return self._status == OrchestratorStatus.RUNNING

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def avatar_position(self) -> Vector3:
        return self._avatar_position

    @property
    def current_task(self) -> str:
        return self._current_task

    @property
    def tick_count(self) -> int:
        return self._tick_count

    def render_view(self) -> RenderView:
        """Objects, avatar and plan for the rendering collaborator."""
        return RenderView(
            objects=list(self._state.objects),
            avatar_position=self._avatar_position,
            active_plan=self._state.active_plan,
        )

    def status_summary(self) -> dict:
        """Orchestrator and simulation counters."""
        state = self._state
        return {
            "status": self._status.value,
            "network_status": state.network_status.value,
            "autonomous": self._autonomous,
            "closed": self._closed,
            "tick_count": self._tick_count,
            "current_task": self._current_task,
            "current_goal": state.current_goal,
            "learning_iteration": state.learning_iteration,
            "object_count": len(state.objects),
            "knowledge_count": len(state.knowledge_base),
            "plan_active": state.active_plan is not None,
            "progression": state.progression.model_dump(mode="json"),
        }

    # --- State changes outside a tick ---

    def set_goal(self, goal: str) -> None:
        """Replace the current goal. Not allowed mid-tick."""
        self._require_idle()
        self._update(current_goal=goal)
        self._log(f"Goal updated: {goal}", LogType.ACTION)

    def replace_state(self, state: SimulationState) -> None:
        """Swap in a loaded snapshot. Not allowed mid-tick."""
        self._require_idle()
        self._state = state
        self._avatar_position = (
            state.objects[-1].position if state.objects else (0.0, 0.0, 0.0)
        )

    def _require_idle(self) -> None:
        if self.is_running:
            raise OrchestratorBusyError("A tick is in progress")

    # --- The tick ---

    async def run_tick(self) -> Optional[dict]:
        """
        Run one full tick.

        Returns None when suppressed by the guard (or after close()),
        otherwise a summary of what happened.
        """
        if self.is_running or self._closed:
            logger.debug("Tick suppressed (status=%s, closed=%s)", self._status.value, self._closed)
            return None

        self._status = OrchestratorStatus.RUNNING
        self._tick_count += 1
        outcome = {
            "tick": self._tick_count,
            "action": None,
            "task_label": None,
            "fallback": False,
            "placed_object_id": None,
            "plan_adopted": False,
            "plan_completed": False,
            "knowledge_added": None,
            "discarded": False,
            "error": None,
        }

        try:
            self._update(network_status=NetworkStatus.SYNCING)
            self._log("Initiating neural uplink...", LogType.THINKING)
            await asyncio.sleep(self.config.uplink_delay_seconds)
            self._log("Accessing local sector topology map...", LogType.THINKING)
            await asyncio.sleep(self.config.topology_delay_seconds)

            try:
                snapshot = self._state
                decision = await asyncio.to_thread(
                    self.adapter.decide,
                    snapshot.logs,
                    snapshot.objects,
                    snapshot.current_goal,
                    snapshot.knowledge_base,
                    self.terrain,
                    snapshot.active_plan,
                )
                if self._discarded(outcome):
                    return outcome

                outcome["action"] = decision.action.value
                outcome["task_label"] = decision.task_label
                outcome["fallback"] = decision.fallback
                await self._execute(decision, outcome)
            except Exception as exc:
                logger.exception("Tick %d failed", outcome["tick"])
                outcome["error"] = str(exc)
                self._log(f"Critical neural desync. Link unstable: {exc}", LogType.ERROR)
        finally:
            self._status = OrchestratorStatus.IDLE
            if not self._closed:
                self._update(network_status=NetworkStatus.UPLINK_ACTIVE)
            self._current_task = IDLE_TASK_AUTO if self._autonomous else IDLE_TASK_MANUAL
            self._persist()

        logger.info(
            "Tick %d settled: action=%s placed=%s error=%s",
            outcome["tick"], outcome["action"], outcome["placed_object_id"], outcome["error"],
        )
        return outcome

    async def _execute(self, decision: Decision, outcome: dict) -> None:
        """Stream the reasoning, then carry out the chosen action."""
        self._current_task = decision.task_label
        for step in decision.reasoning_steps:
            self._log(f"[REASONING]: {step}", LogType.THINKING)
            await asyncio.sleep(self.config.reasoning_delay_seconds)
            if self._discarded(outcome):
                return

        if decision.action == OracleAction.PLACE:
            await self._place(decision, outcome)
        elif decision.action == OracleAction.MOVE and decision.position is not None:
            self._move(decision)
        else:
            self._log(f"Simulation standby: {decision.reason}", LogType.ACTION)

    async def _place(self, decision: Decision, outcome: dict) -> None:
        """Resolve the target, then commit every consequence of the placement at once."""
        if decision.plan is None and self._state.active_plan is not None:
            check_plan_invariant(self._state.active_plan)

        plan = effective_plan(self._state.active_plan, decision)
        step = plan.current_step if plan is not None else None

        object_type = decision.object_type or (
            step.type if step is not None else self.config.default_object_type
        )
        target = decision.position or (
            step.position if step is not None else (0.0, 0.0, 0.0)
        )
        target = snap_to_terrain(target, self.terrain)

        await asyncio.sleep(self.config.placement_delay_seconds)
        if self._discarded(outcome):
            return

        state = self._state
        now = self._clock()
        placed = WorldObject(
            id=f"obj_{uuid4().hex[:12]}",
            type=object_type,
            position=target,
            timestamp=now,
        )
        transition = next_plan_state(state.active_plan, decision)
        knowledge = append_entry(
            state.knowledge_base,
            decision.learning_note,
            decision.knowledge_category,
            state.learning_iteration,
            decision.grounding_links,
            timestamp=now,
        )
        progression = update_progression(
            state.progression, object_type, self.config.primary_structure_type
        )

        # Commit
        self._update(
            objects=[*state.objects, placed],
            active_plan=transition.plan,
            knowledge_base=knowledge,
            progression=progression,
            learning_iteration=state.learning_iteration + 1,
        )
        self._avatar_position = target

        outcome["placed_object_id"] = placed.id
        outcome["plan_adopted"] = transition.adopted
        outcome["plan_completed"] = transition.plan_completed

        if transition.adopted:
            self._log(
                f"Plan adopted: {transition.plan.objective} "
                f"({len(transition.plan.steps)} steps)",
                LogType.ACTION,
            )
        self._log(
            f"Synthesis confirmed: deployed {object_type.value} unit at "
            f"{target[0]:.1f}, {target[2]:.1f}.",
            LogType.SUCCESS,
        )
        if transition.completed_step is not None:
            self._log(
                f"{STEP_COMPLETE_PREFIX}: {transition.completed_step.label}",
                LogType.ACTION,
            )
        if len(knowledge) > len(state.knowledge_base):
            entry = knowledge[-1]
            outcome["knowledge_added"] = entry.title
            self._log(
                f"Knowledge recorded: {entry.title} [{entry.category.value}]",
                LogType.LEARNING,
            )
        else:
            logger.debug("Knowledge title %r already known", derive_title(decision.learning_note))
        if transition.plan_completed:
            self._log(
                f"{PLAN_COMPLETE_PREFIX}: {transition.finished_plan.objective}",
                LogType.SUCCESS,
            )

    def _move(self, decision: Decision) -> None:
        target = snap_to_terrain(decision.position, self.terrain)
        self._avatar_position = target
        self._log(
            f"Relocating to {target[0]:.1f}, {target[2]:.1f}: {decision.reason}",
            LogType.ACTION,
        )

    # --- Autonomous mode ---

    async def run_autonomous(
        self,
        stop_event: Optional[asyncio.Event] = None,
        max_ticks: Optional[int] = None,
    ) -> int:
        """
        Tick until stopped. The next tick starts tick_interval_seconds after
        the previous one settled. Returns the number of ticks run.
        """
        self._autonomous = True
        self._stop_event = stop_event or asyncio.Event()
        ticks = 0

        try:
            while not self._stop_event.is_set() and not self._closed:
                await self.run_tick()
                ticks += 1
                if max_ticks is not None and ticks >= max_ticks:
                    break
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=self.config.tick_interval_seconds,
                    )
                except asyncio.TimeoutError:
                    continue
        finally:
            self._autonomous = False
        return ticks

    def start(self) -> asyncio.Task:
        """Schedule the autonomous loop on the running event loop."""
        if self._autonomous_task is not None and not self._autonomous_task.done():
            return self._autonomous_task
        self._autonomous_task = asyncio.get_running_loop().create_task(
            self.run_autonomous()
        )
        return self._autonomous_task

    def stop(self) -> None:
        """Stop scheduling new ticks. A tick in flight runs to completion."""
        if self._stop_event is not None:
            self._stop_event.set()

    async def close(self) -> None:
        """
        Tear down: cancel the scheduled loop and discard any oracle result
        still in flight. The state is left as of the last commit.
        """
        self._closed = True
        self.stop()
        task = self._autonomous_task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._autonomous_task = None
        self._update(network_status=NetworkStatus.OFFLINE)
        self._persist()

    # --- Helpers ---

    def _discarded(self, outcome: dict) -> bool:
        """True once close() has landed; the rest of the tick is dropped."""
        if not self._closed:
            return False
        if not outcome["discarded"]:
            logger.info("Tick %d: discarding oracle result after close", outcome["tick"])
        outcome["discarded"] = True
        return True

    def _update(self, **fields) -> None:
        self._state = self._state.model_copy(update=fields)

    def _log(self, message: str, log_type: LogType = LogType.ACTION) -> LogEntry:
        entry = LogEntry(
            id=f"log_{uuid4().hex[:12]}",
            type=log_type,
            message=message,
            timestamp=self._clock(),
        )
        self._update(logs=[*self._state.logs, entry])
        logger.debug("[%s] %s", log_type.value, message)
        return entry

    def _persist(self) -> None:
        if self.store is None:
            return
        try:
            self.store.save(self._state, self.session_key)
        except Exception as exc:
            logger.warning("Failed to save session snapshot: %s", exc)
