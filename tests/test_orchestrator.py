"""Tests for the Turn Orchestrator."""

import asyncio
import threading
from typing import Optional

import pytest

from architect_kernel.models.decision import OracleRequest
from architect_kernel.models.knowledge import KnowledgeCategory
from architect_kernel.models.plan import ConstructionPlan, PlanStep, StepStatus
from architect_kernel.models.simulation import (
    NetworkStatus,
    OrchestratorStatus,
    SimulationConfig,
    SimulationState,
)
from architect_kernel.models.world import LogType, WorldObjectType
from architect_kernel.oracle.adapter import DecisionOracleAdapter
from architect_kernel.oracle.client import OracleError
from architect_kernel.oracle.rule_based import RuleBasedOracle
from architect_kernel.orchestrator.turn import (
    PLAN_COMPLETE_PREFIX,
    STEP_COMPLETE_PREFIX,
    OrchestratorBusyError,
    TurnOrchestrator,
)
from architect_kernel.persistence.store import SessionStore
from architect_kernel.plan.state_machine import activate_plan
from architect_kernel.terrain.sampler import terrain_height


class ScriptedOracle:
    """Returns canned payloads (or raises canned errors) in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = 0

    def complete(self, request: OracleRequest) -> dict:
        self.calls += 1
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class BlockingOracle:
    """Holds the oracle call open until released."""

    def __init__(self, payload: dict):
        self.payload = payload
        self.entered = threading.Event()
        self.release = threading.Event()

    def complete(self, request: OracleRequest) -> dict:
        self.entered.set()
        self.release.wait(timeout=5)
        return self.payload


def _make_payload(**overrides) -> dict:
    payload = {
        "action": "PLACE",
        "objectType": "wall",
        "position": [2, 0, 5],
        "reason": "Perimeter needed.",
        "reasoningSteps": ["Scan", "Evaluate", "Commit"],
        "learningNote": "Wall Footing: level the ground first.",
        "knowledgeCategory": "Infrastructure",
        "taskLabel": "Raising wall",
    }
    payload.update(overrides)
    return payload


def _make_plan(
    positions=((2.0, 0.0, 5.0), (4.0, 0.0, 5.0), (6.0, 0.0, 5.0)),
    object_type: WorldObjectType = WorldObjectType.WALL,
) -> ConstructionPlan:
    steps = [
        PlanStep(label=f"Wall {i + 1}", type=object_type, position=pos)
        for i, pos in enumerate(positions)
    ]
    return activate_plan(
        ConstructionPlan(plan_id="plan_walls", objective="Enclose the yard", steps=steps)
    )


def _make_orchestrator(
    oracle,
    state: Optional[SimulationState] = None,
    store: Optional[SessionStore] = None,
    terrain=terrain_height,
    config: Optional[SimulationConfig] = None,
) -> TurnOrchestrator:
    config = config or SimulationConfig.instant()
    return TurnOrchestrator(
        adapter=DecisionOracleAdapter(oracle, config),
        state=state,
        config=config,
        terrain=terrain,
        store=store,
    )


def _messages(orch: TurnOrchestrator, log_type: Optional[LogType] = None):
    return [
        e.message for e in orch.state.logs
        if log_type is None or e.type == log_type
    ]


def _state_with_plan(plan: ConstructionPlan) -> SimulationState:
    return SimulationState.initial().model_copy(update={"active_plan": plan})


class TestSingleTick:
    def test_place_commits_everything(self):
        orch = _make_orchestrator(ScriptedOracle(_make_payload()))
        outcome = asyncio.run(orch.run_tick())

        state = orch.state
        assert len(state.objects) == 1
        placed = state.objects[0]
        assert placed.type == WorldObjectType.WALL
        assert placed.position == (2.0, terrain_height(2, 5), 5.0)
        assert outcome["placed_object_id"] == placed.id
        assert outcome["action"] == "PLACE"

        assert state.learning_iteration == 1
        assert len(state.knowledge_base) == 1
        entry = state.knowledge_base[0]
        assert entry.title == "Wall Footing"
        assert entry.category == KnowledgeCategory.INFRASTRUCTURE
        assert entry.iteration == 0
        assert outcome["knowledge_added"] == "Wall Footing"

        assert state.progression.total_blocks == 1
        assert state.progression.structures_completed == 0
        assert orch.avatar_position == placed.position

    def test_settles_idle(self):
        orch = _make_orchestrator(ScriptedOracle(_make_payload()))
        asyncio.run(orch.run_tick())
        assert orch.status == OrchestratorStatus.IDLE
        assert orch.state.network_status == NetworkStatus.UPLINK_ACTIVE
        assert orch.tick_count == 1

    def test_log_stream(self):
        orch = _make_orchestrator(ScriptedOracle(_make_payload()))
        asyncio.run(orch.run_tick())

        thinking = _messages(orch, LogType.THINKING)
        assert thinking[:2] == ["Initiating neural uplink...", "Accessing local sector topology map..."]
        assert thinking[2:] == ["[REASONING]: Scan", "[REASONING]: Evaluate", "[REASONING]: Commit"]
        assert any("Synthesis confirmed" in m for m in _messages(orch, LogType.SUCCESS))
        assert any("Wall Footing" in m for m in _messages(orch, LogType.LEARNING))

    def test_wait(self):
        orch = _make_orchestrator(ScriptedOracle(_make_payload(action="WAIT", reason="Too windy.")))
        outcome = asyncio.run(orch.run_tick())
        assert orch.state.objects == []
        assert orch.state.learning_iteration == 0
        assert orch.state.knowledge_base == []
        assert outcome["placed_object_id"] is None
        assert "Simulation standby: Too windy." in _messages(orch)

    def test_move(self):
        orch = _make_orchestrator(ScriptedOracle(_make_payload(action="MOVE", position=[7, 30, -3])))
        asyncio.run(orch.run_tick())
        assert orch.state.objects == []
        assert orch.avatar_position == (7.0, terrain_height(7, -3), -3.0)
        assert any(m.startswith("Relocating to 7.0, -3.0") for m in _messages(orch))

    def test_move_without_position_stands_by(self):
        payload = _make_payload(action="MOVE", reason="Nowhere to go.")
        del payload["position"]
        orch = _make_orchestrator(ScriptedOracle(payload))
        asyncio.run(orch.run_tick())
        assert orch.avatar_position == (0.0, 0.0, 0.0)
        assert "Simulation standby: Nowhere to go." in _messages(orch)

    def test_oracle_failure_becomes_wait(self):
        orch = _make_orchestrator(ScriptedOracle(OracleError("timed out")))
        outcome = asyncio.run(orch.run_tick())
        assert outcome["fallback"] is True
        assert outcome["action"] == "WAIT"
        assert outcome["error"] is None
        assert orch.state.objects == []
        assert "[REASONING]: Connection failure detected" in _messages(orch, LogType.THINKING)

    def test_place_defaults_without_plan(self):
        payload = _make_payload()
        del payload["objectType"]
        del payload["position"]
        orch = _make_orchestrator(ScriptedOracle(payload))
        asyncio.run(orch.run_tick())
        placed = orch.state.objects[0]
        assert placed.type == WorldObjectType.MODULAR_UNIT
        assert placed.position == (0.0, 0.0, 0.0)
        assert orch.state.progression.structures_completed == 1

    def test_duplicate_knowledge_not_recorded(self):
        orch = _make_orchestrator(ScriptedOracle(
            _make_payload(),
            _make_payload(position=[3, 0, 5], learningNote="Wall Footing: compact the soil."),
        ))

        async def scenario():
            await orch.run_tick()
            return await orch.run_tick()

        outcome = asyncio.run(scenario())
        assert len(orch.state.objects) == 2
        assert len(orch.state.knowledge_base) == 1
        assert orch.state.knowledge_base[0].description == "Wall Footing: level the ground first."
        assert orch.state.learning_iteration == 2
        assert outcome["knowledge_added"] is None


class TestPlanExecution:
    def test_place_at_plan_step_snaps_to_terrain(self):
        payload = _make_payload()
        del payload["objectType"]
        del payload["position"]
        orch = _make_orchestrator(ScriptedOracle(payload), state=_state_with_plan(_make_plan()))
        asyncio.run(orch.run_tick())

        placed = orch.state.objects[0]
        assert placed.type == WorldObjectType.WALL
        assert placed.position == (2.0, terrain_height(2, 5), 5.0)
        plan = orch.state.active_plan
        assert plan.current_step_index == 1
        assert [s.status for s in plan.steps] == [
            StepStatus.COMPLETED, StepStatus.ACTIVE, StepStatus.PENDING,
        ]

    def test_plan_completion_logged_once(self):
        payload = _make_payload()
        del payload["position"]
        orch = _make_orchestrator(
            ScriptedOracle(payload, dict(payload), dict(payload), _make_payload(action="WAIT")),
            state=_state_with_plan(_make_plan()),
        )

        async def scenario():
            for _ in range(4):
                await orch.run_tick()
                plan = orch.state.active_plan
                if plan is not None:
                    assert [s.status for s in plan.steps].count(StepStatus.ACTIVE) == 1

        asyncio.run(scenario())
        assert orch.state.active_plan is None
        assert len(orch.state.objects) == 3
        completions = [m for m in _messages(orch, LogType.SUCCESS) if m.startswith(PLAN_COMPLETE_PREFIX)]
        assert completions == [f"{PLAN_COMPLETE_PREFIX}: Enclose the yard"]
        step_logs = [m for m in _messages(orch, LogType.ACTION) if m.startswith(STEP_COMPLETE_PREFIX)]
        assert step_logs == [f"{STEP_COMPLETE_PREFIX}: Wall {i}" for i in (1, 2, 3)]

    def test_new_plan_replaces_current(self):
        current = _make_plan()
        payload = _make_payload(plan={
            "objective": "Solar field",
            "steps": [
                {"label": "Panel A", "type": "solar_panel", "position": [10, 0, 10], "status": "pending"},
                {"label": "Panel B", "type": "solar_panel", "position": [12, 0, 10], "status": "pending"},
            ],
        })
        orch = _make_orchestrator(ScriptedOracle(payload), state=_state_with_plan(current))
        outcome = asyncio.run(orch.run_tick())

        plan = orch.state.active_plan
        assert outcome["plan_adopted"] is True
        assert plan.objective == "Solar field"
        assert plan.current_step_index == 0
        assert [s.status for s in plan.steps] == [StepStatus.ACTIVE, StepStatus.PENDING]
        assert any(m.startswith("Plan adopted: Solar field") for m in _messages(orch))

    def test_wait_leaves_plan(self):
        plan = _make_plan()
        orch = _make_orchestrator(
            ScriptedOracle(_make_payload(action="WAIT")), state=_state_with_plan(plan)
        )
        asyncio.run(orch.run_tick())
        assert orch.state.active_plan == plan

    def test_settlement_build_with_rule_based_oracle(self):
        orch = _make_orchestrator(RuleBasedOracle())

        async def scenario():
            for _ in range(4):
                await orch.run_tick()

        asyncio.run(scenario())
        state = orch.state
        assert [o.type for o in state.objects] == [
            WorldObjectType.MODULAR_UNIT,
            WorldObjectType.SOLAR_PANEL,
            WorldObjectType.WATER_COLLECTOR,
            WorldObjectType.MODULAR_UNIT,
        ]
        for obj in state.objects:
            assert obj.position[1] == terrain_height(obj.position[0], obj.position[2])
        assert state.active_plan is None
        assert len(state.knowledge_base) == 3
        assert state.progression.total_blocks == 4
        assert state.progression.structures_completed == 2
        assert sum(1 for m in _messages(orch) if m.startswith(PLAN_COMPLETE_PREFIX)) == 1


class TestAtomicity:
    def test_failure_after_oracle_commits_nothing(self):
        def fragile_terrain(x, z):
            if x == 99:
                raise RuntimeError("terrain tile missing")
            return terrain_height(x, z)

        plan = _make_plan()
        orch = _make_orchestrator(
            ScriptedOracle(_make_payload(position=[99, 0, 0])),
            state=_state_with_plan(plan),
            terrain=fragile_terrain,
        )
        before = orch.state
        outcome = asyncio.run(orch.run_tick())

        after = orch.state
        assert after.objects == before.objects
        assert after.knowledge_base == before.knowledge_base
        assert after.progression == before.progression
        assert after.learning_iteration == before.learning_iteration
        assert after.active_plan == plan
        assert "terrain tile missing" in outcome["error"]
        assert after.logs[-1].type == LogType.ERROR
        assert after.logs[-1].message.startswith("Critical neural desync. Link unstable:")
        assert orch.status == OrchestratorStatus.IDLE

    def test_plan_invariant_violation_is_fatal(self):
        broken = _make_plan()
        steps = [s.model_copy(update={"status": StepStatus.PENDING}) for s in broken.steps]
        broken = broken.model_copy(update={"steps": steps})

        payload = _make_payload()
        del payload["position"]
        orch = _make_orchestrator(ScriptedOracle(payload), state=_state_with_plan(broken))
        outcome = asyncio.run(orch.run_tick())

        assert outcome["error"] is not None
        assert orch.state.objects == []
        assert orch.state.learning_iteration == 0
        assert orch.state.active_plan == broken
        assert orch.state.logs[-1].type == LogType.ERROR

    def test_next_tick_runs_after_failure(self):
        orch = _make_orchestrator(ScriptedOracle(RuntimeError("boom"), _make_payload()))

        async def scenario():
            await orch.run_tick()
            return await orch.run_tick()

        outcome = asyncio.run(scenario())
        assert outcome["placed_object_id"] is not None
        assert len(orch.state.objects) == 1


class TestSingleFlight:
    def test_concurrent_ticks_call_oracle_once(self):
        oracle = ScriptedOracle(_make_payload())
        orch = _make_orchestrator(oracle)

        async def scenario():
            return await asyncio.gather(orch.run_tick(), orch.run_tick())

        first, second = asyncio.run(scenario())
        assert oracle.calls == 1
        assert [first is None, second is None].count(True) == 1
        assert len(orch.state.objects) == 1
        assert orch.tick_count == 1

    def test_state_changes_rejected_mid_tick(self):
        oracle = BlockingOracle(_make_payload(action="WAIT"))
        orch = _make_orchestrator(oracle)

        async def scenario():
            task = asyncio.create_task(orch.run_tick())
            while not oracle.entered.is_set():
                await asyncio.sleep(0.01)
            assert orch.is_running
            assert orch.state.network_status == NetworkStatus.SYNCING
            assert await orch.run_tick() is None
            with pytest.raises(OrchestratorBusyError):
                orch.set_goal("Something else")
            oracle.release.set()
            return await task

        outcome = asyncio.run(scenario())
        assert outcome["action"] == "WAIT"
        assert not orch.is_running


class TestLifecycle:
    def test_close_discards_in_flight_result(self):
        oracle = BlockingOracle(_make_payload())
        orch = _make_orchestrator(oracle)

        async def scenario():
            task = asyncio.create_task(orch.run_tick())
            while not oracle.entered.is_set():
                await asyncio.sleep(0.01)
            await orch.close()
            oracle.release.set()
            return await task

        outcome = asyncio.run(scenario())
        assert outcome["discarded"] is True
        assert orch.state.objects == []
        assert orch.state.network_status == NetworkStatus.OFFLINE
        assert orch.closed

    def test_close_during_reasoning_discards_move(self):
        payload = _make_payload(
            action="MOVE", position=[10, 0, 10], reason="Reposition.",
            reasoningSteps=["a", "b", "c"],
        )
        config = SimulationConfig.instant().model_copy(update={"reasoning_delay_seconds": 0.05})
        orch = _make_orchestrator(ScriptedOracle(payload), config=config)

        async def scenario():
            task = asyncio.create_task(orch.run_tick())
            while "[REASONING]: a" not in _messages(orch):
                await asyncio.sleep(0.005)
            await orch.close()
            logs_at_close = list(orch.state.logs)
            outcome = await task
            return outcome, logs_at_close

        outcome, logs_at_close = asyncio.run(scenario())
        assert outcome["discarded"] is True
        assert orch.avatar_position == (0.0, 0.0, 0.0)
        assert orch.state.logs == logs_at_close
        assert "[REASONING]: b" not in _messages(orch)
        assert not any(m.startswith("Relocating") for m in _messages(orch))

    def test_close_during_placement_leaves_avatar(self):
        config = SimulationConfig.instant().model_copy(update={"placement_delay_seconds": 0.2})
        orch = _make_orchestrator(ScriptedOracle(_make_payload()), config=config)

        async def scenario():
            task = asyncio.create_task(orch.run_tick())
            while "[REASONING]: Commit" not in _messages(orch):
                await asyncio.sleep(0.005)
            await orch.close()
            return await task

        outcome = asyncio.run(scenario())
        assert outcome["discarded"] is True
        assert outcome["placed_object_id"] is None
        assert orch.state.objects == []
        assert orch.state.learning_iteration == 0
        assert orch.avatar_position == (0.0, 0.0, 0.0)

    def test_failed_placement_leaves_avatar(self):
        def fragile_terrain(x, z):
            if x == 99:
                raise RuntimeError("terrain tile missing")
            return terrain_height(x, z)

        orch = _make_orchestrator(
            ScriptedOracle(_make_payload(), _make_payload(position=[99, 0, 0])),
            terrain=fragile_terrain,
        )

        async def scenario():
            await orch.run_tick()
            return await orch.run_tick()

        outcome = asyncio.run(scenario())
        assert outcome["error"]
        assert orch.avatar_position == orch.state.objects[-1].position

    def test_ticks_ignored_after_close(self):
        oracle = ScriptedOracle(_make_payload())
        orch = _make_orchestrator(oracle)

        async def scenario():
            await orch.close()
            return await orch.run_tick()

        assert asyncio.run(scenario()) is None
        assert oracle.calls == 0

    def test_autonomous_max_ticks(self):
        orch = _make_orchestrator(RuleBasedOracle())
        ticks = asyncio.run(orch.run_autonomous(max_ticks=3))
        assert ticks == 3
        assert orch.tick_count == 3
        assert len(orch.state.objects) == 3

    def test_autonomous_stops_on_event(self):
        orch = _make_orchestrator(RuleBasedOracle())

        async def scenario():
            stop = asyncio.Event()
            stop.set()
            return await orch.run_autonomous(stop_event=stop)

        assert asyncio.run(scenario()) == 0
        assert orch.tick_count == 0

    def test_start_then_close(self):
        orch = _make_orchestrator(RuleBasedOracle())

        async def scenario():
            orch.start()
            while orch.tick_count < 2:
                await asyncio.sleep(0.01)
            await orch.close()

        asyncio.run(scenario())
        assert orch.closed
        assert not orch.is_running
        assert orch.state.network_status == NetworkStatus.OFFLINE


class TestPersistence:
    def test_state_saved_after_tick(self):
        store = SessionStore()
        orch = _make_orchestrator(ScriptedOracle(_make_payload()), store=store)
        asyncio.run(orch.run_tick())

        saved = store.load()
        assert saved is not None
        assert len(saved.objects) == 1
        assert saved.knowledge_base[0].title == "Wall Footing"

    def test_resume_from_snapshot(self):
        store = SessionStore()
        first = _make_orchestrator(RuleBasedOracle(), store=store)
        asyncio.run(first.run_tick())

        resumed = _make_orchestrator(RuleBasedOracle(), state=store.load(), store=store)
        assert len(resumed.state.objects) == 1
        assert resumed.state.active_plan is not None
        asyncio.run(resumed.run_tick())
        assert [o.type for o in resumed.state.objects] == [
            WorldObjectType.MODULAR_UNIT, WorldObjectType.SOLAR_PANEL,
        ]

    def test_store_failure_does_not_break_tick(self):
        store = SessionStore()
        store.close()
        orch = _make_orchestrator(ScriptedOracle(_make_payload()), store=store)
        outcome = asyncio.run(orch.run_tick())
        assert outcome["error"] is None
        assert len(orch.state.objects) == 1


class TestOutsideTick:
    def test_set_goal(self):
        orch = _make_orchestrator(ScriptedOracle())
        orch.set_goal("Build a greenhouse")
        assert orch.state.current_goal == "Build a greenhouse"
        assert _messages(orch)[-1] == "Goal updated: Build a greenhouse"

    def test_render_view(self):
        orch = _make_orchestrator(ScriptedOracle(_make_payload()), state=_state_with_plan(_make_plan()))
        asyncio.run(orch.run_tick())
        view = orch.render_view()
        assert view.objects == orch.state.objects
        assert view.avatar_position == orch.state.objects[-1].position
        assert view.active_plan == orch.state.active_plan

    def test_replace_state_moves_avatar(self):
        orch = _make_orchestrator(ScriptedOracle(_make_payload()))
        asyncio.run(orch.run_tick())
        placed = orch.state

        fresh = _make_orchestrator(ScriptedOracle())
        fresh.replace_state(placed)
        assert fresh.avatar_position == placed.objects[-1].position

    def test_status_summary(self):
        orch = _make_orchestrator(ScriptedOracle(_make_payload()))
        asyncio.run(orch.run_tick())
        summary = orch.status_summary()
        assert summary["status"] == "idle"
        assert summary["object_count"] == 1
        assert summary["knowledge_count"] == 1
        assert summary["progression"]["total_blocks"] == 1
        assert summary["plan_active"] is False
