"""
Architect Kernel API — FastAPI endpoints.

Exposes the simulation via a REST API for:
- Raw oracle decisions (the thin decide endpoint)
- State, status and rendering inspection
- Manual ticks
- Goal management
- Session save/load
"""

import logging
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from architect_kernel.knowledge.ledger import entries_by_category
from architect_kernel.models.decision import OracleRequest
from architect_kernel.models.knowledge import KnowledgeCategory
from architect_kernel.models.simulation import (
    INITIAL_GOAL,
    OracleConfig,
    SimulationConfig,
)
from architect_kernel.oracle.adapter import DecisionOracleAdapter, build_system_prompt
from architect_kernel.oracle.client import DecisionOracle, OllamaOracle
from architect_kernel.orchestrator.turn import OrchestratorBusyError, TurnOrchestrator
from architect_kernel.persistence.store import SessionStore, SnapshotIntegrityError

logger = logging.getLogger(__name__)


# --- Request/Response Models ---

class DecideRequest(BaseModel):
    prompt: str
    currentGoal: str = INITIAL_GOAL
    knowledgeBase: list = []


class GoalUpdateRequest(BaseModel):
    goal: str


class TickResponse(BaseModel):
    status: str
    outcome: Optional[dict] = None


def _knowledge_titles(entries: list) -> List[str]:
    titles = []
    for entry in entries:
        if isinstance(entry, dict) and isinstance(entry.get("title"), str):
            titles.append(entry["title"])
    return titles


# --- Application Factory ---

def create_app(
    orchestrator: Optional[TurnOrchestrator] = None,
    oracle: Optional[DecisionOracle] = None,
    session_store: Optional[SessionStore] = None,
    simulation_config: Optional[SimulationConfig] = None,
    oracle_config: Optional[OracleConfig] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Architect Kernel API",
        description="Autonomous construction simulation kernel",
        version="0.1.0-alpha",
    )

    # Initialize components
    if orchestrator is None:
        oc = oracle or OllamaOracle(oracle_config or OracleConfig.from_env())
        config = simulation_config or SimulationConfig()
        orchestrator = TurnOrchestrator(
            adapter=DecisionOracleAdapter(oc, config),
            config=config,
            store=session_store or SessionStore(),
        )
    else:
        oc = oracle or orchestrator.adapter.oracle
        if session_store is not None:
            orchestrator.store = session_store
    store = orchestrator.store
    orch = orchestrator

    # Store components on app state for access in endpoints
    app.state.orchestrator = orch
    app.state.oracle = oc
    app.state.session_store = store

    # === ORACLE ===

    @app.post("/api/simulation/decide")
    def decide(req: DecideRequest):
        """Forward a prompt to the oracle and return its raw JSON."""
        titles = _knowledge_titles(req.knowledgeBase)
        request = OracleRequest(
            system_prompt=(
                build_system_prompt(req.currentGoal)
                + f"\nThe knowledge repository holds {len(titles)} entries."
            ),
            prompt=req.prompt,
            goal=req.currentGoal,
            knowledge_titles=titles,
        )
        try:
            return oc.complete(request)
        except Exception as exc:
            logger.error("Simulation decision error: %s", exc)
            return JSONResponse(status_code=500, content={"error": str(exc)})

    # === SIMULATION ===

    @app.get("/simulation/state")
    def get_state():
        """Full simulation snapshot."""
        return orch.state.model_dump(mode="json")

    @app.get("/simulation/status")
    def get_status():
        """Orchestrator status and counters."""
        summary = orch.status_summary()
        summary["config"] = orch.config.model_dump(mode="json")
        return summary

    @app.post("/simulation/tick", response_model=TickResponse)
    async def trigger_tick():
        """Run one tick now."""
        outcome = await orch.run_tick()
        if outcome is None:
            return TickResponse(status="busy")
        return TickResponse(status="completed", outcome=outcome)

    @app.get("/simulation/render")
    def get_render_view():
        """Objects, avatar position and active plan."""
        return orch.render_view().model_dump(mode="json")

    @app.get("/simulation/plan")
    def get_plan():
        """The active construction plan."""
        plan = orch.state.active_plan
        if plan is None:
            raise HTTPException(404, "No active plan")
        return plan.model_dump(mode="json")

    @app.get("/simulation/knowledge")
    def get_knowledge(category: Optional[KnowledgeCategory] = None):
        """The knowledge ledger, optionally filtered by category."""
        entries = orch.state.knowledge_base
        if category is not None:
            entries = entries_by_category(entries)[category]
        return [e.model_dump(mode="json") for e in entries]

    @app.get("/simulation/logs")
    def get_logs(limit: int = 50):
        """Most recent log entries, oldest first."""
        logs = orch.state.logs[-limit:] if limit > 0 else []
        return [e.model_dump(mode="json") for e in logs]

    @app.put("/simulation/goal")
    def update_goal(req: GoalUpdateRequest):
        """Replace the current goal."""
        try:
            orch.set_goal(req.goal)
        except OrchestratorBusyError:
            raise HTTPException(409, "Tick in progress")
        return {"current_goal": orch.state.current_goal}

    # === SESSIONS ===

    @app.post("/simulation/save")
    def save_session():
        """Snapshot the current state under the session key."""
        if store is None:
            raise HTTPException(400, "No session store configured")
        digest = store.save(orch.state, orch.session_key)
        return {"status": "saved", "session_key": orch.session_key, "digest": digest}

    @app.post("/simulation/load")
    def load_session():
        """Replace the current state with the stored snapshot."""
        if store is None:
            raise HTTPException(400, "No session store configured")
        try:
            state = store.load(orch.session_key)
        except SnapshotIntegrityError as exc:
            raise HTTPException(422, str(exc))
        if state is None:
            raise HTTPException(404, "No saved session")
        try:
            orch.replace_state(state)
        except OrchestratorBusyError:
            raise HTTPException(409, "Tick in progress")
        return {
            "status": "loaded",
            "session_key": orch.session_key,
            "object_count": len(state.objects),
        }

    return app


# Default application instance
app = create_app()
