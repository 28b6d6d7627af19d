#!/usr/bin/env python3
"""
FastAPI server exposing the engine's control surface.
"""

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional
import logging

from agent_engine.errors import AgentNotFound, AgentValidationError, InvalidAgentState

app = FastAPI(title="Agent Execution Engine API")

logger = logging.getLogger(__name__)

# Set by main.py (or tests) before serving requests
engine_instance: Optional[Any] = None


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch all unhandled exceptions and return 500 with error details"""
    logger.error(f"Unhandled exception in {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "status": "error",
            "detail": str(exc),
            "path": str(request.url.path)
        }
    )


@app.exception_handler(AgentNotFound)
async def agent_not_found_handler(request: Request, exc: AgentNotFound):
    return JSONResponse(status_code=404, content={"status": "error", "detail": str(exc)})


@app.exception_handler(InvalidAgentState)
async def invalid_state_handler(request: Request, exc: InvalidAgentState):
    return JSONResponse(status_code=409, content={"status": "error", "detail": str(exc)})


@app.exception_handler(AgentValidationError)
async def validation_error_handler(request: Request, exc: AgentValidationError):
    return JSONResponse(status_code=422, content={"status": "error", "detail": str(exc)})


app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:3001"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Pydantic models
class AgentCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    wallet_address: str = Field(min_length=1)
    chain: Optional[str] = None
    strategy: Literal["conservative", "balanced", "aggressive", "degen"] = "balanced"
    max_position_size: float = Field(default=1.0, gt=0)
    stop_loss_percent: float = Field(default=15.0, gt=0, lt=100)
    take_profit_percent: float = Field(default=50.0, gt=0)
    max_daily_trades: int = Field(default=10, ge=0)
    risk_level: float = Field(default=5.0, ge=1, le=10)


def _engine():
    if engine_instance is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine_instance


@app.get("/")
async def root():
    return {"message": "Agent Execution Engine API", "status": "running"}


@app.get("/api/status")
async def get_status():
    """Get scheduler and persistence status"""
    return _engine().status()


@app.get("/api/agents")
async def list_agents(status: Optional[Literal["running", "stopped"]] = None) -> List[Dict[str, Any]]:
    return [agent.to_dict() for agent in _engine().list_agents(status)]


@app.post("/api/agents", status_code=201)
async def create_agent(request: AgentCreateRequest):
    """Create a new (stopped) agent"""
    params = request.model_dump(exclude_none=True)
    agent = _engine().create_agent(params.pop("name"), params.pop("wallet_address"), **params)
    return agent.to_dict()


@app.get("/api/agents/{agent_id}")
async def get_agent(agent_id: int):
    return _engine().get_agent(agent_id).to_dict()


@app.delete("/api/agents/{agent_id}")
async def delete_agent(agent_id: int):
    """Delete a stopped agent"""
    agent = _engine().delete_agent(agent_id)
    return {"status": "success", "message": f"Agent {agent.id} deleted"}


@app.post("/api/agents/{agent_id}/start")
async def start_agent(agent_id: int):
    agent = _engine().start(agent_id)
    return {"status": "success", "agent": agent.to_dict()}


@app.post("/api/agents/{agent_id}/stop")
async def stop_agent(agent_id: int):
    agent = _engine().stop(agent_id)
    return {"status": "success", "agent": agent.to_dict()}


@app.get("/api/agents/{agent_id}/positions")
async def get_positions(
    agent_id: int,
    status: Optional[Literal["opening", "open", "closing", "closed"]] = None,
):
    """Get an agent's positions, newest first"""
    return [position.to_dict() for position in _engine().list_positions(agent_id, status)]


@app.get("/api/agents/{agent_id}/positions/summary")
async def get_position_summary(agent_id: int):
    return _engine().position_summary(agent_id)


@app.get("/api/agents/{agent_id}/trades")
async def get_trades(agent_id: int, limit: int = Query(default=50, ge=1, le=1000)):
    """Get an agent's trade history, newest first"""
    return [trade.to_dict() for trade in _engine().list_trades(agent_id, limit)]


@app.get("/api/agents/{agent_id}/logs")
async def get_logs(agent_id: int, limit: int = Query(default=50, ge=1, le=1000)):
    """Get an agent's decision logs, newest first"""
    return [log.to_dict() for log in _engine().list_logs(agent_id, limit)]


@app.get("/api/signals/performance")
async def get_signal_performance(strategy: Optional[str] = None, min_count: int = Query(default=3, ge=1)):
    """Learned signal weights and blacklisted combinations"""
    return _engine().signal_report(strategy, min_count)
