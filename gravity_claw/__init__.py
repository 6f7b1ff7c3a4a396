"""Gravity Claw - a memory-aware personal AI agent engine."""

__version__ = "0.1.0"

from gravity_claw.agent import Agent, AgentRunResult, run_agent_loop
from gravity_claw.config import Config
from gravity_claw.cron import parse_schedule

__all__ = ["Agent", "AgentRunResult", "Config", "parse_schedule", "run_agent_loop", "__version__"]
