"""Simulation - seeded generator and per-bot simulation step."""

from clawfolio_runner.simulation.engine import (
    ActivityKind,
    BotOutcome,
    Decision,
    LifecycleState,
    SimulationEngine,
    StepInput,
    StepResult,
    classify_activity,
    derive_cooldown,
    simulate_step,
)
from clawfolio_runner.simulation.prng import Mulberry32, hash_seed, seed_text, tick_bucket

__all__ = [
    "ActivityKind",
    "BotOutcome",
    "Decision",
    "LifecycleState",
    "Mulberry32",
    "SimulationEngine",
    "StepInput",
    "StepResult",
    "classify_activity",
    "derive_cooldown",
    "hash_seed",
    "seed_text",
    "simulate_step",
    "tick_bucket",
]
