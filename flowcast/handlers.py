"""Simulated step processors.

Real deployments plug their own handlers into a
:class:`~flowcast.registry.StepHandlerRegistry`. The handlers here stand in
for them so workflows can be exercised end to end from the CLI and tests:
each sleeps through a number of ticks, reports progress after every tick
and returns a small result record.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .registry import ProgressCallback, StepHandlerRegistry


class SimulatedParams(BaseModel):
    duration: float = Field(default=0.5, ge=0)
    ticks: int = Field(default=5, ge=1)
    fail: bool = False
    error: str = "simulated failure"


class AIModelCallParams(SimulatedParams):
    model: str = "default"
    prompt: str = ""


class QuantumSimulateParams(SimulatedParams):
    qubits: int = Field(default=4, ge=1)
    shots: int = Field(default=1024, ge=1)


class BlockchainWriteParams(SimulatedParams):
    network: str = "testnet"
    payload: Dict[str, Any] = Field(default_factory=dict)


class DataStoreParams(SimulatedParams):
    bucket: str = "default"
    key: Optional[str] = None


async def _simulate(params: SimulatedParams, report_progress: ProgressCallback) -> None:
    pause = params.duration / params.ticks
    for tick in range(1, params.ticks + 1):
        await asyncio.sleep(pause)
        if params.fail and tick * 2 > params.ticks:
            raise RuntimeError(params.error)
        report_progress(100.0 * tick / params.ticks)


async def ai_model_call(params: AIModelCallParams, report_progress: ProgressCallback) -> dict:
    await _simulate(params, report_progress)
    return {"model": params.model, "tokens": len(params.prompt.split())}


async def quantum_simulate(
    params: QuantumSimulateParams, report_progress: ProgressCallback
) -> dict:
    await _simulate(params, report_progress)
    return {"qubits": params.qubits, "shots": params.shots}


async def blockchain_write(
    params: BlockchainWriteParams, report_progress: ProgressCallback
) -> dict:
    await _simulate(params, report_progress)
    body = json.dumps(params.payload, sort_keys=True, default=str)
    digest = hashlib.sha256(body.encode()).hexdigest()
    return {"network": params.network, "tx_hash": f"0x{digest}"}


async def data_store(params: DataStoreParams, report_progress: ProgressCallback) -> dict:
    await _simulate(params, report_progress)
    return {"bucket": params.bucket, "key": params.key}


def register_simulated_handlers(registry: StepHandlerRegistry) -> StepHandlerRegistry:
    registry.register("aiModelCall", ai_model_call, AIModelCallParams)
    registry.register("quantumSimulate", quantum_simulate, QuantumSimulateParams)
    registry.register("blockchainWrite", blockchain_write, BlockchainWriteParams)
    registry.register("dataStore", data_store, DataStoreParams)
    return registry
