#!/usr/bin/env python3
"""
Integration test against the real execution runtime and model.

Tests the complete flow:
1. Launch the runtime subprocess
2. Discover its tools
3. Run a query through the agent loop
4. Render the trace

Skipped unless deno is installed and ANTHROPIC_API_KEY is set.
"""

import os
import shutil

import pytest

from backend.analyst.config import AnalystConfig
from backend.analyst.mcp.registry import ToolRegistry
from backend.analyst.prompts import SYSTEM_DIRECTIVE
from backend.analyst.runtime.agent_loop import AgentLoop
from backend.analyst.runtime.model_client import AnthropicModelClient
from backend.analyst.session import build_transport
from backend.analyst.trace import ConclusionRecord, ExecutionRecord, classify, format_trace

pytestmark = pytest.mark.skipif(
    shutil.which("deno") is None or not os.getenv("ANTHROPIC_API_KEY"),
    reason="needs deno on PATH and ANTHROPIC_API_KEY",
)


@pytest.mark.asyncio
async def test_runtime_discovery():
    """The runtime exposes run_python_code"""
    config = AnalystConfig.from_env()
    transport = build_transport(config)
    try:
        descriptors = await ToolRegistry(transport).discover()
    finally:
        await transport.close()

    assert "run_python_code" in [d.name for d in descriptors]
    assert transport.is_closed


@pytest.mark.asyncio
async def test_two_plus_two():
    """What is 2+2? is answered by running code"""
    config = AnalystConfig.from_env()
    transport = build_transport(config)
    model = AnthropicModelClient(config)
    agent = AgentLoop(model, ToolRegistry(transport), max_iterations=config.max_iterations)
    try:
        state = await agent.run(SYSTEM_DIRECTIVE, "What is 2+2?")
    finally:
        await transport.close()
        await model.close()

    records = classify(state)
    print(format_trace(records))

    assert any(isinstance(r, ExecutionRecord) and "4" in r.output for r in records)
    assert isinstance(records[-1], ConclusionRecord)
    assert "4" in records[-1].text
