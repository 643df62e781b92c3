"""
Unit tests for the analyst CLI
"""

import pytest
from mcp.types import ListToolsResult, Tool

from backend.analyst import cli, session
from backend.analyst.errors import DiscoveryFailed, ModelUnavailable


@pytest.fixture
def env(monkeypatch):
    monkeypatch.setattr(cli, "load_dotenv", lambda: None)
    monkeypatch.setattr(cli, "configure_logging", lambda **kwargs: None)
    monkeypatch.delenv("ANALYST_ANTHROPIC_API_KEY", raising=False)
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    monkeypatch.setenv("ANALYST_LOG_LEVEL", "ERROR")
    return monkeypatch


def test_missing_api_key_exits_1(env, capsys):
    env.delenv("ANTHROPIC_API_KEY")

    assert cli.main([]) == 1
    assert "Configuration error" in capsys.readouterr().err


def test_invalid_config_exits_1(env, capsys):
    env.setenv("ANALYST_MAX_ITERATIONS", "0")

    assert cli.main([]) == 1
    assert "max_iterations" in capsys.readouterr().err


def test_query_and_example_are_exclusive(env):
    with pytest.raises(SystemExit):
        cli.main(["--query", "2+2", "--example"])


def test_list_tools_mode(env):
    seen = {}

    async def fake_list_tools(config):
        seen["config"] = config
        return 0

    env.setattr(cli, "list_tools", fake_list_tools)

    assert cli.main(["--list-tools"]) == 0
    assert seen["config"].anthropic_api_key == "sk-test"


def test_query_mode_runs_once(env):
    seen = {}

    async def fake_run_once(config, query):
        seen["query"] = query
        return 0

    env.setattr(cli, "run_once", fake_run_once)

    assert cli.main(["--query", "What is 2+2?"]) == 0
    assert seen["query"] == "What is 2+2?"


def test_example_mode_uses_markov_query(env):
    seen = {}

    async def fake_run_once(config, query):
        seen["query"] = query
        return 0

    env.setattr(cli, "run_once", fake_run_once)

    assert cli.main(["--example"]) == 0
    assert "Markov chain" in seen["query"]


def test_discovery_failure_exits_1(env, capsys):
    async def failing_list_tools(config):
        raise DiscoveryFailed("runtime unavailable")

    env.setattr(cli, "list_tools", failing_list_tools)

    assert cli.main(["--list-tools"]) == 1
    assert "runtime unavailable" in capsys.readouterr().err


def test_keyboard_interrupt_exits_130(env):
    def interrupted(coro):
        coro.close()
        raise KeyboardInterrupt

    env.setattr(cli.asyncio, "run", interrupted)

    assert cli.main([]) == 130


class OneToolTransport:
    """Runtime stand-in that lists run_python_code and records close()."""

    def __init__(self):
        self.generation = 1
        self.is_alive = True
        self.call_timeout = 120.0
        self.closed = False

    async def list_tools(self):
        return ListToolsResult(
            tools=[Tool(name="run_python_code", description="Run Python", inputSchema={"type": "object"})]
        )

    async def close(self):
        self.closed = True


class DownModel:
    def __init__(self, config):
        self.closed = False

    async def generate(self, system_directive, messages, tools):
        raise ModelUnavailable("Model call failed: connection refused")

    async def close(self):
        self.closed = True


def test_query_mode_model_failure_exits_1(env, capsys):
    """A model failure in one-shot mode is reported and the runtime still closes"""
    transport = OneToolTransport()
    env.setattr(session, "build_transport", lambda config: transport)
    env.setattr(session, "AnthropicModelClient", DownModel)

    assert cli.main(["--query", "what is 2+2"]) == 1
    assert "Error: Model call failed: connection refused" in capsys.readouterr().out
    assert transport.closed


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
