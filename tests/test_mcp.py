"""
Tests for the sigfind MCP server (sigfind.mcp.server).

Skipped when the optional ``mcp`` extra is not installed.
"""

import json

import pytest

pytest.importorskip("fastmcp")

from fastmcp import Client  # noqa: E402

from sigfind.mcp.server import _build_signature, create_server  # noqa: E402


def _payload(result):
    content = result.content if hasattr(result, "content") else result
    return json.loads(content[0].text)


class TestBuildSignature:

    def test_drops_empty_fields(self):
        assert _build_signature("Calculator", "class", None, None, None, "", None) == {
            "name": "Calculator", "type": "class",
        }

    def test_comma_separated_methods(self):
        signature = _build_signature("Calculator", None, None, "add, subtract", ["x", " "], None, None)
        assert signature["methods"] == ["add", "subtract"]
        assert signature["properties"] == ["x"]


class TestTools:

    @pytest.mark.asyncio
    async def test_discover_target(self, config, calculator_project):
        server = create_server(config)
        async with Client(server) as client:
            result = await client.call_tool("discover_target", {
                "name": "Calculator", "type": "class", "methods": ["add", "subtract"],
                "root": str(calculator_project),
            })
        payload = _payload(result)
        assert payload["relative_path"] == "src/Calculator.js"
        assert payload["score"] == 172

    @pytest.mark.asyncio
    async def test_discover_target_failure(self, config, tmp_path):
        server = create_server(config)
        async with Client(server) as client:
            result = await client.call_tool("discover_target", {"name": "Nothing", "root": str(tmp_path)})
        payload = _payload(result)
        assert payload["near_misses"] == []
        assert payload["suggested_signature"] is None

    @pytest.mark.asyncio
    async def test_list_candidates_uses_default_root(self, config, calculator_project, monkeypatch):
        monkeypatch.setenv("SIGFIND_DEFAULT_ROOT", str(calculator_project))
        server = create_server(config)
        async with Client(server) as client:
            result = await client.call_tool("list_candidates", {"name": "Calculator", "limit": 2})
        payload = _payload(result)
        assert [c["relative_path"] for c in payload] == ["src/Calculator.js", "tests/Calculator.js"]

    @pytest.mark.asyncio
    async def test_health(self, config):
        server = create_server(config)
        async with Client(server) as client:
            result = await client.call_tool("health", {})
        payload = _payload(result)
        assert payload["status"] == "ok"
        assert payload["version"] == "1.0.0"
