"""Tests for transform, iterator, wait and HTTP request nodes."""

import json

import httpx
import pytest

from reconflow.models.core import NodeInput, WorkflowNode
from reconflow.nodes import HttpRequestNode, IteratorNode, TransformNode, WaitNode
from reconflow.nodes.data import render_item_template


def make_node(node_class, context, config=None):
    node = WorkflowNode(id=f"{node_class.node_type}-1", type=node_class.node_type, config=config or {})
    return node_class(node, context)


FINDINGS = [
    {"template": "exposed-panel", "severity": "high", "target": "https://a.example.com"},
    {"template": "tech-detect", "severity": "low", "target": "https://b.example.com"},
    {"template": "weak-cipher", "severity": "high", "target": "https://c.example.com"},
]


class TestItemTemplates:

    def test_render(self):
        item = {"host": "a.example.com", "port": 443}

        assert render_item_template("https://{{host}}:{{item.port}}/#{{index}}", item, 2) == "https://a.example.com:443/#2"
        assert render_item_template("{{item}}", "plain") == "plain"
        assert render_item_template("{{missing}}", item) == ""


class TestTransformNode:
    """Map, extract, format, aggregate, sort and limit."""

    async def run(self, make_context, config, data):
        node = make_node(TransformNode, make_context(), config)
        return await node.execute({"main": NodeInput(data=data)})

    @pytest.mark.asyncio
    async def test_map_builds_urls(self, make_context):
        result = await self.run(
            make_context,
            {"transform_type": "map", "expression": "https://{{item}}"},
            {"subdomains": ["a.example.com", "b.example.com"]}
        )

        assert result.output.data["items"] == ["https://a.example.com", "https://b.example.com"]
        assert result.output.data["original_count"] == 2

    @pytest.mark.asyncio
    async def test_map_decodes_json_templates(self, make_context):
        result = await self.run(
            make_context,
            {"transform_type": "map", "expression": '{"host": "{{item}}"}'},
            ["a.example.com"]
        )

        assert result.output.data["items"] == [{"host": "a.example.com"}]

    @pytest.mark.asyncio
    async def test_extract_fields(self, make_context):
        result = await self.run(make_context, {"transform_type": "extract", "fields": "severity, target"},
                                {"findings": FINDINGS[:1]})

        assert result.output.data["items"] == [{"severity": "high", "target": "https://a.example.com"}]

    @pytest.mark.asyncio
    async def test_extract_without_fields_fails(self, make_context):
        result = await self.run(make_context, {"transform_type": "extract"}, {"findings": FINDINGS})

        assert not result.success
        assert result.error == "Transform failed: Extract requires at least one field"

    @pytest.mark.asyncio
    async def test_group_by_severity(self, make_context):
        result = await self.run(
            make_context,
            {"transform_type": "aggregate", "aggregate_type": "group", "group_by": "severity"},
            {"findings": FINDINGS}
        )

        groups = result.output.data["groups"]
        assert sorted(groups) == ["high", "low"]
        assert len(groups["high"]) == 2
        assert result.output.data["count"] == 2

    @pytest.mark.asyncio
    async def test_count(self, make_context):
        result = await self.run(make_context, {"transform_type": "aggregate"}, {"findings": FINDINGS})

        assert result.output.data["count"] == 3

    @pytest.mark.asyncio
    async def test_sort_and_limit(self, make_context):
        sorted_result = await self.run(
            make_context,
            {"transform_type": "sort", "sort_by": "template", "sort_order": "desc"},
            {"findings": FINDINGS}
        )
        limited = await self.run(make_context, {"transform_type": "limit", "limit_count": 2}, {"findings": FINDINGS})

        assert [f["template"] for f in sorted_result.output.data["items"]] == [
            "weak-cipher", "tech-detect", "exposed-panel"
        ]
        assert limited.output.data["count"] == 2

    def test_sort_places_numbers_before_strings_and_none_last(self):
        assert TransformNode.sort_items([None, "b", 3, 1, "a"]) == [1, 3, "a", "b", None]


class TestIteratorNode:
    """Collection sources, filtering and batching."""

    @pytest.mark.asyncio
    async def test_input_field_in_batches(self, make_context):
        node = make_node(IteratorNode, make_context(), {"input_field": "results", "batch_size": 2})
        results = [{"status": 200}, {"status": 404}, {"status": 200}]

        result = await node.execute({"main": NodeInput(data={"results": results})})

        data = result.output.data
        assert data["total_items"] == 3
        assert data["batches"] == 2
        assert [entry["index"] for entry in data["items"]] == [0, 1, 2]
        assert data["items"][1]["item"] == {"status": 404}

    @pytest.mark.asyncio
    async def test_filter_and_max_items(self, make_context):
        node = make_node(IteratorNode, make_context(), {
            "source_type": "static",
            "static_items": json.dumps([{"status": 200}, {"status": 404}, {"status": 200}, {"status": 200}]),
            "filter_condition": "status == 200",
            "max_items": 2,
            "batch_size": 0,
            "parallel": True
        })

        result = await node.execute({})

        data = result.output.data
        assert data["processed_items"] == 2
        assert data["batches"] == 1
        assert data["metadata"]["filtered"] is True

    @pytest.mark.asyncio
    async def test_variable_source(self, make_context):
        node = make_node(IteratorNode, make_context(variables={"targets": ["a", "b"]}), {
            "source_type": "variable",
            "variable_name": "targets"
        })

        result = await node.execute({})

        assert [entry["item"] for entry in result.output.data["items"]] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_invalid_static_json(self, make_context):
        node = make_node(IteratorNode, make_context(), {"source_type": "static", "static_items": "[1, 2"})

        result = await node.execute({})

        assert not result.success
        assert result.error.startswith("Invalid static items JSON")


class TestWaitNode:
    """Delay computation and cancellation."""

    def test_fixed_duration_is_clamped(self, make_context):
        node = make_node(WaitNode, make_context(), {"duration": 50, "max_wait": 20})

        assert node.wait_time({}) == 20

    def test_random_duration_within_bounds(self, make_context):
        node = make_node(WaitNode, make_context(), {"wait_type": "random", "min_duration": 1, "max_duration": 2})

        assert 1 <= node.wait_time({}) <= 2

    def test_variable_duration(self, make_context):
        node = make_node(WaitNode, make_context(variables={"delay": "3"}), {
            "wait_type": "variable",
            "variable_name": "delay"
        })

        assert node.wait_time({}) == 3

    @pytest.mark.asyncio
    async def test_invalid_variable_fails(self, make_context):
        node = make_node(WaitNode, make_context(variables={"delay": "soon"}), {
            "wait_type": "variable",
            "variable_name": "delay"
        })

        result = await node.execute({})

        assert result.error == "Invalid wait time from variable: soon"

    @pytest.mark.asyncio
    async def test_passes_input_through(self, make_context):
        node = make_node(WaitNode, make_context(), {"duration": 0})

        result = await node.execute({"main": NodeInput(data={"count": 2})})

        assert result.output.data["count"] == 2
        assert result.output.data["wait_time"] == 0

    @pytest.mark.asyncio
    async def test_cancelled_wait_fails(self, make_context):
        context = make_context()
        node = make_node(WaitNode, context, {"duration": 30})
        context.cancel()

        result = await node.execute({})

        assert not result.success
        assert result.error == "Wait cancelled"


class TestHttpRequestNode:
    """Requests are sent through the execution's HTTP transport."""

    @pytest.fixture
    def captured(self):
        return []

    @pytest.fixture
    def transport(self, captured):
        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            if request.url.path == "/missing":
                return httpx.Response(404, text="nope")
            return httpx.Response(200, json={"received": True})

        return httpx.MockTransport(handler)

    @pytest.mark.asyncio
    async def test_post_json_with_variables(self, make_context, transport, captured):
        context = make_context(variables={"token": "abc"}, http_transport=transport)
        node = make_node(HttpRequestNode, context, {
            "url": "https://hooks.example.com/{{channel}}",
            "method": "POST",
            "headers": '{"X-Token": "{{token}}"}',
            "json_body": '{"count": {{count}}}'
        })

        result = await node.execute({"main": NodeInput(data={"channel": "recon", "count": 3})})

        assert result.success
        assert result.output.data["status"] == 200
        assert result.output.data["data"] == {"received": True}
        request = captured[0]
        assert str(request.url) == "https://hooks.example.com/recon"
        assert request.headers["X-Token"] == "abc"
        assert json.loads(request.content) == {"count": 3}

    @pytest.mark.asyncio
    async def test_error_status_fails_node(self, make_context, transport):
        node = make_node(HttpRequestNode, make_context(http_transport=transport), {"url": "https://api.example.com/missing"})

        result = await node.execute({})

        assert not result.success
        assert result.error == "HTTP request failed: 404 Not Found"

    @pytest.mark.asyncio
    async def test_error_status_tolerated(self, make_context, transport):
        node = make_node(HttpRequestNode, make_context(http_transport=transport), {
            "url": "https://api.example.com/missing",
            "fail_on_error": False
        })

        result = await node.execute({})

        assert result.success
        assert result.output.data["ok"] is False
        assert result.output.data["data"] == "nope"

    @pytest.mark.asyncio
    async def test_missing_url_fails_validation(self, make_context):
        node = make_node(HttpRequestNode, make_context(), {})

        result = await node.execute({})

        assert result.error == "Configuration validation failed: Required field 'URL' is missing"
