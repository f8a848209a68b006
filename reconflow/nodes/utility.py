"""Data transform, iteration, delay and HTTP request nodes."""

import asyncio
import json
import random
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

import httpx
from pydantic import Field, field_validator

from ..models.core import LogLevel, NodeCategory, NodeExecutionResult, NodeInput
from .base import BaseNode, get_path_value
from .data import DataNode
from .logic import evaluate_condition, item_scope
from .schema import NodeConfig


class TransformConfig(NodeConfig):
    transform_type: Literal["map", "extract", "format", "aggregate", "sort", "limit"] = Field(
        "map",
        title="Transform Type",
        json_schema_extra={"option_labels": {
            "map": "Map (transform each item)",
            "extract": "Extract fields",
            "format": "Format as text",
            "aggregate": "Aggregate",
            "sort": "Sort",
            "limit": "Limit"
        }}
    )
    expression: str = Field(
        "{{item}}",
        title="Map Expression",
        description="Template applied to each item, e.g. https://{{item}}",
        json_schema_extra={"widget": "textarea"}
    )
    fields: str = Field("", title="Fields", description="Comma-separated fields to extract")
    template: str = Field("", title="Format Template", json_schema_extra={"widget": "textarea"})
    aggregate_type: Literal["count", "unique", "group"] = Field("count", title="Aggregate Type")
    group_by: Optional[str] = Field(None, title="Group By Field")
    sort_by: Optional[str] = Field(None, title="Sort By Field")
    sort_order: Literal["asc", "desc"] = Field(
        "asc",
        title="Sort Order",
        json_schema_extra={"option_labels": {"asc": "Ascending", "desc": "Descending"}}
    )
    limit_count: int = Field(10, title="Limit", ge=1, le=10000)


class TransformNode(DataNode):
    node_type = "transform"
    display_name = "Transform"
    description = "Map, extract, format, aggregate, sort or limit items"
    icon = "shuffle"
    config_model = TransformConfig

    def apply_transform(self, items: List[Any], transform_type: str) -> Any:
        settings = self.settings
        if transform_type == "map":
            return self.map_items(items, settings.expression)
        if transform_type == "extract":
            fields = [field.strip() for field in settings.fields.split(",") if field.strip()]
            if not fields:
                raise ValueError("Extract requires at least one field")
            return self.extract_fields(items, fields)
        if transform_type == "format":
            return self.format_items(items, settings.template or settings.expression)
        if transform_type == "aggregate":
            return self.aggregate_items(items, settings.aggregate_type, settings.group_by)
        if transform_type == "sort":
            return self.sort_items(items, settings.sort_by, settings.sort_order)
        if transform_type == "limit":
            return self.limit_items(items, settings.limit_count)
        raise ValueError(f"Unknown transform type: {transform_type}")

    async def execute(self, inputs: Dict[str, NodeInput]) -> NodeExecutionResult:
        errors = self.validate_config()
        if errors:
            return self.create_error_result(f"Configuration validation failed: {'; '.join(errors)}")

        main = self.get_input_data(inputs)
        items = self.extract_array(main if main is not None else self.merge_inputs(inputs))
        transform_type = self.settings.transform_type

        try:
            result = self.apply_transform(items, transform_type)
        except ValueError as e:
            return self.create_error_result(f"Transform failed: {e}")

        output: Dict[str, Any] = {"transform_type": transform_type, "original_count": len(items)}
        if isinstance(result, list):
            output.update(items=result, count=len(result))
        elif transform_type == "aggregate" and self.settings.aggregate_type == "group":
            output.update(groups=result, count=len(result))
        else:
            output.update(result)

        self.log(LogLevel.INFO, f"Applied {transform_type} transform to {len(items)} items")
        return self.create_success_result(output)


class IteratorConfig(NodeConfig):
    source_type: Literal["input", "variable", "static"] = Field(
        "input",
        title="Data Source",
        json_schema_extra={
            "required": True,
            "option_labels": {"input": "Input Field", "variable": "Variable", "static": "Static Data"}
        }
    )
    input_field: str = Field(
        "",
        title="Input Field Path",
        description='Path to the array inside the input, e.g. "results" or "data.items"'
    )
    variable_name: str = Field("", title="Variable Name")
    static_items: str = Field(
        "[]",
        title="Static Items (JSON)",
        json_schema_extra={"widget": "textarea"}
    )
    filter_condition: str = Field("", title="Filter Condition", description='e.g. "status == 200"')
    max_items: int = Field(1000, title="Max Items", ge=1, le=100000)
    batch_size: int = Field(10, title="Batch Size", description="0 processes everything in one batch", ge=0, le=10000)
    parallel: bool = Field(False, title="Parallel Processing")
    batch_delay: float = Field(0, title="Batch Delay (seconds)", ge=0, le=3600)
    item_delay: float = Field(0, title="Item Delay (seconds)", ge=0, le=3600)


class IteratorNode(DataNode):
    """
    Walks a collection in batches.

    Items come from an input field, a context variable or a static JSON
    array. They can be filtered with the condition grammar and truncated to
    ``max_items`` before processing.
    """

    node_type = "iterator"
    display_name = "Iterator"
    description = "Iterate over a collection with batching and filtering"
    icon = "repeat"
    config_model = IteratorConfig

    def collect(self, inputs: Dict[str, NodeInput]) -> List[Any]:
        settings = self.settings
        if settings.source_type == "input":
            merged = self.merge_inputs(inputs)
            if not settings.input_field:
                return list(self.extract_array(self.get_input_data(inputs) or merged))
            value = get_path_value(merged, settings.input_field)
        elif settings.source_type == "variable":
            value = get_path_value(self.context.variables, settings.variable_name) if settings.variable_name else None
        else:
            value = json.loads(settings.static_items or "[]")

        if value is None:
            return []
        return list(value) if isinstance(value, list) else [value]

    async def process_item(self, item: Any, index: int) -> Dict[str, Any]:
        return {
            "index": index,
            "item": item,
            "processed": True,
            "timestamp": datetime.utcnow().isoformat()
        }

    async def execute(self, inputs: Dict[str, NodeInput]) -> NodeExecutionResult:
        errors = self.validate_config()
        if errors:
            return self.create_error_result(f"Configuration validation failed: {'; '.join(errors)}")

        settings = self.settings
        try:
            items = self.collect(inputs)
        except ValueError as e:
            return self.create_error_result(f"Invalid static items JSON: {e}")

        collected = len(items)
        if settings.filter_condition:
            items = [
                item for index, item in enumerate(items)
                if evaluate_condition(settings.filter_condition, item_scope(item, index))
            ]
        items = items[:settings.max_items]

        size = settings.batch_size or len(items) or 1
        batches = [items[i:i + size] for i in range(0, len(items), size)]
        if not items:
            self.log(LogLevel.WARNING, "No items to iterate over")
        else:
            self.log(LogLevel.INFO, f"Processing {len(items)} items in {len(batches)} batch(es)")

        results: List[Dict[str, Any]] = []
        for batch_index, batch in enumerate(batches):
            if batch_index > 0 and not await self.sleep(settings.batch_delay):
                return self.create_error_result("Iterator cancelled")

            offset = batch_index * size
            if settings.parallel:
                results.extend(await asyncio.gather(
                    *(self.process_item(item, offset + i) for i, item in enumerate(batch))
                ))
            else:
                for i, item in enumerate(batch):
                    if i > 0 and not await self.sleep(settings.item_delay):
                        return self.create_error_result("Iterator cancelled")
                    results.append(await self.process_item(item, offset + i))

        return self.create_success_result({
            "items": results,
            "total_items": len(items),
            "processed_items": len(results),
            "batches": len(batches),
            "metadata": {
                "batch_size": size,
                "parallel": settings.parallel,
                "filtered": len(items) != collected
            }
        })


class WaitConfig(NodeConfig):
    wait_type: Literal["fixed", "random", "variable"] = Field(
        "fixed",
        title="Wait Type",
        json_schema_extra={"option_labels": {
            "fixed": "Fixed Duration",
            "random": "Random Duration",
            "variable": "From Variable"
        }}
    )
    duration: float = Field(5, title="Duration (seconds)", ge=0, le=3600)
    min_duration: float = Field(1, title="Min Duration (seconds)", ge=0, le=3600)
    max_duration: float = Field(10, title="Max Duration (seconds)", ge=0, le=3600)
    variable_name: str = Field("", title="Variable Name", description="Variable holding the duration, without braces")
    min_wait: float = Field(0, title="Minimum Wait (seconds)", ge=0, le=3600)
    max_wait: float = Field(300, title="Maximum Wait (seconds)", ge=0, le=3600)


class WaitNode(BaseNode):
    node_type = "wait"
    category = NodeCategory.UTILITY
    display_name = "Wait"
    description = "Delay the workflow and pass the input through"
    icon = "clock"
    config_model = WaitConfig

    def wait_time(self, data: Dict[str, Any]) -> float:
        settings = self.settings
        if settings.wait_type == "random":
            low, high = sorted((settings.min_duration, settings.max_duration))
            seconds = random.uniform(low, high)
        elif settings.wait_type == "variable":
            raw = get_path_value(self.context.variables, settings.variable_name)
            if raw is None:
                raw = get_path_value(data, settings.variable_name)
            try:
                seconds = float(raw)
            except (TypeError, ValueError):
                raise ValueError(f"Invalid wait time from variable: {raw}")
        else:
            seconds = settings.duration
        return max(settings.min_wait, min(settings.max_wait, seconds))

    async def execute(self, inputs: Dict[str, NodeInput]) -> NodeExecutionResult:
        errors = self.validate_config()
        if errors:
            return self.create_error_result(f"Configuration validation failed: {'; '.join(errors)}")

        data = self.merge_inputs(inputs)
        try:
            seconds = self.wait_time(data)
        except ValueError as e:
            return self.create_error_result(str(e))

        self.log(LogLevel.INFO, f"Waiting for {seconds:g} seconds")
        if not await self.sleep(seconds):
            return self.create_error_result("Wait cancelled")

        return self.create_success_result({
            **data,
            "wait_time": round(seconds, 3),
            "timestamp": datetime.utcnow().isoformat()
        })


class HttpRequestConfig(NodeConfig):
    url: str = Field(
        "",
        title="URL",
        description="Use {{variable}} for dynamic values",
        json_schema_extra={"required": True}
    )
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"] = Field("GET", title="HTTP Method")
    headers: Dict[str, str] = Field(default_factory=dict, title="Headers (JSON)")
    body_type: Literal["json", "raw", "form", "none"] = Field("json", title="Body Type")
    json_body: str = Field("", title="JSON Body", json_schema_extra={"widget": "textarea"})
    raw_body: str = Field("", title="Raw Body", json_schema_extra={"widget": "textarea"})
    form_data: Dict[str, Any] = Field(default_factory=dict, title="Form Data (JSON)")
    timeout: float = Field(30, title="Timeout (seconds)", ge=1, le=300)
    follow_redirects: bool = Field(True, title="Follow Redirects")
    fail_on_error: bool = Field(True, title="Fail on HTTP Error", description="Fail the node on 4xx/5xx responses")

    @field_validator("headers", "form_data", mode="before")
    @classmethod
    def parse_json_mapping(cls, v):
        if isinstance(v, str):
            return json.loads(v) if v.strip() else {}
        return v


class HttpRequestNode(BaseNode):
    node_type = "http"
    category = NodeCategory.UTILITY
    display_name = "HTTP Request"
    description = "Send an HTTP request and capture the response"
    icon = "globe"
    config_model = HttpRequestConfig

    def request_options(self, data: Dict[str, Any]) -> Dict[str, Any]:
        settings = self.settings
        headers = {key: self.replace_variables(value, data) for key, value in settings.headers.items()}
        options: Dict[str, Any] = {"headers": headers}

        if settings.method not in ("POST", "PUT", "PATCH"):
            return options

        if settings.body_type == "json" and settings.json_body:
            body = self.replace_variables(settings.json_body, data)
            try:
                options["json"] = json.loads(body)
            except ValueError:
                options["content"] = body
                headers.setdefault("Content-Type", "application/json")
        elif settings.body_type == "raw" and settings.raw_body:
            options["content"] = self.replace_variables(settings.raw_body, data)
        elif settings.body_type == "form" and settings.form_data:
            options["data"] = {
                key: self.replace_variables(str(value), data) for key, value in settings.form_data.items()
            }
        return options

    async def execute(self, inputs: Dict[str, NodeInput]) -> NodeExecutionResult:
        errors = self.validate_config()
        if errors:
            return self.create_error_result(f"Configuration validation failed: {'; '.join(errors)}")

        settings = self.settings
        data = self.merge_inputs(inputs)
        url = self.replace_variables(settings.url, data)
        self.log(LogLevel.INFO, f"Making HTTP {settings.method} request to: {url}")

        try:
            async with httpx.AsyncClient(
                timeout=settings.timeout,
                follow_redirects=settings.follow_redirects,
                transport=self.context.http_transport
            ) as client:
                response = await client.request(settings.method, url, **self.request_options(data))
        except httpx.HTTPError as e:
            return self.create_error_result(f"HTTP request failed: {e}")

        if "application/json" in response.headers.get("content-type", ""):
            try:
                body = response.json()
            except ValueError:
                body = response.text
        else:
            body = response.text

        if not response.is_success and settings.fail_on_error:
            return self.create_error_result(f"HTTP request failed: {response.status_code} {response.reason_phrase}")

        self.log(LogLevel.INFO, f"HTTP request completed with status: {response.status_code}")
        return self.create_success_result({
            "status": response.status_code,
            "status_text": response.reason_phrase,
            "headers": dict(response.headers),
            "data": body,
            "url": str(response.url),
            "ok": response.is_success
        })
