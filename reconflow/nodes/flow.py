"""Routing nodes: conditional branching, filtering, merging and splitting."""

from datetime import datetime
from typing import Any, Dict, List, Literal

from pydantic import Field

from ..models.core import LogLevel, NodeExecutionResult, NodeInput, PortDefinition
from .logic import ITEM_COLLECTION_KEYS, LogicNode, item_identity
from .schema import NodeConfig


BRANCH_PORTS = [
    PortDefinition(name="true", label="True"),
    PortDefinition(name="false", label="False"),
]


class ConditionalConfig(NodeConfig):
    condition: str = Field(
        "count > 0",
        title="Condition",
        description='Condition to evaluate, e.g. "count > 10" or "severity == high"',
        json_schema_extra={"required": True}
    )
    notes: str = Field("", title="Description", json_schema_extra={"widget": "textarea"})


class ConditionalNode(LogicNode):
    """
    Evaluates one condition against its merged input.

    The input passes through unchanged with ``passed_condition`` added. The
    engine skips whatever hangs off the branch that was not taken.
    """

    node_type = "conditional"
    display_name = "Conditional"
    description = "Route data down the true or false branch"
    icon = "git-branch"
    output_ports = BRANCH_PORTS
    config_model = ConditionalConfig

    async def execute(self, inputs: Dict[str, NodeInput]) -> NodeExecutionResult:
        errors = self.validate_config()
        if errors:
            return self.create_error_result(f"Configuration validation failed: {'; '.join(errors)}")

        data = self.merge_inputs(inputs)
        condition = self.settings.condition
        passed = self.evaluate_condition(condition, data)
        self.log(LogLevel.INFO, f"Condition '{condition}' evaluated to {passed}")

        return self.create_success_result({
            **data,
            "condition": condition,
            "passed_condition": passed,
            "evaluated_at": datetime.utcnow().isoformat()
        })


class FilterConfig(NodeConfig):
    condition: str = Field(
        "length > 0",
        title="Filter Condition",
        description='Evaluated per item, e.g. "severity == high" or "status == 200"',
        json_schema_extra={"required": True}
    )
    mode: Literal["include", "exclude"] = Field(
        "include",
        title="Filter Mode",
        json_schema_extra={"option_labels": {
            "include": "Include matching items",
            "exclude": "Exclude matching items"
        }}
    )


class FilterNode(LogicNode):
    node_type = "filter"
    display_name = "Filter"
    description = "Keep or drop items that match a condition"
    icon = "filter"
    config_model = FilterConfig

    async def execute(self, inputs: Dict[str, NodeInput]) -> NodeExecutionResult:
        errors = self.validate_config()
        if errors:
            return self.create_error_result(f"Configuration validation failed: {'; '.join(errors)}")

        data = self.merge_inputs(inputs)
        main = self.get_input_data(inputs)
        if isinstance(main, list):
            items = main
        elif isinstance(data.get("subdomains"), list):
            items = [{"subdomain": subdomain} for subdomain in data["subdomains"]]
        else:
            items = next(
                (data[key] for key in ("findings", "results", "items") if isinstance(data.get(key), list)),
                [data]
            )

        condition = self.settings.condition
        matched = self.filter_data(items, condition)
        if self.settings.mode == "exclude":
            keep = {item_identity(item) for item in matched}
            filtered = [item for item in items if item_identity(item) not in keep]
        else:
            filtered = matched

        self.log(LogLevel.INFO, f"Filtered {len(items)} items to {len(filtered)} items")

        output: Dict[str, Any] = {
            "items": filtered,
            "count": len(filtered),
            "original_count": len(items),
            "filter": {"condition": condition, "mode": self.settings.mode}
        }
        if isinstance(data.get("subdomains"), list):
            output["subdomains"] = [
                item.get("subdomain", item) if isinstance(item, dict) else item for item in filtered
            ]
        elif isinstance(data.get("findings"), list):
            output["findings"] = filtered
        elif isinstance(data.get("results"), list):
            output["results"] = filtered
        return self.create_success_result(output)


class MergeConfig(NodeConfig):
    merge_type: Literal["union", "intersection", "deduplicate", "flatten"] = Field(
        "union",
        title="Merge Type",
        json_schema_extra={"option_labels": {
            "union": "Union (combine all)",
            "intersection": "Intersection (common items)",
            "deduplicate": "Deduplicate (remove duplicates)",
            "flatten": "Flatten (flatten nested arrays)"
        }}
    )
    preserve_structure: bool = Field(
        True,
        title="Preserve Original Structure",
        description="Also emit subdomains/findings/results when the inputs carried them"
    )


class MergeNode(LogicNode):
    node_type = "merge"
    display_name = "Merge"
    description = "Combine the item collections of several inputs"
    icon = "link"
    input_ports = [
        PortDefinition(name="main", label="Input"),
        PortDefinition(name="input1", label="Input 1"),
        PortDefinition(name="input2", label="Input 2"),
        PortDefinition(name="input3", label="Input 3"),
    ]
    config_model = MergeConfig

    async def execute(self, inputs: Dict[str, NodeInput]) -> NodeExecutionResult:
        errors = self.validate_config()
        if errors:
            return self.create_error_result(f"Configuration validation failed: {'; '.join(errors)}")

        merge_type = self.settings.merge_type
        result = self.merge_data(inputs, merge_type)
        result["merge_type"] = merge_type

        if self.settings.preserve_structure:
            kept = {item_identity(item) for item in result["items"]}
            for key in ITEM_COLLECTION_KEYS[:3]:
                present = [
                    node_input.data[key] for node_input in inputs.values()
                    if isinstance(node_input.data, dict) and isinstance(node_input.data.get(key), list)
                ]
                if present:
                    wanted = kept & {item_identity(item) for values in present for item in values}
                    result[key] = [item for item in result["items"] if item_identity(item) in wanted]

        self.log(LogLevel.INFO, f"Merged {len(inputs)} inputs into {result['count']} items")
        return self.create_success_result(result)


class SplitConfig(NodeConfig):
    split_by: Literal["severity", "status", "length", "custom"] = Field(
        "severity",
        title="Split By",
        json_schema_extra={"option_labels": {
            "severity": "Severity level",
            "status": "Status code",
            "length": "Length greater than",
            "custom": "Custom condition"
        }}
    )
    split_value: str = Field(
        "high",
        title="Split Value",
        description="Severity, status code, length threshold or condition, depending on Split By",
        json_schema_extra={"required": True}
    )


class SplitNode(LogicNode):
    """Partitions items into the ``true`` and ``false`` ports."""

    node_type = "split"
    display_name = "Split"
    description = "Partition items into matching and non-matching sets"
    icon = "scissors"
    output_ports = BRANCH_PORTS
    port_payloads = True
    config_model = SplitConfig

    async def execute(self, inputs: Dict[str, NodeInput]) -> NodeExecutionResult:
        errors = self.validate_config()
        if errors:
            return self.create_error_result(f"Configuration validation failed: {'; '.join(errors)}")

        main = self.get_input_data(inputs)
        items: List[Any] = main if isinstance(main, list) else []
        if not items:
            data = self.merge_inputs(inputs)
            items = next(
                (data[key] for key in ITEM_COLLECTION_KEYS if isinstance(data.get(key), list)),
                []
            )

        try:
            parts = self.split_data(items, self.settings.split_by, self.settings.split_value)
        except ValueError as e:
            return self.create_error_result(str(e))

        self.log(
            LogLevel.INFO,
            f"Split {len(items)} items into {len(parts['true'])} matching and {len(parts['false'])} other"
        )
        return self.create_success_result({
            "true": parts["true"],
            "false": parts["false"],
            "true_count": len(parts["true"]),
            "false_count": len(parts["false"])
        })
