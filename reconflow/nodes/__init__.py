"""Node implementations and their category bases."""

from .base import BaseNode, get_path_value, stringify
from .schema import NodeConfig, build_config_schema, validate_config
from .tool import ToolNode, DiscoveryNode, AnalysisNode
from .logic import LogicNode, evaluate_condition
from .data import DataNode
from .discovery import SubfinderNode, AmassNode
from .analysis import NucleiNode, FfufNode, ArjunNode
from .flow import ConditionalNode, FilterNode, MergeNode, SplitNode
from .utility import TransformNode, IteratorNode, WaitNode, HttpRequestNode

__all__ = [
    "BaseNode",
    "get_path_value",
    "stringify",
    "NodeConfig",
    "build_config_schema",
    "validate_config",
    "ToolNode",
    "DiscoveryNode",
    "AnalysisNode",
    "LogicNode",
    "evaluate_condition",
    "DataNode",
    "SubfinderNode",
    "AmassNode",
    "NucleiNode",
    "FfufNode",
    "ArjunNode",
    "ConditionalNode",
    "FilterNode",
    "MergeNode",
    "SplitNode",
    "TransformNode",
    "IteratorNode",
    "WaitNode",
    "HttpRequestNode",
]
