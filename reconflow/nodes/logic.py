"""In-memory logic: the condition grammar, set-style merging and partitioning."""

import json
from typing import Any, Dict, List, Optional, Tuple

from ..core.logging import get_logger
from ..models.core import LogLevel, NodeCategory, NodeInput
from .base import BaseNode, get_path_value


logger = get_logger(__name__)

SYMBOL_OPERATORS = ("==", "!=", ">=", "<=", ">", "<")
WORD_OPERATORS = ("contains", "startsWith", "endsWith")
ITEM_COLLECTION_KEYS = ("subdomains", "findings", "results", "items", "urls")


def split_condition(condition: str) -> Tuple[str, Optional[str], Optional[str]]:
    """
    Split ``left OP right`` at the first operator outside quotes.

    Returns ``(expression, None, None)`` when there is no operator.
    """
    quote = None
    length = len(condition)
    i = 0
    while i < length:
        char = condition[i]
        if quote:
            if char == quote:
                quote = None
            i += 1
            continue
        if char in ("'", '"'):
            quote = char
            i += 1
            continue

        for op in SYMBOL_OPERATORS:
            if condition.startswith(op, i):
                return condition[:i].strip(), op, condition[i + len(op):].strip()

        for op in WORD_OPERATORS:
            end = i + len(op)
            if (condition.startswith(op, i)
                    and i > 0 and condition[i - 1].isspace()
                    and end < length and condition[end].isspace()):
                return condition[:i].strip(), op, condition[end:].strip()
        i += 1

    return condition.strip(), None, None


def resolve_operand(expression: str, data: Any) -> Any:
    """Turn an operand into a value: quoted string, number, keyword or dotted path."""
    expression = expression.strip()
    if len(expression) >= 2 and expression[0] == expression[-1] and expression[0] in ("'", '"'):
        return expression[1:-1]

    keywords = {"true": True, "false": False, "null": None, "none": None}
    if expression.lower() in keywords:
        return keywords[expression.lower()]

    try:
        return int(expression)
    except ValueError:
        pass
    try:
        return float(expression)
    except ValueError:
        pass

    return get_path_value(data, expression)


def resolve_right_operand(expression: str, data: Any) -> Any:
    """Like ``resolve_operand``, but a bare word that names no path is the word itself."""
    value = resolve_operand(expression, data)
    text = expression.strip()
    if value is None and text and text.lower() not in ("null", "none"):
        return text
    return value


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def loose_equals(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is right
    left_number, right_number = _number(left), _number(right)
    if left_number is not None and right_number is not None:
        return left_number == right_number
    if isinstance(left, (dict, list)) or isinstance(right, (dict, list)):
        return left == right
    return str(left) == str(right)


def _compare(left: Any, op: str, right: Any) -> bool:
    if op == "==":
        return loose_equals(left, right)
    if op == "!=":
        return not loose_equals(left, right)

    if op in (">", "<", ">=", "<="):
        left_number, right_number = _number(left), _number(right)
        if left_number is not None and right_number is not None:
            a, b = left_number, right_number
        elif isinstance(left, str) and isinstance(right, str):
            a, b = left, right
        else:
            return False
        return {">": a > b, "<": a < b, ">=": a >= b, "<=": a <= b}[op]

    if op == "contains":
        if isinstance(left, str):
            return str(right) in left
        if isinstance(left, list):
            return any(loose_equals(item, right) for item in left)
        if isinstance(left, dict):
            return str(right) in left
        return False
    if op == "startsWith":
        return left is not None and str(left).startswith(str(right))
    if op == "endsWith":
        return left is not None and str(left).endswith(str(right))
    return False


def evaluate_condition(condition: str, data: Any) -> bool:
    """
    Evaluate a condition such as ``count > 0`` or ``severity == "high"`` against ``data``.

    A condition without an operator is a truthiness test of its operand.
    Anything that cannot be evaluated is False.
    """
    if not condition or not condition.strip():
        return False

    left, op, right = split_condition(condition)
    try:
        if op is None:
            return bool(resolve_operand(left, data))
        return _compare(resolve_operand(left, data), op, resolve_right_operand(right, data))
    except (TypeError, ValueError) as e:
        logger.warning(f"Could not evaluate condition '{condition}': {e}")
        return False


def item_scope(item: Any, index: Optional[int] = None) -> Dict[str, Any]:
    """Data a condition sees when it is evaluated against one item."""
    if isinstance(item, dict):
        scope = dict(item)
        scope.setdefault("item", item)
    else:
        scope = {"item": item, "value": item}
        if isinstance(item, (str, list)):
            scope["length"] = len(item)
    if index is not None:
        scope.setdefault("index", index)
    return scope


def item_identity(item: Any) -> str:
    return json.dumps(item, sort_keys=True, default=str)


def deduplicate(items: List[Any]) -> List[Any]:
    seen = set()
    unique = []
    for item in items:
        key = item_identity(item)
        if key not in seen:
            seen.add(key)
            unique.append(item)
    return unique


def collect_items(payload: Any) -> List[Any]:
    """Array-shaped projection of one payload."""
    if isinstance(payload, list):
        return list(payload)
    if isinstance(payload, dict):
        collected: List[Any] = []
        for key in ITEM_COLLECTION_KEYS:
            value = payload.get(key)
            if isinstance(value, list):
                collected.extend(value)
        return collected
    return [] if payload is None else [payload]


class LogicNode(BaseNode):
    """Base of pure in-memory nodes: routing, filtering, merging and splitting."""

    category = NodeCategory.LOGIC

    def evaluate_condition(self, condition: str, data: Any) -> bool:
        result = evaluate_condition(condition, data)
        self.log(LogLevel.DEBUG, f"Condition '{condition}' evaluated to {result}")
        return result

    def filter_data(self, items: List[Any], condition: str) -> List[Any]:
        return [item for index, item in enumerate(items) if evaluate_condition(condition, item_scope(item, index))]

    def merge_data(self, inputs: Dict[str, NodeInput], merge_type: str = "union") -> Dict[str, Any]:
        """
        Merge the item collections of all inputs.

        Args:
            inputs: Payloads per input port
            merge_type: ``union``, ``intersection``, ``deduplicate`` or ``flatten``

        Returns:
            ``items``, ``count`` and the contributing ``sources``
        """
        groups = {name: collect_items(node_input.data) for name, node_input in inputs.items()}
        everything = [item for items in groups.values() for item in items]

        if merge_type in ("union", "deduplicate"):
            merged = deduplicate(everything)
        elif merge_type == "intersection":
            keyed = [{item_identity(item) for item in items} for items in groups.values()]
            common = set.intersection(*keyed) if keyed else set()
            merged = [item for item in deduplicate(everything) if item_identity(item) in common]
        elif merge_type == "flatten":
            merged = []
            for item in everything:
                if isinstance(item, list):
                    merged.extend(item)
                else:
                    merged.append(item)
        else:
            raise ValueError(f"Unknown merge type: {merge_type}")

        return {"items": merged, "count": len(merged), "sources": list(groups)}

    def split_data(self, items: List[Any], split_by: str, split_value: Any) -> Dict[str, List[Any]]:
        """Partition ``items`` into the ones matching the predicate and the rest."""
        matched: List[Any] = []
        rest: List[Any] = []

        for index, item in enumerate(items):
            if split_by in ("severity", "status"):
                value = item.get(split_by) if isinstance(item, dict) else item
                if split_by == "severity":
                    hit = value is not None and str(value).lower() == str(split_value).lower()
                else:
                    hit = loose_equals(value, split_value)
            elif split_by == "length":
                size = item.get("length") if isinstance(item, dict) else (
                    len(item) if isinstance(item, (str, list)) else None
                )
                size, threshold = _number(size), _number(split_value)
                hit = size is not None and threshold is not None and size > threshold
            elif split_by == "custom":
                hit = evaluate_condition(str(split_value), item_scope(item, index))
            else:
                raise ValueError(f"Unknown split criterion: {split_by}")

            (matched if hit else rest).append(item)

        return {"true": matched, "false": rest}
