"""Pure transforms over the array-shaped projection of a payload."""

import json
import re
from typing import Any, Dict, List, Optional

from ..models.core import NodeCategory
from .base import BaseNode, get_path_value, stringify
from .logic import ITEM_COLLECTION_KEYS, deduplicate, item_identity


_ITEM_PLACEHOLDER = re.compile(r"\{\{\s*([\w.-]+)\s*\}\}")


def render_item_template(template: str, item: Any, index: int = 0) -> str:
    """
    Render ``template`` for one item.

    ``{{item}}`` is the item itself, ``{{item.field}}`` a path inside it,
    ``{{index}}`` its position; any other name is looked up in the item.
    """
    def substitute(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name == "item":
            value = item
        elif name.startswith("item."):
            value = get_path_value(item, name[len("item."):])
        elif name == "index":
            value = index
        else:
            value = get_path_value(item, name)
        return "" if value is None else stringify(value)

    return _ITEM_PLACEHOLDER.sub(substitute, template)


def _sort_key(value: Any):
    if value is None:
        return (2, "")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (0, value)
    return (1, str(value))


class DataNode(BaseNode):
    """Base of nodes that reshape data without leaving the process."""

    category = NodeCategory.DATA

    @staticmethod
    def extract_array(data: Any) -> List[Any]:
        """Return the item collection carried by ``data``."""
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            for key in ITEM_COLLECTION_KEYS:
                value = data.get(key)
                if isinstance(value, list):
                    return value
        return []

    @staticmethod
    def map_items(items: List[Any], expression: str) -> List[Any]:
        mapped = []
        for index, item in enumerate(items):
            rendered = render_item_template(expression, item, index)
            if rendered.strip().startswith(("{", "[")):
                try:
                    mapped.append(json.loads(rendered))
                    continue
                except ValueError:
                    pass
            mapped.append(rendered)
        return mapped

    @staticmethod
    def extract_fields(items: List[Any], fields: List[str]) -> List[Dict[str, Any]]:
        return [{field: get_path_value(item, field) for field in fields} for item in items]

    @staticmethod
    def format_items(items: List[Any], template: str) -> List[str]:
        return [render_item_template(template, item, index) for index, item in enumerate(items)]

    @staticmethod
    def aggregate_items(items: List[Any], aggregate_type: str, group_by: Optional[str] = None) -> Any:
        if aggregate_type == "count":
            return {"count": len(items)}
        if aggregate_type == "unique":
            return deduplicate(items)
        if aggregate_type == "group":
            if not group_by:
                raise ValueError("Grouping requires a 'group_by' field")
            groups: Dict[str, List[Any]] = {}
            for item in items:
                key = get_path_value(item, group_by)
                groups.setdefault("null" if key is None else stringify(key), []).append(item)
            return groups
        raise ValueError(f"Unknown aggregate type: {aggregate_type}")

    @staticmethod
    def sort_items(items: List[Any], sort_by: Optional[str] = None, order: str = "asc") -> List[Any]:
        def key(item):
            return _sort_key(get_path_value(item, sort_by) if sort_by else item)

        return sorted(items, key=key, reverse=(order == "desc"))

    @staticmethod
    def limit_items(items: List[Any], count: int) -> List[Any]:
        return items[:max(count, 0)]

    @staticmethod
    def unique_count(items: List[Any]) -> int:
        return len({item_identity(item) for item in items})
