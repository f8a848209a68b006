"""Tests for config schema generation and validation."""

from typing import List, Literal, Optional

from pydantic import Field

from reconflow.models.core import ConfigFieldType
from reconflow.nodes.discovery import SubfinderConfig
from reconflow.nodes.schema import NodeConfig, build_config_schema, validate_config


class ScanSettings(NodeConfig):
    threads: int = Field(..., title="Threads", ge=1, le=100)
    mode: Literal["passive", "active"] = Field(
        "passive",
        title="Mode",
        json_schema_extra={"option_labels": {"passive": "Passive"}}
    )
    tags: List[Literal["cve", "panel"]] = Field(default_factory=list, title="Tags")
    host: Optional[str] = Field(None, title="Host", pattern=r"^[a-z.]+$")
    notes: str = Field("", title="Notes", json_schema_extra={"widget": "textarea"})
    ratio: Optional[float] = Field(None, title="Ratio", gt=0, lt=1)


class TestSchemaGeneration:
    """ConfigField metadata derived from pydantic models."""

    def test_field_types(self):
        schema = build_config_schema(ScanSettings)

        assert schema["threads"].type == ConfigFieldType.NUMBER
        assert schema["mode"].type == ConfigFieldType.SELECT
        assert schema["tags"].type == ConfigFieldType.MULTISELECT
        assert schema["host"].type == ConfigFieldType.STRING
        assert schema["notes"].type == ConfigFieldType.TEXTAREA
        assert schema["stop_on_error"].type == ConfigFieldType.BOOLEAN

    def test_bounds_required_and_defaults(self):
        schema = build_config_schema(ScanSettings)

        assert schema["threads"].required
        assert schema["threads"].validation.min == 1
        assert schema["threads"].validation.max == 100
        assert schema["threads"].validation.integer
        assert schema["ratio"].validation.exclusive_min
        assert schema["ratio"].validation.exclusive_max
        assert not schema["ratio"].validation.integer
        assert schema["host"].validation.pattern == r"^[a-z.]+$"
        assert schema["mode"].default == "passive"
        assert schema["tags"].default == []
        assert schema["stop_on_error"].default is True

    def test_select_options_use_labels(self):
        options = build_config_schema(ScanSettings)["mode"].options

        assert [(o.label, o.value) for o in options] == [("Passive", "passive"), ("active", "active")]

    def test_labels_come_from_titles(self):
        schema = build_config_schema(SubfinderConfig)

        assert schema["domain"].label == "Target Domain"
        assert schema["stop_on_error"].label == "Stop on Error"


class TestValidateConfig:
    """Violations reported for open configuration mappings."""

    def setup_method(self):
        self.schema = build_config_schema(ScanSettings)

    def test_out_of_range_number_reports_one_violation(self):
        errors = validate_config(self.schema, {"threads": 500})

        assert errors == ["Threads must be at most 100"]

    def test_in_range_number_is_valid(self):
        assert validate_config(self.schema, {"threads": 10}) == []

    def test_numeric_strings_are_accepted(self):
        assert validate_config(self.schema, {"threads": "10"}) == []
        assert validate_config(self.schema, {"threads": "ten"}) == ["Threads must be a number"]

    def test_missing_required_field(self):
        assert validate_config(self.schema, {}) == ["Required field 'Threads' is missing"]

    def test_select_value_must_be_an_option(self):
        errors = validate_config(self.schema, {"threads": 5, "mode": "aggressive"})

        assert errors == ["Mode must be one of: passive, active"]

    def test_multiselect_values(self):
        assert validate_config(self.schema, {"threads": 5, "tags": "cve"}) == ["Tags must be an array"]
        assert validate_config(self.schema, {"threads": 5, "tags": ["cve", "rce"]}) == [
            "Tags contains invalid values: rce"
        ]

    def test_pattern(self):
        assert validate_config(self.schema, {"threads": 5, "host": "Bad Host!"}) == ["Host format is invalid"]
        assert validate_config(self.schema, {"threads": 5, "host": "example.com"}) == []

    def test_boolean(self):
        assert validate_config(self.schema, {"threads": 5, "stop_on_error": "no"}) == [
            "Stop on Error must be a boolean"
        ]

    def test_integer_field_rejects_fractions(self):
        assert validate_config(self.schema, {"threads": 5.5}) == ["Threads must be a whole number"]
        assert validate_config(self.schema, {"threads": 5.0}) == []

    def test_exclusive_bounds(self):
        assert validate_config(self.schema, {"threads": 5, "ratio": 0}) == ["Ratio must be greater than 0"]
        assert validate_config(self.schema, {"threads": 5, "ratio": 1}) == ["Ratio must be less than 1"]
        assert validate_config(self.schema, {"threads": 5, "ratio": 0.5}) == []
