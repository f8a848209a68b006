"""Bases for nodes whose work runs as a command on the task backend."""

import json
import re
import shlex
from abc import abstractmethod
from collections import Counter
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from ..core.exceptions import ExecutionCancelledError, NodeConfigurationError, WorkflowEngineError
from ..models.core import LogLevel, NodeCategory, NodeExecutionResult, NodeInput
from .base import BaseNode


_HOSTNAME_LINE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9]*\.")
_STATUS_FIELD = re.compile(r"Status:\s*(\d{3})")


class ToolNode(BaseNode):
    """
    Node that turns its configuration into a shell command for the task backend.

    The ``{{input}}`` placeholder of ``command_template`` receives the target,
    taken from upstream payloads (``target_input_keys`` in order) or from the
    node's own ``target_config_key`` setting. Other ``{{name}}`` placeholders
    resolve through ``replace_variables``. Substituted values are shell-quoted.
    """

    command_template: ClassVar[str] = ""
    target_input_keys: ClassVar[Tuple[str, ...]] = ("subdomains", "domain")
    target_config_key: ClassVar[str] = "domain"

    def resolve_target(self, inputs: Dict[str, NodeInput]) -> Optional[str]:
        merged = self.merge_inputs(inputs)
        for key in self.target_input_keys:
            value = merged.get(key)
            if isinstance(value, list):
                value = value[0] if value else None
            if isinstance(value, dict):
                value = value.get("url") or value.get("subdomain") or value.get("target")
            if value:
                return str(value)

        fallback = self.raw_config.get(self.target_config_key)
        return str(fallback) if fallback else None

    def extra_arguments(self) -> List[str]:
        """Optional flags appended to the templated command."""
        return []

    def build_command(self, inputs: Dict[str, NodeInput]) -> str:
        target = self.resolve_target(inputs)
        if not target:
            raise NodeConfigurationError(
                f"No target for {self.display_name}: connect an upstream node or set '{self.target_config_key}'",
                node_id=self.node.id
            )

        command = self.command_template.replace("{{input}}", shlex.quote(target))
        command = self.replace_variables(command, self.raw_config, quote=shlex.quote)

        extra = self.extra_arguments()
        if extra:
            command = f"{command} {shlex.join(extra)}"
        return command

    @abstractmethod
    def parse_output(self, output: str) -> Dict[str, Any]:
        """Turn the raw text returned by the backend into structured data."""

    def summarize(self, result: Dict[str, Any]) -> str:
        return f"{self.display_name} completed"

    async def execute(self, inputs: Dict[str, NodeInput]) -> NodeExecutionResult:
        errors = self.validate_config()
        if errors:
            return self.create_error_result(f"Configuration validation failed: {'; '.join(errors)}")

        try:
            command = self.build_command(inputs)
        except NodeConfigurationError as e:
            return self.create_error_result(e.message)

        backend = self.context.backend
        if backend is None:
            return self.create_error_result("No task backend configured for this execution")

        timeout = self.context.get_task_timeout(self.category)
        self.log(LogLevel.INFO, f"Executing {self.display_name}: {command}")

        try:
            output = await backend.run_command(command, timeout=timeout, cancel_event=self.context.cancel_event)
        except ExecutionCancelledError:
            return self.create_error_result(f"{self.display_name} cancelled")
        except WorkflowEngineError as e:
            return self.create_error_result(f"{self.display_name} failed: {e.message}")

        result = self.parse_output(output)
        self.log(LogLevel.SUCCESS, self.summarize(result))
        return self.create_success_result(result)


class DiscoveryNode(ToolNode):
    """Tool-backed node that enumerates assets such as subdomains."""

    category = NodeCategory.DISCOVERY

    @staticmethod
    def parse_subdomain_output(output: str) -> Dict[str, Any]:
        """Keep the lines that look like host names, in order and without duplicates."""
        lines = (line.strip() for line in output.splitlines())
        subdomains = list(dict.fromkeys(line for line in lines if line and _HOSTNAME_LINE.match(line)))
        return {"subdomains": subdomains, "count": len(subdomains), "raw": output}

    def parse_output(self, output: str) -> Dict[str, Any]:
        return self.parse_subdomain_output(output)

    def summarize(self, result: Dict[str, Any]) -> str:
        return f"{self.display_name} found {result.get('count', 0)} subdomains"


class AnalysisNode(ToolNode):
    """Tool-backed node that probes targets found by discovery."""

    category = NodeCategory.ANALYSIS
    target_input_keys = ("subdomains", "urls", "target", "url", "domain")
    target_config_key = "target"

    @staticmethod
    def parse_nuclei_output(output: str) -> Dict[str, Any]:
        """Extract findings from line-delimited nuclei JSON."""
        findings = []
        severity_counts: Counter = Counter()

        for line in output.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except ValueError:
                continue
            if not isinstance(record, dict):
                continue

            info = record.get("info")
            matched = record.get("matched-at") or record.get("matched")
            if not isinstance(info, dict) or not matched:
                continue

            severity = str(info.get("severity", "unknown")).lower()
            findings.append({
                "template": record.get("template-id") or record.get("templateID") or record.get("template"),
                "severity": severity,
                "target": matched,
                "description": info.get("description") or info.get("name", ""),
                "reference": info.get("reference") or [],
                "tags": info.get("tags") or []
            })
            severity_counts[severity] += 1

        return {
            "findings": findings,
            "count": len(findings),
            "severity_counts": dict(severity_counts),
            "raw": output
        }

    @staticmethod
    def _ffuf_result(record: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "url": record.get("url"),
            "status": record.get("status"),
            "length": record.get("length"),
            "words": record.get("words"),
            "lines": record.get("lines")
        }

    @classmethod
    def parse_ffuf_output(cls, output: str) -> Dict[str, Any]:
        """Extract fuzzing hits from ffuf JSON, JSON lines or plain text."""
        results: List[Dict[str, Any]] = []

        try:
            document = json.loads(output)
        except ValueError:
            document = None

        if isinstance(document, dict) and isinstance(document.get("results"), list):
            results = [cls._ffuf_result(r) for r in document["results"] if isinstance(r, dict)]
        else:
            for line in output.splitlines():
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                except ValueError:
                    record = None
                if isinstance(record, dict) and "status" in record:
                    results.append(cls._ffuf_result(record))
                elif "Status:" in line:
                    match = _STATUS_FIELD.search(line)
                    results.append({
                        "url": line.split()[0],
                        "status": int(match.group(1)) if match else None,
                        "raw": line
                    })

        status_counts = Counter(str(r["status"]) for r in results if r.get("status") is not None)
        return {
            "results": results,
            "count": len(results),
            "status_counts": dict(status_counts),
            "raw": output
        }

    @staticmethod
    def parse_parameter_output(output: str) -> Dict[str, Any]:
        """Extract parameter names reported by parameter-discovery tools."""
        parameters: List[str] = []
        for line in output.splitlines():
            if "Parameter discovered:" in line:
                parameters.append(line.split("Parameter discovered:", 1)[1].strip())
            elif "Parameters found:" in line:
                found = line.split("Parameters found:", 1)[1]
                parameters.extend(p.strip() for p in found.split(",") if p.strip())

        parameters = list(dict.fromkeys(p for p in parameters if p))
        return {"parameters": parameters, "count": len(parameters), "raw": output}
