"""Vulnerability scanning, fuzzing and parameter discovery nodes."""

from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from ..models.core import NodeInput
from .schema import NodeConfig
from .tool import AnalysisNode


Severity = Literal["info", "low", "medium", "high", "critical"]


class NucleiConfig(NodeConfig):
    target: Optional[str] = Field(None, title="Target", description="URL or host when no upstream node provides one")
    severity: List[Severity] = Field(
        default_factory=lambda: ["medium", "high", "critical"],
        title="Severity"
    )
    templates: Optional[str] = Field(None, title="Templates", description="Comma-separated template paths")
    tags: Optional[str] = Field(None, title="Include Tags")
    exclude_tags: Optional[str] = Field(None, title="Exclude Tags")
    rate_limit: int = Field(150, title="Rate Limit (req/s)", ge=1, le=1000)
    timeout: int = Field(10, title="Request Timeout (seconds)", ge=1, le=60)
    max_targets: int = Field(
        50,
        title="Max Targets",
        description="Upper bound of upstream hosts passed to one scan",
        ge=1,
        le=1000
    )


class NucleiNode(AnalysisNode):
    node_type = "nuclei"
    display_name = "Nuclei"
    description = "Template-based vulnerability scanning with nuclei"
    icon = "shield"
    config_model = NucleiConfig
    command_template = "nuclei -u {{input}} -jsonl -silent"

    def resolve_target(self, inputs: Dict[str, NodeInput]) -> Optional[str]:
        # nuclei accepts a comma-separated target list
        hosts = self.merge_inputs(inputs).get("subdomains")
        if isinstance(hosts, list) and len(hosts) > 1:
            return ",".join(str(host) for host in hosts[:self.settings.max_targets])
        return super().resolve_target(inputs)

    def extra_arguments(self) -> List[str]:
        settings = self.settings
        args = []
        if settings.severity:
            args += ["-severity", ",".join(settings.severity)]
        if settings.templates:
            args += ["-t", settings.templates]
        if settings.tags:
            args += ["-tags", settings.tags]
        if settings.exclude_tags:
            args += ["-etags", settings.exclude_tags]
        args += ["-rate-limit", str(settings.rate_limit), "-timeout", str(settings.timeout)]
        return args

    def parse_output(self, output: str) -> Dict[str, Any]:
        return self.parse_nuclei_output(output)

    def summarize(self, result: Dict[str, Any]) -> str:
        return f"Nuclei reported {result['count']} findings"


class FfufConfig(NodeConfig):
    target: Optional[str] = Field(None, title="Target URL", description="FUZZ is appended when missing")
    wordlist: str = Field(
        "/usr/share/wordlists/dirb/common.txt",
        title="Wordlist",
        json_schema_extra={"required": True}
    )
    threads: int = Field(40, title="Threads", ge=1, le=200)
    filter_codes: str = Field("404", title="Filter Status Codes", pattern=r"^\d{3}(,\d{3})*$")
    match_codes: Optional[str] = Field(None, title="Match Status Codes", pattern=r"^\d{3}(,\d{3})*$")
    filter_size: Optional[str] = Field(None, title="Filter Response Size")
    extensions: Optional[str] = Field(None, title="Extensions", description="e.g. .php,.bak")
    delay: Optional[float] = Field(None, title="Delay (seconds)", ge=0, le=10)


class FfufNode(AnalysisNode):
    node_type = "ffuf"
    display_name = "FFUF"
    description = "Content discovery by fuzzing URLs with ffuf"
    icon = "zap"
    config_model = FfufConfig
    command_template = "ffuf -u {{input}} -w {{wordlist}} -t {{threads}} -fc {{filter_codes}} -json -s"

    def resolve_target(self, inputs: Dict[str, NodeInput]) -> Optional[str]:
        target = super().resolve_target(inputs)
        if not target:
            return None
        if not target.startswith(("http://", "https://")):
            target = f"https://{target}"
        if "FUZZ" not in target:
            target = f"{target.rstrip('/')}/FUZZ"
        return target

    def extra_arguments(self) -> List[str]:
        settings = self.settings
        args = []
        if settings.match_codes:
            args += ["-mc", settings.match_codes]
        if settings.filter_size:
            args += ["-fs", settings.filter_size]
        if settings.extensions:
            args += ["-e", settings.extensions]
        if settings.delay:
            args += ["-p", str(settings.delay)]
        return args

    def parse_output(self, output: str) -> Dict[str, Any]:
        return self.parse_ffuf_output(output)

    def summarize(self, result: Dict[str, Any]) -> str:
        return f"FFUF found {result['count']} results"


class ArjunConfig(NodeConfig):
    target: Optional[str] = Field(None, title="Target URL")
    method: Literal["GET", "POST", "JSON", "XML"] = Field("GET", title="Method")
    threads: int = Field(5, title="Threads", ge=1, le=50)
    delay: int = Field(0, title="Delay (seconds)", ge=0, le=30)


class ArjunNode(AnalysisNode):
    node_type = "arjun"
    display_name = "Arjun"
    description = "HTTP parameter discovery with arjun"
    icon = "key"
    config_model = ArjunConfig
    command_template = "arjun -u {{input}} -m {{method}} -t {{threads}} -d {{delay}}"

    def resolve_target(self, inputs: Dict[str, NodeInput]) -> Optional[str]:
        target = super().resolve_target(inputs)
        if target and not target.startswith(("http://", "https://")):
            target = f"https://{target}"
        return target

    def parse_output(self, output: str) -> Dict[str, Any]:
        return self.parse_parameter_output(output)

    def summarize(self, result: Dict[str, Any]) -> str:
        return f"Arjun discovered {result['count']} parameters"
