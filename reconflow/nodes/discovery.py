"""Subdomain enumeration nodes."""

from typing import List, Literal, Optional

from pydantic import Field

from .schema import NodeConfig
from .tool import DiscoveryNode


SubfinderSource = Literal[
    "alienvault", "anubis", "bufferover", "certspotter", "crtsh",
    "dnsdumpster", "hackertarget", "rapiddns", "virustotal", "waybackarchive"
]


class SubfinderConfig(NodeConfig):
    domain: Optional[str] = Field(
        None,
        title="Target Domain",
        description="Domain to enumerate when no upstream node provides one",
        pattern=r"^[a-zA-Z0-9][a-zA-Z0-9.-]*\.[a-zA-Z]{2,}$"
    )
    threads: int = Field(10, title="Threads", ge=1, le=100)
    timeout: int = Field(30, title="Timeout (seconds)", ge=1, le=300)
    sources: List[SubfinderSource] = Field(default_factory=list, title="Sources")
    resolvers: Optional[str] = Field(None, title="Resolvers", description="Comma-separated DNS resolvers")


class SubfinderNode(DiscoveryNode):
    node_type = "subfinder"
    display_name = "Subfinder"
    description = "Passive subdomain enumeration with subfinder"
    icon = "search"
    config_model = SubfinderConfig
    command_template = "subfinder -d {{input}} -t {{threads}} -timeout {{timeout}} -silent"

    def extra_arguments(self) -> List[str]:
        args = []
        if self.settings.sources:
            args += ["-sources", ",".join(self.settings.sources)]
        if self.settings.resolvers:
            args += ["-r", self.settings.resolvers]
        return args


class AmassConfig(NodeConfig):
    domain: Optional[str] = Field(
        None,
        title="Target Domain",
        pattern=r"^[a-zA-Z0-9][a-zA-Z0-9.-]*\.[a-zA-Z]{2,}$"
    )
    mode: Literal["passive", "active"] = Field(
        "passive",
        title="Mode",
        json_schema_extra={"option_labels": {"passive": "Passive", "active": "Active (touches target)"}}
    )
    timeout: int = Field(60, title="Timeout (minutes)", ge=1, le=1440)
    brute_force: bool = Field(False, title="Brute Force", description="Only used in active mode")


class AmassNode(DiscoveryNode):
    node_type = "amass"
    display_name = "Amass"
    description = "Subdomain enumeration with OWASP Amass in passive or active mode"
    icon = "globe"
    config_model = AmassConfig
    command_template = "amass enum -{{mode}} -d {{input}} -timeout {{timeout}}"

    def extra_arguments(self) -> List[str]:
        if self.settings.mode == "active" and self.settings.brute_force:
            return ["-brute"]
        return []
