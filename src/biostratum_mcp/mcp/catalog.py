"""
Catalog discovery for connected servers and rendering of the provider snapshot.
"""

from typing import Iterable, List

from mcp import ClientSession
from mcp.types import Resource, ResourceTemplate, Tool

from biostratum_mcp.config.settings import ToolFilter
from biostratum_mcp.mcp.errors import describe_error
from biostratum_mcp.mcp.models import ProviderSnapshot, ServerCatalog, ServerState, ServerStatus
from biostratum_mcp.utils.logging import get_logger

logger = get_logger(__name__)

NO_SERVERS_TEXT = "No MCP servers are currently available."


class CatalogBuilder:
    """
    Fetches the tools, resources and resource templates a server advertises.
    """

    async def fetch(
        self, server_name: str, session: ClientSession, tool_filter: ToolFilter
    ) -> ServerCatalog:
        tools = await self.fetch_tools(server_name, session, tool_filter)
        resources = await self.fetch_resources(server_name, session)
        resource_templates = await self.fetch_resource_templates(server_name, session)
        return ServerCatalog(
            tools=tools,
            resources=resources,
            resource_templates=resource_templates,
        )

    async def fetch_tools(
        self, server_name: str, session: ClientSession, tool_filter: ToolFilter
    ) -> List[Tool]:
        result = await session.list_tools()
        tools = unique_tools(server_name, result.tools or [])

        if tool_filter.is_active:
            tools = filter_tools(server_name, tools, tool_filter)

        logger.info(f"{server_name}: fetched {len(tools)} tools")
        for tool in tools:
            logger.debug(f"{server_name}: {tool.name}: {tool.description}")
        return tools

    async def fetch_resources(self, server_name: str, session: ClientSession) -> List[Resource]:
        try:
            result = await session.list_resources()
        except Exception as e:
            logger.warning(f"{server_name}: no resources found: {describe_error(e)}")
            return []
        return list(result.resources or [])

    async def fetch_resource_templates(
        self, server_name: str, session: ClientSession
    ) -> List[ResourceTemplate]:
        try:
            result = await session.list_resource_templates()
        except Exception as e:
            logger.warning(f"{server_name}: no resource templates found: {describe_error(e)}")
            return []
        return list(result.resourceTemplates or [])


def unique_tools(server_name: str, tools: Iterable[Tool]) -> List[Tool]:
    """Keep the first tool of each name, preserving order."""
    seen = set()
    unique: List[Tool] = []
    for tool in tools:
        if tool.name in seen:
            logger.warning(f"{server_name}: duplicate tool '{tool.name}' ignored")
            continue
        seen.add(tool.name)
        unique.append(tool)
    return unique


def filter_tools(server_name: str, tools: List[Tool], tool_filter: ToolFilter) -> List[Tool]:
    original_count = len(tools)
    filtered = tool_filter.apply(tools)
    if original_count != len(filtered):
        logger.info(
            f"{server_name}: tool filtering applied: {original_count} -> {len(filtered)} tools"
        )
    return filtered


def build_snapshot(states: Iterable[ServerState]) -> ProviderSnapshot:
    """
    Combine the catalogs of every connected server into one snapshot.
    """
    servers = {
        state.name: ServerCatalog(
            tools=list(state.tools),
            resources=list(state.resources),
            resource_templates=list(state.resource_templates),
        )
        for state in states
        if state.status == ServerStatus.CONNECTED and not state.disabled
    }
    return ProviderSnapshot(servers=servers, text=render_catalog_text(servers))


def render_catalog_text(servers: dict) -> str:
    if not servers:
        return NO_SERVERS_TEXT

    sections = [
        "# MCP Configuration",
        "",
        "You have access to the following MCP servers. Use the exact name shown in "
        "[SERVER NAME] when selecting a server.",
    ]
    for name, catalog in servers.items():
        sections.append("")
        sections.append(render_server_section(name, catalog))
    return "\n".join(sections)


def render_server_section(name: str, catalog: ServerCatalog) -> str:
    lines = [f"## [{name}]"]

    if catalog.tools:
        lines.append("")
        lines.append("### Tools")
        for tool in catalog.tools:
            lines.append(render_tool_line(tool))
    else:
        lines.append("")
        lines.append("No tools available.")

    if catalog.resources:
        lines.append("")
        lines.append("### Resources")
        for resource in catalog.resources:
            description = f": {resource.description}" if resource.description else ""
            lines.append(f"- {resource.name} ({resource.uri}){description}")

    if catalog.resource_templates:
        lines.append("")
        lines.append("### Resource Templates")
        for template in catalog.resource_templates:
            description = f": {template.description}" if template.description else ""
            lines.append(f"- {template.name} ({template.uriTemplate}){description}")

    return "\n".join(lines)


def render_tool_line(tool: Tool) -> str:
    line = f"- {tool.name}: {tool.description or 'No description'}"
    properties = (tool.inputSchema or {}).get("properties") or {}
    if properties:
        required = set((tool.inputSchema or {}).get("required") or [])
        params = ", ".join(
            f"{param}{'*' if param in required else ''}" for param in properties
        )
        line = f"{line}\n  Arguments: {params}"
    return line


def render_tools_description(snapshot: ProviderSnapshot) -> str:
    """List tools per server, for corrective feedback prompts."""
    lines = []
    for name, catalog in snapshot.servers.items():
        for tool in catalog.tools:
            lines.append(f"Tool: {tool.name} (Server: {name})\nDescription: {tool.description or 'No description'}")
    return "\n\n".join(lines) if lines else "No tools available."


def render_resources_description(snapshot: ProviderSnapshot) -> str:
    """List resources per server, for corrective feedback prompts."""
    lines = []
    for name, catalog in snapshot.servers.items():
        for resource in catalog.resources:
            lines.append(
                f"Resource: {resource.uri} (Server: {name})\n"
                f"Name: {resource.name}\nDescription: {resource.description or 'No description'}"
            )
    return "\n\n".join(lines) if lines else "No resources available."
