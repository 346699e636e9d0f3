"""
Gene lookup example for Biostratum MCP.

Connects to the servers listed in biostratum_mcp.config.yaml, prints the
catalog summary and calls one tool chosen by a canned "model" response.
"""

import asyncio
import os

from biostratum_mcp import McpService, load_config

CONFIG_PATH = os.path.join(os.path.dirname(__file__), "biostratum_mcp.config.yaml")

# Stands in for an LLM; the first answer has a wrong server name on purpose
MODEL_RESPONSES = [
    '{"serverName": "gget", "toolName": "gget_search", "arguments": {"search_terms": ["FOXO3"], "species": "homo_sapiens"}}',
    '{"serverName": "biostratum-gget", "toolName": "gget_search", "arguments": {"search_terms": ["FOXO3"], "species": "homo_sapiens"}}',
]


async def generate(prompt: str) -> str:
    print("\n[feedback prompt sent to the model]\n")
    print(prompt)
    return MODEL_RESPONSES[1]


async def notify(message: str) -> None:
    print(f"\n[assistant] {message}")


async def main():
    settings = load_config(CONFIG_PATH)

    async with McpService(settings=settings) as service:
        for state in service.get_servers():
            error = f" ({state.error.splitlines()[-1]})" if state.error else ""
            print(f"{state.name}: {state.status}{error}")

        print()
        print(service.get_provider_data().text)

        outcome = await service.select_tool(
            MODEL_RESPONSES[0],
            generate=generate,
            fallback_message="Sorry, I could not find a suitable tool for that request.",
            user_message="What is FOXO3?",
            notify=notify,
        )
        if not outcome.succeeded or outcome.selection.no_tool_available:
            return

        selection = outcome.selection
        result = await service.call_tool(
            selection.server_name, selection.tool_name, selection.arguments
        )
        for item in result.content:
            print(getattr(item, "text", item))


if __name__ == "__main__":
    asyncio.run(main())
