"""
Parsing and validation of model-produced tool and resource selections.
"""

import json
import re
from typing import Any, Dict, Optional

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from biostratum_mcp.mcp.errors import SelectionValidationError
from biostratum_mcp.mcp.models import ProviderSnapshot
from biostratum_mcp.utils.logging import get_logger

logger = get_logger(__name__)

_CODE_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


class ToolSelection(BaseModel):
    """A tool invocation chosen by the model, or the no-tool sentinel."""

    model_config = ConfigDict(populate_by_name=True)

    server_name: Optional[str] = Field(default=None, alias="serverName")
    tool_name: Optional[str] = Field(default=None, alias="toolName")
    arguments: Dict[str, Any] = Field(default_factory=dict)
    reasoning: Optional[str] = None
    no_tool_available: bool = Field(default=False, alias="noToolAvailable")


class ResourceSelection(BaseModel):
    """A resource read chosen by the model, or the no-resource sentinel."""

    model_config = ConfigDict(populate_by_name=True)

    server_name: Optional[str] = Field(default=None, alias="serverName")
    uri: Optional[str] = None
    reasoning: Optional[str] = None
    no_resource_available: bool = Field(default=False, alias="noResourceAvailable")


def parse_json_response(text: str) -> Dict[str, Any]:
    """
    Extract the first JSON object from a model response.

    Code fences and surrounding prose are tolerated.

    Raises:
        SelectionValidationError: If no JSON object can be parsed.
    """
    if not text or not text.strip():
        raise SelectionValidationError("Empty response: expected a JSON object")

    match = _CODE_BLOCK.search(text)
    candidate = match.group(1) if match else text.strip()

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        start = candidate.find("{")
        end = candidate.rfind("}")
        if start == -1 or end <= start:
            raise SelectionValidationError(
                f"Could not find a JSON object in the response: {text[:200]}"
            )
        try:
            parsed = json.loads(candidate[start:end + 1])
        except json.JSONDecodeError as e:
            raise SelectionValidationError(f"Invalid JSON: {e.msg} (line {e.lineno}, column {e.colno})")

    if not isinstance(parsed, dict):
        raise SelectionValidationError(
            f"Expected a JSON object, got {type(parsed).__name__}"
        )
    return parsed


def _check_server(server_name: Any, snapshot: ProviderSnapshot) -> str:
    if not isinstance(server_name, str) or not server_name:
        raise SelectionValidationError('Missing required field "serverName"')
    if server_name not in snapshot.servers:
        available = ", ".join(f'"{name}"' for name in snapshot.servers) or "none"
        raise SelectionValidationError(
            f'Server "{server_name}" not found. Available servers: {available}'
        )
    return server_name


def validate_arguments(arguments: Dict[str, Any], schema: Optional[Dict[str, Any]]) -> None:
    """
    Check tool arguments against the tool's input schema.

    Raises:
        SelectionValidationError: If the arguments do not satisfy the schema.
    """
    if not isinstance(schema, dict) or not schema:
        return

    try:
        Draft7Validator.check_schema(schema)
    except SchemaError as e:
        logger.warning(f"Tool input schema is invalid; skipping argument validation: {e.message}")
        return

    validator = Draft7Validator(schema)
    errors = sorted(validator.iter_errors(arguments), key=lambda item: [str(p) for p in item.path])

    if not errors:
        return

    formatted_errors = []
    for error in errors:
        path = ".".join(str(segment) for segment in error.path) or "arguments"
        formatted_errors.append(f"{path}: {error.message}")
    raise SelectionValidationError("Invalid arguments: " + "; ".join(formatted_errors))


def validate_tool_selection(text: str, snapshot: ProviderSnapshot) -> ToolSelection:
    """
    Parse ``text`` and check it against the tools in ``snapshot``.

    Server and tool names must match exactly, including case.

    Raises:
        SelectionValidationError: If the selection is malformed or refers to
            something that is not in the snapshot.
    """
    data = parse_json_response(text)

    if data.get("noToolAvailable") is True:
        return ToolSelection(no_tool_available=True, reasoning=data.get("reasoning"))

    if "arguments" not in data and "parameters" in data:
        raise SelectionValidationError('Use "arguments" as the key for tool arguments, not "parameters"')

    arguments = data.get("arguments", {})
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise SelectionValidationError('"arguments" must be a JSON object')

    server_name = _check_server(data.get("serverName"), snapshot)

    tool_name = data.get("toolName")
    if not isinstance(tool_name, str) or not tool_name:
        raise SelectionValidationError('Missing required field "toolName"')

    tool = snapshot.servers[server_name].find_tool(tool_name)
    if tool is None:
        available = ", ".join(f'"{t.name}"' for t in snapshot.servers[server_name].tools) or "none"
        raise SelectionValidationError(
            f'Tool "{tool_name}" not found on server "{server_name}". Available tools: {available}'
        )

    validate_arguments(arguments, tool.inputSchema)

    try:
        return ToolSelection(
            server_name=server_name,
            tool_name=tool_name,
            arguments=arguments,
            reasoning=data.get("reasoning"),
        )
    except ValidationError as e:
        raise SelectionValidationError(f"Invalid tool selection: {e}")


def validate_resource_selection(text: str, snapshot: ProviderSnapshot) -> ResourceSelection:
    """
    Parse ``text`` and check it against the resources in ``snapshot``.

    Raises:
        SelectionValidationError: If the selection is malformed or refers to
            something that is not in the snapshot.
    """
    data = parse_json_response(text)

    if data.get("noResourceAvailable") is True:
        return ResourceSelection(no_resource_available=True, reasoning=data.get("reasoning"))

    server_name = _check_server(data.get("serverName"), snapshot)

    uri = data.get("uri")
    if not isinstance(uri, str) or not uri:
        raise SelectionValidationError('Missing required field "uri"')

    if snapshot.servers[server_name].find_resource(uri) is None:
        available = ", ".join(
            f'"{r.uri}"' for r in snapshot.servers[server_name].resources
        ) or "none"
        raise SelectionValidationError(
            f'Resource "{uri}" not found on server "{server_name}". Available resources: {available}'
        )

    return ResourceSelection(server_name=server_name, uri=uri, reasoning=data.get("reasoning"))
