"""
Corrective feedback prompts sent to the model after a failed selection.
"""

from typing import Optional

from biostratum_mcp.mcp.catalog import render_resources_description, render_tools_description
from biostratum_mcp.mcp.models import ProviderSnapshot


def _feedback_prompt(
    catalog_text: str,
    original_response: str,
    error_message: str,
    item_type: str,
    items_description: str,
    user_message: Optional[str],
    example_server: str,
) -> str:
    user_request = f'\n**User request:** "{user_message}"\n' if user_message else ""
    return f"""
{catalog_text}

# JSON Correction Instructions

You previously attempted to produce a JSON {item_type} selection but it could not be used. Fix the issues and provide a valid JSON response.

**PREVIOUS RESPONSE:**
{original_response}

**ERROR:**
{error_message}

**Available {item_type}s:**
{items_description}
{user_request}
## CRITICAL REQUIREMENTS FOR CORRECTION:
1. **SERVER NAMES**: Must match EXACTLY the server name shown in [SERVER NAME] - case-sensitive!
   - Use complete names like "{example_server}", NOT abbreviated forms
2. **{item_type.upper()} NAMES**: Must match exactly the available {item_type} names (case-sensitive!)
3. **JSON FORMAT**: Valid JSON syntax with double quotes for keys and string values
4. **NO PLACEHOLDERS**: All values must be concrete and usable (no "example", "your-value", etc.)
5. **NO FORMATTING**: No markdown, code blocks, or explanatory text outside the JSON

## Your Corrected JSON Response:
"""


def _example_server(snapshot: ProviderSnapshot) -> str:
    return next(iter(snapshot.servers), "biostratum-gget")


def create_tool_selection_feedback_prompt(
    original_response: str,
    error_message: str,
    snapshot: ProviderSnapshot,
    user_message: Optional[str] = None,
) -> str:
    return _feedback_prompt(
        catalog_text=snapshot.text,
        original_response=original_response,
        error_message=error_message,
        item_type="tool",
        items_description=render_tools_description(snapshot),
        user_message=user_message,
        example_server=_example_server(snapshot),
    )


def create_resource_selection_feedback_prompt(
    original_response: str,
    error_message: str,
    snapshot: ProviderSnapshot,
    user_message: Optional[str] = None,
) -> str:
    return _feedback_prompt(
        catalog_text=snapshot.text,
        original_response=original_response,
        error_message=error_message,
        item_type="resource",
        items_description=render_resources_description(snapshot),
        user_message=user_message,
        example_server=_example_server(snapshot),
    )
