"""
SearXNG Web Search Tool

Provides web search capabilities via a SearXNG instance.
"""

import logging
from typing import Optional

import requests

from ..config import config
from ..errors import ToolError
from .registry import ToolDescriptor, ToolRegistry

logger = logging.getLogger(__name__)

INPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "query": {"type": "string", "description": "The search query"},
        "categories": {
            "type": "string",
            "description": "Optional category filter (general, news, science)",
        },
        "num_results": {
            "type": "integer",
            "description": "Maximum number of results (default 5)",
            "default": 5,
        },
    },
    "required": ["query"],
}


def search(
    query: str,
    categories: Optional[str] = None,
    num_results: int = 5,
) -> dict:
    """
    Search the web using SearXNG.

    Args:
        query: The search query
        categories: Optional category filter (e.g., "general", "news")
        num_results: Maximum number of results to return

    Returns:
        Dictionary with the query and its results

    Raises:
        ToolError: If the query is empty or the search endpoint fails
    """
    if not query or not query.strip():
        raise ToolError(
            'Search query is empty. Please provide a search query in format: {"query": "your search terms"}',
            tool_name="web_search",
        )

    params = {"q": query, "format": "json"}
    if categories:
        params["categories"] = categories

    try:
        response = requests.get(
            config.tools.searxng_endpoint,
            params=params,
            timeout=config.tools.searxng_timeout,
        )
        response.raise_for_status()
        data = response.json()
    except requests.exceptions.RequestException as e:
        logger.error("Search failed: %s", e)
        raise ToolError(f"Search failed: {e}", tool_name="web_search") from e

    results = [
        {
            "title": result.get("title", ""),
            "url": result.get("url", ""),
            "content": result.get("content", ""),
        }
        for result in data.get("results", [])[:num_results]
    ]
    return {"query": query, "results": results, "total": len(results)}


def format_results_for_llm(search_result: dict) -> str:
    """
    Format search results for LLM consumption.

    Args:
        search_result: Result from search()

    Returns:
        Formatted string
    """
    if not search_result["results"]:
        return f"No results found for: {search_result['query']}"

    lines = [f"Search results for: {search_result['query']}", ""]
    for i, result in enumerate(search_result["results"], 1):
        lines.append(f"{i}. {result['title']}")
        lines.append(f"   URL: {result['url']}")
        if result["content"]:
            lines.append(f"   {result['content'][:300]}")
        lines.append("")
    return "\n".join(lines).rstrip()


def _handle_search(args: dict) -> dict:
    """Handle web_search tool invocation."""
    num_results = args.get("num_results") or 5
    return search(
        query=args.get("query", ""),
        categories=args.get("categories"),
        num_results=int(num_results),
    )


def register(registry: ToolRegistry) -> None:
    """Register the web_search tool."""
    registry.register(
        ToolDescriptor(
            name="web_search",
            description=(
                "a search engine. useful for when you need to answer questions "
                "about current events. input should be a search query."
            ),
            invoke=_handle_search,
            input_schema=INPUT_SCHEMA,
            formatter=format_results_for_llm,
        )
    )
