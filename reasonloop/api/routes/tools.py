"""Tool listing and output-parser endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from ...parsers import Action, Final, ParserSet, ParseResult, Value
from ...tools import ToolRegistry
from ..dependencies import get_parsers, get_registry
from ..schemas import (
    ParserListResponse,
    ParseRequest,
    ParseResponse,
    ToolInfo,
    ToolListResponse,
)

router = APIRouter()


@router.get(
    "/v1/tools",
    response_model=ToolListResponse,
    summary="List tools",
    description="List every invocable tool. Multitools are expanded into their sub-actions.",
)
def list_tools(registry: ToolRegistry = Depends(get_registry)) -> ToolListResponse:
    return ToolListResponse(
        data=[
            ToolInfo(
                name=d.name,
                description=d.description,
                input_schema=d.input_schema,
                parent=d.parent,
            )
            for d in registry.list()
        ]
    )


@router.get(
    "/v1/parsers",
    response_model=ParserListResponse,
    summary="List output parsers",
)
def list_parsers(parsers: ParserSet = Depends(get_parsers)) -> ParserListResponse:
    return ParserListResponse(parsers=parsers.names())


def _to_response(name: str, result: ParseResult) -> ParseResponse:
    if isinstance(result, Value):
        value = result.value
        if hasattr(value, "isoformat"):
            value = value.isoformat()
        return ParseResponse(parser=name, kind="value", value=value, repaired=result.repaired)
    if isinstance(result, Action):
        return ParseResponse(parser=name, kind="action", action=result.name, action_input=result.raw_input)
    if isinstance(result, Final):
        return ParseResponse(parser=name, kind="final", content=result.content)
    return ParseResponse(parser=name, kind="failure", reason=result.reason, retriable=result.retriable)


@router.post(
    "/v1/parsers/{name}",
    response_model=ParseResponse,
    summary="Parse model output",
    description="Run a named output parser over raw model text. Parse failures are returned, not raised.",
)
def parse_output(
    name: str,
    body: ParseRequest,
    parsers: ParserSet = Depends(get_parsers),
) -> ParseResponse:
    if name not in parsers:
        raise HTTPException(
            status_code=404,
            detail=f"Parser '{name}' not found. Available parsers: {', '.join(parsers.names())}",
        )
    return _to_response(name, parsers.parse(name, body.text))
