"""
Persisted baseline format.

These Pydantic models are the ON-DISK CONTRACT for baselines. Every file
the store reads is validated against them, so a hand-edited or corrupted
baseline fails loudly with the offending field instead of producing a
bogus comparison.

Serialization is canonical: event kinds in EventKind declaration order,
nodes in arena order, edges sorted by callee index, metadata sorted by
key. The same CostModel always produces byte-identical output.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

from instrument_bench.core.errors import ParseError, UnsupportedFormatVersion
from instrument_bench.model import U64_MAX, CallGraph, CostModel, Costs, EventKind, NodeKey, ToolId

SCHEMA_VERSION = 1


def _check_costs(value: dict[str, int]) -> dict[str, int]:
    for name, count in value.items():
        if EventKind.parse(name) is None:
            raise ValueError(f"unknown event kind '{name}'")
        if not 0 <= count <= U64_MAX:
            raise ValueError(f"count {count} for '{name}' outside the unsigned 64-bit range")
    return value


class EdgeDocument(BaseModel):
    """One call edge, referring to the callee by node index."""

    callee: int = Field(ge=0)
    calls: int = Field(ge=0)
    inclusive: dict[str, int] = Field(
        description="Inclusive cost of the edge keyed by raw event name"
    )
    cycle: bool = False

    @field_validator("inclusive")
    @classmethod
    def check_inclusive(cls, value: dict[str, int]) -> dict[str, int]:
        return _check_costs(value)


class NodeDocument(BaseModel):
    """One call graph node in arena order."""

    binary: str
    function: str | None = None
    source: str | None = None
    line: int | None = None
    self_cost: dict[str, int] = Field(default_factory=dict)
    edges: list[EdgeDocument] = Field(default_factory=list)

    @field_validator("self_cost")
    @classmethod
    def check_self_cost(cls, value: dict[str, int]) -> dict[str, int]:
        return _check_costs(value)


class ModelDocument(BaseModel):
    """A serialized CostModel."""

    tool: ToolId
    totals: dict[str, int] = Field(
        description="Totals keyed by raw event name, in canonical kind order"
    )
    metadata: dict[str, str] = Field(default_factory=dict)
    nodes: list[NodeDocument] | None = Field(
        default=None,
        description="Call graph nodes; absent for aggregate-only tools",
    )

    @field_validator("totals")
    @classmethod
    def check_totals(cls, value: dict[str, int]) -> dict[str, int]:
        return _check_costs(value)

    @field_validator("nodes")
    @classmethod
    def check_edges(cls, nodes: list[NodeDocument] | None) -> list[NodeDocument] | None:
        if nodes is None:
            return nodes
        for node in nodes:
            for edge in node.edges:
                if edge.callee >= len(nodes):
                    raise ValueError(f"edge to node {edge.callee} outside {len(nodes)} nodes")
        return nodes


class ProvenanceDocument(BaseModel):
    command: str = ""
    timestamp: datetime
    tool: ToolId


class BaselineDocument(BaseModel):
    """Top-level document stored at `<root>/<group>/<case>/<slot>.json`."""

    schema_version: Literal[1] = SCHEMA_VERSION
    benchmark: str = Field(description="Benchmark key, `group::case[params]`")
    slot: str
    provenance: ProvenanceDocument
    model: ModelDocument


# ---------------------------------------------------------------------------
# COST MODEL <-> DOCUMENT
# ---------------------------------------------------------------------------


def model_to_document(model: CostModel) -> ModelDocument:
    nodes = None
    if model.graph is not None:
        nodes = [
            NodeDocument(
                binary=node.key.binary,
                function=node.key.function,
                source=node.source,
                line=node.line,
                self_cost=node.self_cost.to_dict(),
                edges=[
                    EdgeDocument(
                        callee=callee,
                        calls=edge.calls,
                        inclusive=edge.inclusive.to_dict(),
                        cycle=edge.is_cycle,
                    )
                    for callee, edge in sorted(node.edges.items())
                ],
            )
            for node in model.graph
        ]
    return ModelDocument(
        tool=model.tool,
        totals=model.totals.to_dict(),
        metadata=dict(sorted(model.metadata.items())),
        nodes=nodes,
    )


def _costs(values: dict[str, int]) -> Costs:
    return Costs((EventKind(name), count) for name, count in values.items())


def document_to_model(document: ModelDocument) -> CostModel:
    graph = None
    if document.nodes is not None:
        graph = CallGraph()
        for node in document.nodes:
            index = graph.intern(NodeKey(node.binary, node.function), node.source, node.line)
            graph.add_self_cost(index, _costs(node.self_cost))
        for caller, node in enumerate(document.nodes):
            for edge in node.edges:
                graph.add_edge(
                    caller,
                    edge.callee,
                    _costs(edge.inclusive),
                    calls=edge.calls,
                    is_cycle=edge.cycle,
                )
    return CostModel(
        tool=document.tool,
        totals=_costs(document.totals),
        graph=graph,
        metadata=dict(document.metadata),
    )


def serialize_model(model: CostModel) -> bytes:
    """Canonical JSON bytes for a CostModel."""
    return model_to_document(model).model_dump_json(indent=2).encode("utf-8") + b"\n"


def serialize_document(document: BaselineDocument) -> bytes:
    return document.model_dump_json(indent=2).encode("utf-8") + b"\n"


def deserialize_document(data: bytes, source: str | None = None) -> BaselineDocument:
    """
    Validate a stored baseline.

    Raises:
        UnsupportedFormatVersion: schema_version is not 1
        ParseError: invalid JSON or a schema violation
    """
    try:
        raw = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseError(f"baseline is not valid JSON: {e}", source=source) from None
    if not isinstance(raw, dict):
        raise ParseError("baseline is not a JSON object", source=source)

    version = raw.get("schema_version")
    if version != SCHEMA_VERSION:
        raise UnsupportedFormatVersion(
            f"baseline schema_version {version!r} is not supported (expected {SCHEMA_VERSION})",
            source=source,
        )
    try:
        return BaselineDocument.model_validate(raw)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ParseError(
            f"baseline schema violation at '{location}': {first['msg']}",
            source=source,
        ) from None
