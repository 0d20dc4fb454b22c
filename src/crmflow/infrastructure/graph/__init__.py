"""NetworkX-backed workflow graphs."""

from crmflow.infrastructure.graph.engine import FlowGraph, GraphCycleError, GraphEngine

__all__ = ["FlowGraph", "GraphCycleError", "GraphEngine"]
