"""
Transform stage: filter trees, join rules, pipeline configuration and the
server that applies them to inbound record streams.
"""

from transformer.config import ExecuteConfig, OpKind, OpSpec, TransformConfig, load_config
from transformer.filters import FilterNode, FilterSet, NodeType
from transformer.joins import JoinDecision, JoinHandle, JoinKind, JoinSet
from transformer.pipeline import FilterOperation, JoinOperation, Operation, Pipeline
from transformer.service import LoaderFanout, StreamSession, TransformServer

__all__ = [
    "ExecuteConfig",
    "FilterNode",
    "FilterOperation",
    "FilterSet",
    "JoinDecision",
    "JoinHandle",
    "JoinKind",
    "JoinOperation",
    "JoinSet",
    "LoaderFanout",
    "NodeType",
    "OpKind",
    "OpSpec",
    "Operation",
    "Pipeline",
    "StreamSession",
    "TransformConfig",
    "TransformServer",
    "load_config",
]
