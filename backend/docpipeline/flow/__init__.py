from docpipeline.flow.orchestrator import DocumentFlow
from docpipeline.flow.starter import (
    BedrockFlowStarter,
    CeleryFlowStarter,
    FlowStarter,
    get_flow_starter,
)
from docpipeline.flow.state import FlowStateMachine

__all__ = [
    "BedrockFlowStarter",
    "CeleryFlowStarter",
    "DocumentFlow",
    "FlowStarter",
    "FlowStateMachine",
    "get_flow_starter",
]
