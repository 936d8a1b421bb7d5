"""Attachment planning for none/static/dynamic agent modes."""

from compat_matrix.attachment.controller import (
    MINIMUM_BYTECODE_LEVEL,
    MODULE_PATH_MINIMUM_LEVEL,
    AgentMatch,
    AgentMatchState,
    AttachmentController,
    match_agent,
)

__all__ = [
    "AgentMatch",
    "AgentMatchState",
    "AttachmentController",
    "MINIMUM_BYTECODE_LEVEL",
    "MODULE_PATH_MINIMUM_LEVEL",
    "match_agent",
]
