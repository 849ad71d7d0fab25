from agent_gateway.prompts.agent_prompts import AGENT_CATALOG, clean_input
from agent_gateway.prompts.chat_prompts import (
    CHAT_INSTRUCTIONS,
    COACH_INSTRUCTION,
    PROSPECT_INSTRUCTION,
    build_chat_instruction,
)

__all__ = [
    "AGENT_CATALOG",
    "CHAT_INSTRUCTIONS",
    "COACH_INSTRUCTION",
    "PROSPECT_INSTRUCTION",
    "build_chat_instruction",
    "clean_input",
]
