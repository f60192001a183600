"""Prompt catalog for the task pipeline.

All prompts sent to agents are stored in ``templates.yaml`` (next to this
module) and loaded by :class:`PromptCatalog`.
"""

from taskforge.prompts.catalog import PromptCatalog

__all__ = ["PromptCatalog"]
