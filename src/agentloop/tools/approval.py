"""Approval gate deciding whether a tool call may run."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from ..types import ToolUse
from .types import ApprovalCategory, ApprovalContext, Tool

__all__ = [
    "ApprovalDecision",
    "ApprovalGate",
    "ApprovalMode",
    "ApproveCallback",
    "category_needs_approval",
]

LOGGER = logging.getLogger(__name__)

ApproveCallback = Callable[[ToolUse], Union[bool, Awaitable[bool]]]


class ApprovalMode:
    """Host-wide approval modes."""

    DEFAULT = "default"
    AUTO_EDIT = "auto_edit"
    YOLO = "yolo"

    ALL: tuple[str, ...] = (DEFAULT, AUTO_EDIT, YOLO)


def category_needs_approval(category: str, approval_mode: str) -> bool:
    """Baseline policy per category.

    Reads never ask. Writes ask unless the mode auto-approves edits. Commands
    and network access ask unless the mode is ``yolo``.
    """

    if category == ApprovalCategory.READ:
        return False
    if category == ApprovalCategory.WRITE:
        return approval_mode not in (ApprovalMode.AUTO_EDIT, ApprovalMode.YOLO)
    return approval_mode != ApprovalMode.YOLO


@dataclass(slots=True, frozen=True)
class ApprovalDecision:
    """Outcome of :meth:`ApprovalGate.decide`."""

    approved: bool
    asked_host: bool


class ApprovalGate:
    """Evaluates tool predicates and, when needed, defers to the host."""

    def __init__(self, approval_mode: str = ApprovalMode.DEFAULT, *, context: Any = None) -> None:
        if approval_mode not in ApprovalMode.ALL:
            raise ValueError(f"Unknown approval mode: {approval_mode!r}")
        self._approval_mode = approval_mode
        self._context = context

    @property
    def approval_mode(self) -> str:
        return self._approval_mode

    async def needs_approval(self, tool: Tool | None, tool_use: ToolUse) -> bool:
        """Return True when the host must confirm ``tool_use``.

        Unknown tools always go to the host. A tool without a predicate is
        approved outright.
        """

        if tool is None:
            return True
        predicate = tool.approval.needs_approval
        if predicate is None:
            return False
        ctx = ApprovalContext(
            tool_name=tool_use.name,
            params=tool_use.params,
            approval_mode=self._approval_mode,
            context=self._context,
        )
        try:
            verdict = predicate(ctx)
            if inspect.isawaitable(verdict):
                verdict = await verdict
        except Exception:
            LOGGER.warning("Approval predicate for %s failed; asking the host", tool_use.name, exc_info=True)
            return True
        return bool(verdict)

    async def decide(
        self,
        tool: Tool | None,
        tool_use: ToolUse,
        ask: ApproveCallback | None = None,
    ) -> ApprovalDecision:
        """Resolve approval for one call; without a host callback everything is approved."""
        if not await self.needs_approval(tool, tool_use):
            return ApprovalDecision(approved=True, asked_host=False)
        if ask is None:
            return ApprovalDecision(approved=True, asked_host=False)
        verdict = ask(tool_use)
        if inspect.isawaitable(verdict):
            verdict = await verdict
        LOGGER.debug("Host %s tool %s (call_id=%s)", "approved" if verdict else "denied", tool_use.name, tool_use.call_id)
        return ApprovalDecision(approved=bool(verdict), asked_host=True)
