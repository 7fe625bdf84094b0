"""Human approval before generated code runs.

Each code attempt gets its own :class:`ApprovalGate`.  The gate moves
through::

    GENERATED -> APPROVAL_REQUESTED -> APPROVED -> EXECUTED
                                    -> DENIED
                                    -> ABORTED

A denied or aborted gate ends only its own attempt; the next attempt
starts from a fresh gate.
"""
from __future__ import annotations

import asyncio
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING

from regexsmith_core.errors import ApprovalError, OperationAbortedError
from regexsmith_core.logging import get_logger

if TYPE_CHECKING:
    from regexsmith_core.cancellation import CancellationToken
    from regexsmith_core.types import ApprovalRequest

logger = get_logger("agent.approval")

APPROVAL_YES = "Yes, confirmed."
APPROVAL_NO = "No, denied."


class ApprovalState(Enum):
    GENERATED = "generated"
    APPROVAL_REQUESTED = "approval_requested"
    APPROVED = "approved"
    DENIED = "denied"
    ABORTED = "aborted"
    EXECUTED = "executed"


OnApprovalRequest = Callable[["ApprovalGate", "ApprovalRequest"], None]


def approval_summary(request: ApprovalRequest) -> str:
    """Text shown to the operator: what will run, and where."""
    n = len(request.test_cases)
    lines = [
        f"Generated {request.proposed_runtime} code for: {request.description}",
        f"It will be run against {n} test case{'s' if n != 1 else ''} "
        "in a sandbox with no network access.",
    ]
    if request.code:
        lines.append("")
        lines.append(request.code)
    return "\n".join(lines)


def parse_approval(answer: str | bool) -> bool:
    """Accept a boolean or one of the shared approval strings."""
    if isinstance(answer, bool):
        return answer
    if answer == APPROVAL_YES:
        return True
    if answer == APPROVAL_NO:
        return False
    raise ApprovalError(f"Unrecognised approval answer: {answer!r}")


class ApprovalGate:
    """One-shot approval for a single code attempt.

    ``request()`` publishes the request through *on_request* and waits
    for ``respond()``.  The callback may respond synchronously (a CLI
    prompt) or later from another task (a chat transport).
    """

    def __init__(self, on_request: OnApprovalRequest | None = None) -> None:
        self._on_request = on_request
        self._state = ApprovalState.GENERATED
        self._request: ApprovalRequest | None = None
        self._decision: asyncio.Future[bool] | None = None

    @property
    def state(self) -> ApprovalState:
        return self._state

    @property
    def pending(self) -> ApprovalRequest | None:
        if self._state is ApprovalState.APPROVAL_REQUESTED:
            return self._request
        return None

    @property
    def summary(self) -> str:
        if self._request is None:
            return ""
        return approval_summary(self._request)

    async def request(
        self,
        approval_request: ApprovalRequest,
        cancel_token: CancellationToken | None = None,
    ) -> bool:
        """Ask for approval and wait for the answer.

        Returns ``True`` when approved and ``False`` when denied.  Raises
        :class:`OperationAbortedError` when the gate is aborted (directly
        or through *cancel_token*) before an answer arrives.
        """
        if self._state is not ApprovalState.GENERATED:
            raise ApprovalError(
                f"Approval already requested (state: {self._state.value})"
            )
        self._request = approval_request
        self._decision = asyncio.get_running_loop().create_future()
        self._state = ApprovalState.APPROVAL_REQUESTED
        logger.info("Approval requested for %s", approval_request.tool_call_id)

        if cancel_token is not None:
            cancel_token.on_cancel(self.abort)
        # A token that already fired has aborted the gate; nobody is asked.
        if (
            self._on_request is not None
            and self._state is ApprovalState.APPROVAL_REQUESTED
        ):
            self._on_request(self, approval_request)

        return await self._decision

    def respond(self, tool_call_id: str, approved: str | bool) -> bool:
        """Deliver the operator's answer.

        Returns ``True`` when the answer resolved the request.  An answer
        for a request that is already resolved is ignored.
        """
        if self._request is None:
            raise ApprovalError("No approval has been requested")
        if tool_call_id != self._request.tool_call_id:
            raise ApprovalError(
                f"Unknown tool call {tool_call_id!r} "
                f"(expected {self._request.tool_call_id!r})"
            )
        if self._state is not ApprovalState.APPROVAL_REQUESTED:
            logger.debug(
                "Ignoring response for %s in state %s",
                tool_call_id, self._state.value,
            )
            return False

        decision = parse_approval(approved)
        self._state = ApprovalState.APPROVED if decision else ApprovalState.DENIED
        logger.info("Approval %s for %s", self._state.value, tool_call_id)
        if self._decision is not None and not self._decision.done():
            self._decision.set_result(decision)
        return True

    def abort(self) -> None:
        """Abort a pending request.  Does nothing once it is resolved."""
        if self._state is not ApprovalState.APPROVAL_REQUESTED:
            return
        self._state = ApprovalState.ABORTED
        logger.info("Approval aborted")
        if self._decision is not None and not self._decision.done():
            self._decision.set_exception(OperationAbortedError())

    def mark_executed(self) -> None:
        if self._state is not ApprovalState.APPROVED:
            raise ApprovalError(
                f"Cannot execute code in state {self._state.value}"
            )
        self._state = ApprovalState.EXECUTED
