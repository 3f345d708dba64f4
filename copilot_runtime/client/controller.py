"""Client-side execution of the tool calls handed back by the runtime.

Each call becomes a ToolExecution that moves through

    pending -> (approval) -> executing -> completed | error
    pending -> (denied) -> rejected

and always ends with exactly one tool message, so the resubmitted history
never contains an unanswered call. Approval prompts are surfaced through
``on_approval_required`` and resolved with ``approve_tool_execution`` or
``reject_tool_execution``; stored consent can skip the prompt entirely.
"""

import asyncio
import inspect
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any, TypeAlias

import structlog

from copilot_runtime.client.consent import ConsentLevel, ConsentStore, InMemoryConsentStore
from copilot_runtime.core.exceptions import ApprovalNotFoundError
from copilot_runtime.core.messages import Message, ToolCall
from copilot_runtime.core.tools import (
    ApprovalStatus,
    ToolContext,
    ToolDefinition,
    ToolExecutionStatus,
    ToolRegistry,
    build_tool_result_for_ai,
    dump_result,
    failure_result,
    rejection_result,
    run_tool_handler,
)

logger = structlog.get_logger(__name__)

DEFAULT_MAX_EXECUTION_HISTORY = 100
REJECTED_BY_USER = "Tool execution was rejected by user"


@dataclass(frozen=True)
class ToolExecution:
    """Snapshot of one client tool invocation.

    Attributes:
        id: Id of the originating tool call
        name: Tool name
        args: Parsed call arguments
        status: Execution lifecycle state
        approval_status: Human approval state
        approval_message: Prompt shown while approval is pending
        approval_data: Extra data attached by the approver
        result: Handler result once completed
        error: Failure or rejection reason
        started_at: When the call was received
        completed_at: When the execution reached a terminal state
    """

    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    status: ToolExecutionStatus = ToolExecutionStatus.PENDING
    approval_status: ApprovalStatus = ApprovalStatus.NOT_REQUIRED
    approval_message: str | None = None
    approval_data: dict[str, Any] | None = None
    result: Any = None
    error: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    completed_at: datetime | None = None

    @property
    def awaiting_result(self) -> bool:
        """Completed without a visible result yet; render as loading, not as a failure."""
        return self.status == ToolExecutionStatus.COMPLETED and self.result is None


@dataclass(frozen=True)
class _Decision:
    approved: bool
    extra_data: dict[str, Any] | None = None
    reason: str | None = None


ExecutionsCallback: TypeAlias = Callable[[list[ToolExecution]], Any]
ApprovalCallback: TypeAlias = Callable[[ToolExecution], Any]


async def _notify(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.warning("controller_callback_failed", error=str(e), exc_info=True)


class ToolExecutionController:
    """Runs client tools with approval, consent and bounded execution history."""

    def __init__(
        self,
        tools: Iterable[ToolDefinition] = (),
        consent_store: ConsentStore | None = None,
        auto_approve: bool = False,
        max_execution_history: int = DEFAULT_MAX_EXECUTION_HISTORY,
        on_approval_required: ApprovalCallback | None = None,
        on_executions_change: ExecutionsCallback | None = None,
        strict_approvals: bool = False,
    ):
        self._tools = ToolRegistry(tools)
        self._consent = consent_store if consent_store is not None else InMemoryConsentStore()
        self._session_decisions: dict[str, bool] = {}
        self._auto_approve = auto_approve
        self._max_execution_history = max_execution_history
        self._on_approval_required = on_approval_required
        self._on_executions_change = on_executions_change
        self._strict_approvals = strict_approvals
        self._executions: dict[str, ToolExecution] = {}
        self._pending: dict[str, asyncio.Future[_Decision]] = {}

    @property
    def tools(self) -> list[ToolDefinition]:
        return list(self._tools)

    @property
    def executions(self) -> list[ToolExecution]:
        return list(self._executions.values())

    @property
    def pending_approvals(self) -> list[ToolExecution]:
        return [
            execution
            for execution in self._executions.values()
            if execution.approval_status == ApprovalStatus.PENDING
        ]

    def register_tool(self, tool: ToolDefinition) -> None:
        self._tools.register(tool)

    def unregister_tool(self, name: str) -> None:
        self._tools.unregister(name)

    def get_execution(self, execution_id: str) -> ToolExecution | None:
        return self._executions.get(execution_id)

    async def execute_tool_calls(
        self, calls: Sequence[ToolCall], thread_id: str | None = None
    ) -> list[Message]:
        """Run a batch concurrently and return one tool message per call, in call order."""
        if not calls:
            return []
        seen: set[str] = set()
        outcomes: list[Message | asyncio.Task[Message]] = []
        async with asyncio.TaskGroup() as group:
            for call in calls:
                # a repeated id would share the approval slot of the first call
                if call.id in seen or call.id in self._pending:
                    logger.warning("duplicate_tool_call_id", tool=call.name, tool_call_id=call.id)
                    error = f"Duplicate tool call id '{call.id}'"
                    outcomes.append(
                        Message.tool(call.id, dump_result(failure_result(error)), name=call.name)
                    )
                    continue
                seen.add(call.id)
                outcomes.append(group.create_task(self._execute(call, thread_id)))
        return [
            outcome.result() if isinstance(outcome, asyncio.Task) else outcome
            for outcome in outcomes
        ]

    def approve_tool_execution(
        self,
        execution_id: str,
        extra_data: dict[str, Any] | None = None,
        permission_level: ConsentLevel | None = None,
    ) -> bool:
        """Approve a pending execution; ``permission_level`` also records consent.

        Returns:
            False when nothing was awaiting approval under this id
        """
        return self._resolve(
            execution_id, _Decision(approved=True, extra_data=extra_data), permission_level
        )

    def reject_tool_execution(
        self,
        execution_id: str,
        reason: str | None = None,
        permission_level: ConsentLevel | None = None,
    ) -> bool:
        return self._resolve(
            execution_id, _Decision(approved=False, reason=reason), permission_level
        )

    def cancel(self, reason: str = "Cancelled") -> None:
        """Reject every execution still waiting for approval."""
        for execution_id in list(self._pending):
            self._resolve(execution_id, _Decision(approved=False, reason=reason), None)

    def reset(self) -> None:
        """Forget executions and session decisions; pending approvals are cancelled."""
        self.cancel()
        self._executions.clear()
        self._session_decisions.clear()

    # Execution

    async def _execute(self, call: ToolCall, thread_id: str | None) -> Message:
        execution = ToolExecution(id=call.id, name=call.name, args=call.args)
        await self._store(execution, added=True)

        tool = self._tools.get(call.name)
        if tool is None or tool.handler is None:
            error = f"Tool '{call.name}' not found"
            await self._finish(execution, ToolExecutionStatus.ERROR, error=error)
            return Message.tool(call.id, dump_result(failure_result(error)), name=call.name)

        try:
            decision = await self._approval(tool, execution)
        except asyncio.CancelledError:
            current = self._executions.get(call.id, execution)
            if current.approval_status == ApprovalStatus.PENDING:
                current = replace(current, approval_status=ApprovalStatus.DENIED)
            await self._finish(current, ToolExecutionStatus.ERROR, error="Tool execution cancelled")
            raise
        except Exception as e:
            # needs_approval / approval_message callables and consent stores
            error = str(e) or type(e).__name__
            logger.warning(
                "client_tool_approval_failed", tool=call.name, error=error, exc_info=True
            )
            await self._finish(
                self._executions.get(call.id, execution), ToolExecutionStatus.ERROR, error=error
            )
            return Message.tool(call.id, dump_result(failure_result(error)), name=call.name)
        if not decision.approved:
            reason = decision.reason or REJECTED_BY_USER
            execution = replace(
                self._executions.get(call.id, execution), approval_status=ApprovalStatus.DENIED
            )
            await self._finish(execution, ToolExecutionStatus.REJECTED, error=reason)
            return Message.tool(call.id, dump_result(rejection_result(reason)), name=call.name)

        execution = self._executions.get(call.id, execution)
        await self._store(
            replace(
                execution, status=ToolExecutionStatus.EXECUTING, approval_data=decision.extra_data
            )
        )
        context = ToolContext(
            tool_call_id=call.id, thread_id=thread_id, approval_data=decision.extra_data
        )
        try:
            result = await run_tool_handler(tool, call.args, context)
            content = build_tool_result_for_ai(tool, result, call.args)
        except asyncio.CancelledError:
            await self._finish(
                self._executions.get(call.id, execution),
                ToolExecutionStatus.ERROR,
                error="Tool execution cancelled",
            )
            raise
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.warning("client_tool_failed", tool=call.name, error=error, exc_info=True)
            await self._finish(
                self._executions.get(call.id, execution), ToolExecutionStatus.ERROR, error=error
            )
            return Message.tool(call.id, dump_result(failure_result(error)), name=call.name)

        await self._finish(
            self._executions.get(call.id, execution), ToolExecutionStatus.COMPLETED, result=result
        )
        return Message.tool(call.id, content, name=call.name)

    async def _approval(self, tool: ToolDefinition, execution: ToolExecution) -> _Decision:
        """Decide whether a call may run, prompting the human only when nothing else decides."""
        stored = self._consent.get(tool.name)
        if stored == ConsentLevel.DENY_ALWAYS:
            return _Decision(approved=False, reason=REJECTED_BY_USER)
        if self._auto_approve or not tool.requires_approval(execution.args):
            return _Decision(approved=True)
        if stored == ConsentLevel.ALLOW_ALWAYS:
            await self._store(replace(execution, approval_status=ApprovalStatus.APPROVED))
            return _Decision(approved=True)
        if tool.name in self._session_decisions:
            approved = self._session_decisions[tool.name]
            status = ApprovalStatus.APPROVED if approved else ApprovalStatus.DENIED
            await self._store(replace(execution, approval_status=status))
            return _Decision(approved=approved)

        approval_message = tool.get_approval_message(execution.args)
        future: asyncio.Future[_Decision] = asyncio.get_running_loop().create_future()
        self._pending[execution.id] = future
        execution = replace(
            execution, approval_status=ApprovalStatus.PENDING, approval_message=approval_message
        )
        try:
            await self._store(execution)
            await _notify(self._on_approval_required, execution)
            return await future
        finally:
            self._pending.pop(execution.id, None)

    def _resolve(
        self, execution_id: str, decision: _Decision, permission_level: ConsentLevel | None
    ) -> bool:
        future = self._pending.pop(execution_id, None)
        if future is None or future.done():
            if self._strict_approvals:
                raise ApprovalNotFoundError(execution_id)
            logger.warning("approval_not_found", execution_id=execution_id)
            return False

        execution = self._executions.get(execution_id)
        if execution is not None:
            if permission_level is not None:
                self._remember(execution.name, decision.approved, permission_level)
            status = ApprovalStatus.APPROVED if decision.approved else ApprovalStatus.DENIED
            self._executions[execution_id] = replace(
                execution, approval_status=status, approval_data=decision.extra_data
            )
        future.set_result(decision)
        return True

    def _remember(self, tool_name: str, approved: bool, level: ConsentLevel) -> None:
        match level:
            case ConsentLevel.ALLOW_ALWAYS | ConsentLevel.DENY_ALWAYS:
                durable = ConsentLevel.ALLOW_ALWAYS if approved else ConsentLevel.DENY_ALWAYS
                self._consent.set(tool_name, durable)
            case ConsentLevel.SESSION:
                self._session_decisions[tool_name] = approved
            case ConsentLevel.ASK:
                self._session_decisions.pop(tool_name, None)
                self._consent.set(tool_name, ConsentLevel.ASK)

    # State

    async def _finish(
        self,
        execution: ToolExecution,
        status: ToolExecutionStatus,
        result: Any = None,
        error: str | None = None,
    ) -> None:
        await self._store(
            replace(
                execution,
                status=status,
                result=result,
                error=error,
                completed_at=datetime.now(tz=UTC),
            )
        )

    async def _store(self, execution: ToolExecution, added: bool = False) -> None:
        if added:
            self._executions.pop(execution.id, None)
        self._executions[execution.id] = execution
        while len(self._executions) > self._max_execution_history:
            oldest = next(iter(self._executions))
            if oldest in self._pending:
                break
            del self._executions[oldest]
        await _notify(self._on_executions_change, self.executions)
