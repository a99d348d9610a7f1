"""Assistant orchestrator: one user turn from message to response.

Flow:
  1. CLASSIFY   decide whether external apps are needed (never fails)
  2. ASSEMBLE   internal tools + tools of the requested, connected apps
  3. GENERATE   one LLM call with the assembled tools
  4. GATE       high-impact calls need an explicit, matching confirmation
  5. EXECUTE    all proposed calls concurrently, each within its budget;
                every external attempt writes one audit record
  6. RESPOND    a follow-up generation narrates the tool results

Blocked turns (confirmation required, cancelled) end at step 4: nothing
executes and nothing is audited. Generation failures end at step 3 with a
retryable message.
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from dataclasses import dataclass, replace
from typing import Any, Iterable

import structlog

from proddy.audit.recorder import AuditEventInput, AuditRecorder
from proddy.config import LLMPresets, settings
from proddy.core import errors
from proddy.core.action_policy import (
    ConfirmationDecision,
    extract_pending_confirmation,
    parse_confirmation_decision,
)
from proddy.core.confirmation_gate import GateAction, evaluate_gate
from proddy.core.errors import (
    build_actionable_error,
    build_recoverable_fallback,
    sanitize_error_message,
)
from proddy.core.llm import Generator
from proddy.core.prompt import (
    NARRATION_INSTRUCTION,
    build_system_prompt,
    clean_message_text,
    sanitize_history,
)
from proddy.core.timeout import ToolTimeoutError, ToolType, timeout_message, with_timeout
from proddy.core.types import (
    BlockedReason,
    CallOutcome,
    Generation,
    Identity,
    ProposedCall,
    ResponseMetadata,
    ToolCallResult,
    TurnResult,
)
from proddy.integrations.apps import ExternalApp, infer_app_from_tool
from proddy.routing.classifier import IntentMode, QueryIntent, QueryIntentClassifier
from proddy.tools.models import SkipReason, ToolOptions, ToolSnapshot
from proddy.tools.registry import UnifiedToolRegistry

logger = structlog.get_logger()

GENERATION_FAILED_MESSAGE = (
    "Sorry, I couldn't complete that request right now. Please try again in a moment."
)
NARRATION_FAILED_NOTE = (
    "Note: Some operations could not be completed. "
    "Please try again or check your integration settings."
)
NO_RESPONSE_MESSAGE = "I wasn't able to generate a response. Please try rephrasing your request."


def not_connected_message(app: ExternalApp) -> str:
    return f"{app.human_name} is not connected. Connect it in Integrations settings and try again."


def unavailable_app_message(app: ExternalApp, reason: SkipReason | None) -> str:
    """Not connected, or connected but its tools could not be loaded."""
    if reason in (SkipReason.PROVIDER_ERROR, SkipReason.PROVIDER_UNAVAILABLE):
        return build_recoverable_fallback(f"{app.human_name} tools could not be loaded")
    return not_connected_message(app)


@dataclass(frozen=True)
class TurnContext:
    workspace_id: str
    identity: Identity
    execution_path: str


def _ensure_call_ids(calls: Iterable[ProposedCall]) -> list[ProposedCall]:
    return [
        call if call.call_id else replace(call, call_id=f"call_{uuid.uuid4().hex[:12]}")
        for call in calls
    ]


def _previous_user_message(history: list[dict[str, str]]) -> str | None:
    """The user message that the last assistant message answered."""
    seen_assistant = False
    for msg in reversed(history):
        if msg["role"] == "assistant":
            seen_assistant = True
        elif seen_assistant:
            return msg["content"]
    return None


def _tool_result_content(result: ToolCallResult) -> str:
    return json.dumps(result.to_llm_content(), default=str)[:8000]


class AssistantOrchestrator:
    """Drives one assistant turn. Collaborators are injected."""

    def __init__(
        self,
        classifier: QueryIntentClassifier,
        registry: UnifiedToolRegistry,
        generator: Generator,
        recorder: AuditRecorder,
        *,
        execution_path: str | None = None,
        max_history_messages: int | None = None,
        require_prior_request: bool | None = None,
    ) -> None:
        self.classifier = classifier
        self.registry = registry
        self.generator = generator
        self.recorder = recorder
        self.execution_path = execution_path or settings.execution_path
        self.max_history_messages = (
            settings.assistant_max_history_messages
            if max_history_messages is None else max_history_messages
        )
        self.require_prior_request = (
            settings.confirmation_requires_prior_request
            if require_prior_request is None else require_prior_request
        )

    # ── Entry point ─────────────────────────────────────────────────

    async def handle_turn(
        self,
        workspace_id: str,
        identity: Identity,
        conversation_history: Iterable[Any] | None,
        user_message: str,
        workspace_context: str | None = None,
    ) -> TurnResult:
        t0 = time.monotonic()
        ctx = TurnContext(workspace_id, identity, self.execution_path)
        structlog.contextvars.bind_contextvars(workspace_id=workspace_id)
        try:
            result = await self._run_turn(
                ctx, conversation_history, user_message, workspace_context,
            )
        finally:
            structlog.contextvars.unbind_contextvars("workspace_id")

        logger.info(
            "assistant_turn_complete",
            workspace_id=workspace_id,
            blocked=result.blocked,
            blocked_reason=result.blocked_reason.value if result.blocked_reason else None,
            tool_calls=len(result.tool_results),
            elapsed_ms=round((time.monotonic() - t0) * 1000),
        )
        return result

    async def _run_turn(
        self,
        ctx: TurnContext,
        conversation_history: Iterable[Any] | None,
        user_message: str,
        workspace_context: str | None,
    ) -> TurnResult:
        history = sanitize_history(conversation_history, self.max_history_messages)
        message = clean_message_text(user_message)

        # 1. Classify
        intent = await self._classify(message, history)

        # 2. Assemble
        snapshot = await self._assemble(ctx, intent)
        connected = snapshot.connected_apps
        unavailable = [a for a in intent.requested_external_apps if a not in connected]
        skips = {r.app: r.skip for r in snapshot.resolutions}
        notice = "\n".join(unavailable_app_message(a, skips.get(a)) for a in unavailable)

        metadata = ResponseMetadata(
            execution_path=ctx.execution_path,
            intent=intent.to_dict(),
            tools={
                "internal_enabled": bool(snapshot.internal_names),
                "external_enabled": bool(snapshot.external_names),
                "external_used": [],
                "connected_apps": [a.value for a in connected],
            },
            unavailable_apps=[a.value for a in unavailable],
            fallback={
                "attempted": bool(unavailable),
                "reason": errors.EXTERNAL_TOOLS_UNAVAILABLE if unavailable else None,
            },
        )

        # 3. Generate
        system_prompt = build_system_prompt(
            connected_apps=connected,
            external_tools_allowed=intent.requires_external_tools,
            workspace_context=workspace_context,
        )
        messages: list[dict[str, Any]] = [*history, {"role": "user", "content": message}]
        generation = await self._generate(system_prompt, messages, snapshot, metadata)
        if generation is None:
            return TurnResult(
                response_text=GENERATION_FAILED_MESSAGE,
                metadata=metadata,
            )

        calls = _ensure_call_ids(generation.proposed_calls)
        if not calls:
            return TurnResult(
                response_text=self._compose(notice, generation.text or NO_RESPONSE_MESSAGE),
                metadata=metadata,
            )

        # 4. Gate
        gate = evaluate_gate(
            calls, message, history, require_prior_request=self.require_prior_request,
        )
        if gate.blocked:
            reason = (
                BlockedReason.CANCELLED
                if gate.action == GateAction.CANCELLED
                else BlockedReason.CONFIRMATION_REQUIRED
            )
            logger.info(
                "assistant_turn_blocked",
                reason=reason.value,
                actions=gate.high_impact_names,
                proposed=len(calls),
            )
            return TurnResult(
                response_text=gate.message or "",
                blocked=True,
                blocked_reason=reason,
                metadata=metadata,
            )

        # 5. Execute + audit
        results = await self.execute_calls(ctx, calls, snapshot)
        metadata.tools["external_used"] = list(dict.fromkeys(
            r.tool_name for r in results if r.external
        ))

        # 6. Respond
        text = await self._narrate(system_prompt, messages, generation, calls, results)
        return TurnResult(
            response_text=self._compose(notice, text),
            metadata=metadata,
            tool_results=results,
        )

    # ── Steps ───────────────────────────────────────────────────────

    async def _classify(self, message: str, history: list[dict[str, str]]) -> QueryIntent:
        intent = await self.classifier.classify(message)
        if parse_confirmation_decision(message) == ConfirmationDecision.NONE:
            return intent

        # A bare "confirm"/"cancel" names no app. It answers the previous
        # request, so it inherits that request's apps and the apps of the
        # pending actions.
        last_assistant = next(
            (m["content"] for m in reversed(history) if m["role"] == "assistant"), None,
        )
        pending = extract_pending_confirmation(last_assistant) or []
        previous = _previous_user_message(history)
        if previous is None and not pending:
            return intent

        prior = await self.classifier.classify(previous) if previous else None
        apps: list[ExternalApp] = list(intent.requested_external_apps)
        if prior is not None:
            apps.extend(prior.requested_external_apps)
        apps.extend(a for a in map(infer_app_from_tool, pending) if a)
        if not apps:
            return intent

        merged = QueryIntent.build(
            apps,
            IntentMode.HYBRID in (intent.mode, prior.mode if prior else None),
            reasoning="confirmation reply to an earlier request",
            source=intent.source,
        )
        logger.info(
            "confirmation_intent_inherited",
            apps=[a.value for a in merged.requested_external_apps],
        )
        return merged

    async def _assemble(self, ctx: TurnContext, intent: QueryIntent) -> ToolSnapshot:
        options = ToolOptions(
            include_internal=True,
            include_external=intent.requires_external_tools,
            requested_apps=intent.requested_external_apps,
        )
        try:
            return await self.registry.get_all_tools(ctx.workspace_id, ctx.identity, options)
        except Exception as e:
            logger.error("tool_assembly_failed", error=str(e)[:300])
            return ToolSnapshot()

    async def _generate(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        snapshot: ToolSnapshot,
        metadata: ResponseMetadata,
    ) -> Generation | None:
        try:
            return await with_timeout(
                self.generator.generate(
                    system_prompt, messages, snapshot.descriptors(), preset=LLMPresets.ASSISTANT,
                ),
                tool_type=ToolType.LLM_CALL,
                tool_name="assistant_generation",
            )
        except ToolTimeoutError as e:
            logger.warning("assistant_generation_timeout", budget_s=e.seconds)
            metadata.error = build_actionable_error(
                timeout_message(e),
                "Try again in a moment.",
                errors.GENERATION_TIMEOUT,
                recoverable=True,
            ).to_dict()
        except Exception as e:
            logger.error("assistant_generation_failed", error=str(e)[:300])
            metadata.error = build_actionable_error(
                e,
                "Try again in a moment.",
                errors.GENERATION_FAILED,
                recoverable=True,
            ).to_dict()
        return None

    async def execute_calls(
        self,
        ctx: TurnContext,
        calls: list[ProposedCall],
        snapshot: ToolSnapshot,
    ) -> list[ToolCallResult]:
        """Run every call concurrently. Failures stay per-call."""
        return list(await asyncio.gather(*(
            self._execute_call(ctx, call, snapshot) for call in calls
        )))

    async def _execute_call(
        self,
        ctx: TurnContext,
        call: ProposedCall,
        snapshot: ToolSnapshot,
    ) -> ToolCallResult:
        tool = snapshot.get(call.name)
        if tool is None:
            logger.warning("unknown_tool_proposed", tool=call.name)
            return ToolCallResult(
                call.call_id, call.name, CallOutcome.ERROR,
                error=f"Unknown tool: {call.name}",
            )

        external = tool.is_external
        result: ToolCallResult
        if call.parse_error:
            result = ToolCallResult(
                call.call_id, call.name, CallOutcome.ERROR,
                error=f"Invalid tool arguments ({call.parse_error})",
                external=external,
            )
        else:
            tool_type = ToolType.EXTERNAL_TOOL if external else ToolType.INTERNAL_TOOL
            try:
                value = await with_timeout(
                    tool.invoke(call.arguments), tool_type=tool_type, tool_name=call.name,
                )
            except ToolTimeoutError as e:
                result = ToolCallResult(
                    call.call_id, call.name, CallOutcome.ERROR,
                    error=timeout_message(e), external=external,
                )
            except Exception as e:
                logger.warning(
                    "tool_execution_failed",
                    tool=call.name,
                    external=external,
                    error=str(e)[:300],
                )
                result = ToolCallResult(
                    call.call_id, call.name, CallOutcome.ERROR,
                    error=sanitize_error_message(e) or "Tool execution failed",
                    external=external,
                )
            else:
                if isinstance(value, dict) and value.get("success") is False:
                    result = ToolCallResult(
                        call.call_id, call.name, CallOutcome.ERROR,
                        result=value,
                        error=sanitize_error_message(value.get("error") or "Tool reported failure"),
                        external=external,
                    )
                else:
                    result = ToolCallResult(
                        call.call_id, call.name, CallOutcome.SUCCESS,
                        result=value, external=external,
                    )

        logger.info(
            "tool_call_finished",
            tool=call.name,
            external=external,
            outcome=result.outcome.value,
        )

        if external:
            await self.recorder.record(AuditEventInput(
                workspace_id=ctx.workspace_id,
                member_id=ctx.identity.member_id,
                user_id=ctx.identity.user_id,
                tool_name=call.name,
                toolkit=tool.app.value if tool.app else None,
                arguments=call.raw_arguments if call.parse_error else call.arguments,
                outcome=result.outcome,
                error=result.error,
                tool_call_id=call.call_id,
                execution_path=ctx.execution_path,
            ))
        return result

    async def _narrate(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        generation: Generation,
        calls: list[ProposedCall],
        results: list[ToolCallResult],
    ) -> str:
        """Second generation that turns tool results into the final answer."""
        followup: list[dict[str, Any]] = [
            *messages,
            {
                "role": "assistant",
                "content": generation.text or None,
                "tool_calls": [
                    {
                        "id": call.call_id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": call.raw_arguments or json.dumps(call.arguments),
                        },
                    }
                    for call in calls
                ],
            },
            *(
                {"role": "tool", "tool_call_id": r.call_id, "content": _tool_result_content(r)}
                for r in results
            ),
            {"role": "user", "content": NARRATION_INSTRUCTION},
        ]
        try:
            narration = await with_timeout(
                self.generator.generate(system_prompt, followup, None, preset=LLMPresets.NARRATION),
                tool_type=ToolType.LLM_CALL,
                tool_name="assistant_narration",
            )
            text = (narration.text or "").strip()
            if text:
                return text
            logger.warning("assistant_narration_empty")
        except Exception as e:
            logger.warning("assistant_narration_failed", error=str(e)[:300])

        base = (generation.text or "").strip()
        return f"{base}\n\n{NARRATION_FAILED_NOTE}" if base else NARRATION_FAILED_NOTE

    @staticmethod
    def _compose(notice: str, text: str) -> str:
        text = (text or "").strip()
        if notice and text:
            return f"{notice}\n\n{text}"
        return notice or text


_orchestrator: AssistantOrchestrator | None = None


async def get_orchestrator() -> AssistantOrchestrator:
    """Process-wide orchestrator wired to the live LLM, store and providers."""
    global _orchestrator
    if _orchestrator is None:
        from proddy.core.llm import get_llm_client
        from proddy.routing.classifier import get_classifier
        from proddy.tools.registry import get_tool_registry

        llm = await get_llm_client()
        classifier = get_classifier()
        classifier.llm = llm
        registry = get_tool_registry()
        _orchestrator = AssistantOrchestrator(
            classifier=classifier,
            registry=registry,
            generator=llm,
            recorder=AuditRecorder(registry.store),
        )
    return _orchestrator
