# jd_refiner/refinement_service.py

import json
import logging
from dataclasses import dataclass
from typing import Protocol

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import ValidationError

from jd_refiner.analysis_document import AnalysisDocument, missing_sections
from jd_refiner.analysis_store import AnalysisState, AnalysisStore, StoredMessage
from jd_refiner.base_utils import BaseUtils
from jd_refiner.change_tracker import identify_changes, summarize_changes
from jd_refiner.errors import InvalidRequest, NotFound, ProviderError
from jd_refiner.llm_client import LlmCallError, LlmReply
from jd_refiner.refinement_prompts import REFINE_SYSTEM_PROMPT

logger = logging.getLogger("jd_refiner")


class ChatModel(Protocol):
    def invoke(self, messages: list[BaseMessage]) -> LlmReply: ...


@dataclass
class RefinementResult:
    messages: list[StoredMessage]
    updated_analysis: dict
    changed_sections: list[str]
    changed_section_names: list[str]
    summary: str
    timestamp: str
    tokens_used: int


class AnalysisRefiner(BaseUtils):
    """
    Runs one refinement turn: resolve the analysis, replay the conversation to
    the model, diff its answer against the current document and commit the
    new state together with the user/assistant message pair.
    """

    def __init__(self, store: AnalysisStore, chat_llm: ChatModel):
        self.store = store
        self.chat_llm = chat_llm

    # -----------------------
    # Prompt
    # -----------------------

    def build_system_prompt(self, current_analysis: dict, intake_data: dict) -> str:
        return self.unsafe_string_format(
            REFINE_SYSTEM_PROMPT,
            CURRENT_ANALYSIS=json.dumps(current_analysis, indent=2, ensure_ascii=False),
            INTAKE_DATA=json.dumps(intake_data, indent=2, ensure_ascii=False),
        ).strip()

    def build_conversation(self, state: AnalysisState, message: str) -> list[BaseMessage]:
        conversation: list[BaseMessage] = [
            SystemMessage(content=self.build_system_prompt(state.analysis, state.intake_data))
        ]
        for prior in sorted(state.messages, key=lambda m: m.sequence_number):
            if prior.role == "assistant":
                conversation.append(AIMessage(content=prior.content))
            else:
                conversation.append(HumanMessage(content=prior.content))
        conversation.append(HumanMessage(content=message))
        return conversation

    # -----------------------
    # Model output
    # -----------------------

    def parse_model_document(self, raw: str, previous_analysis: dict) -> dict:
        """
        Strict parse of the model reply. Empty, non-JSON, non-object and elided
        replies are a ProviderError; a section whose shape drifted from the
        typed document is only logged, the diff works on the raw tree.
        """
        text = self.clean_triple_backticks(raw or "").strip()
        if not text:
            raise ProviderError(details="No response from model")

        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            raise ProviderError(details=f"Model returned invalid JSON: {e}") from e

        if not isinstance(document, dict) or not document:
            raise ProviderError(details="Model response is not a JSON object")

        missing = missing_sections(previous_analysis, document)
        if missing:
            raise ProviderError(details=f"Model response is incomplete, missing: {', '.join(missing)}")

        try:
            AnalysisDocument.model_validate(document)
        except ValidationError as e:
            logger.warning(f"[REFINE] model response drifts from the analysis structure: {e.error_count()} field(s)")

        return document

    # -----------------------
    # Handler
    # -----------------------

    def refine(self, user_id: str | None, message: str | None, analysis_id: str | None = None) -> RefinementResult:
        message = message or ""
        user_id = (user_id or "").strip()
        analysis_id = (analysis_id or "").strip() or None

        if not message.strip():
            raise InvalidRequest("Message is required")
        if not user_id:
            raise InvalidRequest("userId is required")

        state = self.store.find_for_refinement(user_id, analysis_id)
        if state is None:
            raise NotFound("Analysis not found")

        logger.info(
            f"[REFINE] analysis {state.id} (v{state.version}, {len(state.messages)} prior messages)"
        )

        conversation = self.build_conversation(state, message)
        try:
            reply = self.chat_llm.invoke(conversation)
        except LlmCallError as e:
            raise ProviderError(details=str(e)) from e

        updated_analysis = self.parse_model_document(reply.text, state.analysis)

        changed_sections = identify_changes(state.analysis, updated_analysis)
        change_summary = summarize_changes(changed_sections)
        logger.debug(f"[REFINE] changed sections: {changed_sections}")

        committed = self.store.commit_refinement(
            state,
            user_message=message,
            assistant_content=reply.text,
            changed_sections=changed_sections,
            updated_analysis=updated_analysis,
        )

        return RefinementResult(
            messages=committed.messages,
            updated_analysis=committed.analysis,
            changed_sections=changed_sections,
            changed_section_names=change_summary.sections,
            summary=change_summary.summary,
            timestamp=committed.updated_at.isoformat(),
            tokens_used=int(reply.tokens_used or 0),
        )
