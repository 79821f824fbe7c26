# jd_refiner/llm_client.py
import logging
from typing import Any, Dict, List, NamedTuple

from openai import OpenAI
from langchain_google_vertexai import ChatVertexAI
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from jd_refiner.model_props import is_openai_model, parse_model_name, supports_temperature

logger = logging.getLogger("jd_refiner.llm")


class LlmCallError(Exception):
    """The provider call could not complete."""


class LlmReply(NamedTuple):
    text: str
    tokens_used: int


class ChatLlmClient:
    """
    Chat-style client that always asks for a single JSON object back:

        reply = chat_llm.invoke([SystemMessage(...), HumanMessage(...), AIMessage(...), ...])
        reply.text, reply.tokens_used

    Under the hood:
    - OpenAI: Responses API with input=[{role, content}, ...] and text.format=json_object
    - Vertex: ChatVertexAI.invoke(messages) with response_mime_type=application/json

    No retries: one invoke() is one HTTP call.
    """

    def __init__(
        self,
        model_name: str,
        *,
        vertex_project: str,
        vertex_region: str,
        temperature: float = 0.7,
        max_output_tokens: int = 4000,
        timeout: float | None = None,
    ):
        self.provider = "openai" if is_openai_model(model_name) else "vertex"
        self.model_name = model_name
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self._timeout = timeout
        self._openai_params: Dict[str, Any] = {}

        if self.provider == "vertex":
            self._vertex = ChatVertexAI(
                project=vertex_project,
                location=vertex_region,
                model_name=model_name,
                temperature=temperature,
                max_output_tokens=max_output_tokens,
                response_mime_type="application/json",
                timeout=timeout,
            )
            self._client = None
        else:
            self._vertex = None
            self.model_name, self._openai_params = parse_model_name(self.model_name)
            client_kwargs: Dict[str, Any] = {"max_retries": 0}
            if timeout is not None:
                client_kwargs["timeout"] = timeout

            self._client = OpenAI(**client_kwargs)

    def _to_openai_messages(self, messages: List[BaseMessage]) -> List[Dict[str, str]]:
        out: List[Dict[str, str]] = []
        for m in messages:
            if isinstance(m, SystemMessage):
                role = "system"
            elif isinstance(m, HumanMessage):
                role = "user"
            elif isinstance(m, AIMessage):
                role = "assistant"
            else:
                role = "user"
            out.append({"role": role, "content": str(m.content)})
        return out

    def _openai_request_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = dict(self._openai_params)
        text_opts = dict(params.pop("text", {}) or {})
        text_opts["format"] = {"type": "json_object"}
        params["text"] = text_opts
        params["max_output_tokens"] = self.max_output_tokens
        if supports_temperature(self.model_name):
            params["temperature"] = self.temperature
        return params

    @staticmethod
    def _openai_total_tokens(resp: Any) -> int:
        usage = getattr(resp, "usage", None)
        if usage is None:
            return 0
        return int(getattr(usage, "total_tokens", 0) or 0)

    @staticmethod
    def _vertex_total_tokens(resp: Any) -> int:
        usage_md = getattr(resp, "usage_metadata", None)
        if usage_md is None:
            rm = getattr(resp, "response_metadata", None)
            if isinstance(rm, dict):
                usage_md = rm.get("usage_metadata")
        if not usage_md:
            return 0
        if isinstance(usage_md, dict):
            return int(usage_md.get("total_tokens") or usage_md.get("total_token_count") or 0)
        return int(
            getattr(usage_md, "total_tokens", 0)
            or getattr(usage_md, "total_token_count", 0)
            or 0
        )

    def _invoke_once(self, messages: List[BaseMessage]) -> LlmReply:
        if self.provider == "vertex":
            resp = self._vertex.invoke(messages)
            text = resp if isinstance(resp, str) else getattr(resp, "content", str(resp))
            return LlmReply(str(text or ""), self._vertex_total_tokens(resp))

        resp = self._client.responses.create(
            model=self.model_name,
            input=self._to_openai_messages(messages),
            **self._openai_request_params(),
        )
        text = getattr(resp, "output_text", "") or ""
        return LlmReply(text, self._openai_total_tokens(resp))

    def invoke(self, messages: List[BaseMessage]) -> LlmReply:
        logger.debug(f"[CHAT-LLM] {self.provider}:{self.model_name} <- {len(messages)} messages")
        try:
            reply = self._invoke_once(messages)
        except Exception as e:
            logger.warning(f"[CHAT-LLM] call failed: {e}")
            raise LlmCallError(str(e)) from e
        logger.debug(f"[CHAT-LLM] -> {len(reply.text)} chars, {reply.tokens_used} tokens")
        return reply
