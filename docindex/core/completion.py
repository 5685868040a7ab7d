import asyncio
from typing import Any, Dict, List, Sequence

from loguru import logger
from openai import OpenAI

from docindex.core.errors import ChatCompletionError
from docindex.core.metrics import CHAT_ERRORS, CHAT_REQUESTS, observe
from docindex.core.retrieval import (
	RetrievalService,
	best_per_file,
	format_documents_as_context,
)
from docindex.core.utils import short_err
from docindex.rag.schemas import ChatResponse, ChatTurn, RetrievedDocument
from docindex.settings import Settings

# unscoped questions only search community documents, never Corporate ones
GENERAL_FOLDER_TYPE = "Community"

SYSTEM_PROMPT = """You are an assistant for a property management system.

Grounding:
- When a RELEVANT DOCUMENTS block is present, use it to answer and cite the
  source file (and page when given) at the end of the sentence it supports.
- Documents are supporting sources. If they are insufficient or conflicting,
  say so explicitly instead of guessing.
- When several documents cover the same topic, prefer the one that matches the
  requested time period, otherwise the most recently indexed one.

Answer style:
- Be concise, factual and structured (short paragraphs or bullet points).
- Preserve units, values and wording from the source when precision matters.
- Respond in the same language as the user's question.
"""


class ChatService:
	"""Chat completion over the OpenAI Responses API, optionally grounded by retrieval."""

	def __init__(
		self,
		client: Any,
		retrieval: RetrievalService | None,
		model: str = "gpt-4o-mini",
		context_k: int = 5,
	):
		self.client = client
		self.retrieval = retrieval
		self.model = model
		self.context_k = context_k

	@classmethod
	def from_settings(
		cls, settings: Settings, retrieval: RetrievalService | None
	) -> "ChatService":
		client = OpenAI(
			api_key=settings.OPENAI_API_KEY,
			timeout=settings.CHAT_TIMEOUT,
			max_retries=settings.CHAT_MAX_RETRIES,
		)
		return cls(
			client, retrieval, model=settings.CHAT_MODEL, context_k=settings.RAG_TOP_K
		)

	async def gather_context(
		self,
		message: str,
		community_id: str | None = None,
		folder_type: str | None = None,
	) -> List[RetrievedDocument]:
		if self.retrieval is None:
			return []
		if not community_id and not folder_type:
			folder_type = GENERAL_FOLDER_TYPE
		# over-fetch so one chunk per file still fills the context
		docs = await self.retrieval.retrieve(
			message,
			community_id=community_id,
			folder_type=folder_type,
			k=self.context_k * 2,
		)
		return best_per_file(docs, self.context_k)

	async def chat(
		self,
		message: str,
		history: Sequence[ChatTurn] = (),
		*,
		community_id: str | None = None,
		folder_type: str | None = None,
		use_rag: bool = True,
	) -> ChatResponse:
		CHAT_REQUESTS.inc()

		docs: List[RetrievedDocument] = []
		if use_rag:
			docs = await self.gather_context(message, community_id, folder_type)
			logger.debug(f"RAG context: {len(docs)} documents")

		input_list: List[Dict[str, str]] = [
			{"role": t.role, "content": t.content} for t in history
		]
		input_list.append(
			{"role": "user", "content": build_user_message(message, docs, community_id)}
		)

		loop = asyncio.get_running_loop()

		def _create():
			with observe("generate"):
				return self.client.responses.create(
					model=self.model,
					instructions=SYSTEM_PROMPT,
					input=input_list,
				)

		try:
			resp = await loop.run_in_executor(None, _create)
		except Exception as e:
			CHAT_ERRORS.inc()
			msg = short_err("generate", e)
			logger.error(f"Chat completion failed: {msg}")
			raise ChatCompletionError(msg) from e

		return ChatResponse(
			response=(resp.output_text or "").strip(),
			sources=[d.source for d in docs],
			used_rag=bool(docs),
		)


def build_user_message(
	message: str, docs: Sequence[RetrievedDocument], community_id: str | None
) -> str:
	parts: List[str] = []
	if community_id:
		parts.append(f"Selected community: {community_id}")
	context = format_documents_as_context(docs)
	if context:
		parts.append(context)
	parts.append(f"User question: {message}")
	return "\n\n".join(parts)
