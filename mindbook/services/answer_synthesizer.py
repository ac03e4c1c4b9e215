"""
Answer Synthesizer: answers a question from the assembled memory context.
"""

from typing import List, Optional

from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.config import config
from ..utils.logging_config import get_logger
from .context_assembler import ContextAssembler

logger = get_logger(__name__)

NO_CONTEXT = '(No stored memories matched this question.)'

ANSWER_INSTRUCTION = """You are a personal AI assistant with access to the user's stored memories and notes.
Your task is to answer the user's question based on the context provided from their stored notes.
The context includes both directly relevant notes and related memories that might provide additional context.

Rules:
- Only use information from the provided context to answer. Never invent memories.
- If the context is empty or nothing in it is relevant, tell the user that you don't have any stored memories about that topic.
- Respond with something like 'yes, I remember that' or 'no, I don't remember you telling me that...' where it fits.
- Be friendly and make connections between related pieces of information when relevant."""  # noqa: E501

ANSWER_PROMPT = """Context from your memory (including related memories):
{context}

Question: {question}

Please answer based on the stored memories above, making connections between related information when relevant."""


class AnswerSynthesisError(Exception):
    """Custom exception for answer synthesis errors."""
    pass


class AnswerSynthesizer:
    """Ask the text model for an answer grounded in context blocks."""

    def __init__(self,
                 llm: Optional[BedrockLLM] = None,
                 assembler: Optional[ContextAssembler] = None,
                 temperature: Optional[float] = None):
        self.llm = llm or BedrockLLM(config.bedrock_llm)
        self.assembler = assembler or ContextAssembler()
        self.temperature = config.prompt.answer_temperature if temperature is None else temperature

    def answer(self, question: str, context_blocks: List[str]) -> str:
        """Answer question from context_blocks; an empty context is stated explicitly to the model.

        Raises:
            AnswerSynthesisError: If the model call fails
        """
        context = self.assembler.join(context_blocks) if context_blocks else NO_CONTEXT
        prompt = ANSWER_PROMPT.format(context=context, question=question)

        try:
            answer = self.llm.complete(system_instruction=ANSWER_INSTRUCTION,
                                       user_text=prompt,
                                       temperature=self.temperature)
        except BedrockLLMError as e:
            logger.error(f'LLM error during answer synthesis: {e}')
            raise AnswerSynthesisError(f'Answer synthesis failed: {e}')

        if not answer or not answer.strip():
            raise AnswerSynthesisError('Answer synthesis returned an empty answer')

        logger.debug(f'Synthesized answer from {len(context_blocks)} context blocks')
        return answer.strip()
