"""
Context Assembler: turns retrieved notes into context blocks for the answering model.
"""

from typing import List

from ..models.core import RetrievalResult

RELATED_HEADER = '\n\nRelated context:\n'
BLOCK_SEPARATOR = '\n\n---\n\n'


class ContextAssembler:
    """One block per retrieved note, in retrieval order."""

    def assemble(self, results: List[RetrievalResult]) -> List[str]:
        """Blocks for similarity results: note text plus a related-context section."""
        blocks = []
        for result in results:
            block = result.note.text
            if result.related_notes:
                block += RELATED_HEADER + '\n'.join(result.related_notes)
            blocks.append(block)
        return blocks

    def assemble_texts(self, texts: List[str]) -> List[str]:
        """Blocks for temporal results, which carry no score or related notes."""
        return [text for text in texts if text]

    def join(self, blocks: List[str]) -> str:
        return BLOCK_SEPARATOR.join(blocks)
