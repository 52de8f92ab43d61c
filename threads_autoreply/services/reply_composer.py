"""Chooses a reply template or falls back to an AI-written reply."""

import logging
from dataclasses import dataclass
from typing import Optional

from ..errors import TemplateRenderError
from ..llm_handler import LLMHandler
from ..models import MentionAnalysis
from ..orm import Mention, Template
from ..templating import TemplateVariables
from .interfaces import TemplateRepository

logger = logging.getLogger(__name__)


@dataclass
class ComposedReply:
    """Reply text and the template it came from, if any."""

    text: str
    template_id: Optional[str] = None


class ReplyComposer:
    """Builds the text of a reply for an analysed mention."""

    def __init__(self, template_repo: TemplateRepository, llm: LLMHandler):
        self.template_repo = template_repo
        self.llm = llm

    async def select_template(
        self, account_id: str, analysis: MentionAnalysis
    ) -> Optional[Template]:
        """Return the highest-precedence active template whose conditions match."""
        templates = await self.template_repo.list_active_by_type(account_id, analysis.mention_type)
        for template in templates:
            if template.matches_conditions(analysis):
                return template
        return None

    @staticmethod
    def template_variables(mention: Mention, analysis: MentionAnalysis) -> TemplateVariables:
        return TemplateVariables(
            username=mention.author_username,
            display_name=mention.author_display_name or mention.author_username,
            content=mention.content,
            mention_type=analysis.mention_type.value,
            sentiment=f"{analysis.sentiment:.2f}",
        )

    async def compose(self, mention: Mention, analysis: MentionAnalysis) -> ComposedReply:
        """Render the selected template, or ask the LLM for a reply.

        A template that fails to render is treated like no match.
        """
        template = await self.select_template(mention.account_id, analysis)

        if template is not None:
            try:
                text = template.render(self.template_variables(mention, analysis))
            except TemplateRenderError as e:
                logger.warning(
                    "Failed to render template %s, using AI generation: %s", template.id, e
                )
            else:
                if text:
                    logger.debug("Using template %s for mention %s", template.id, mention.id)
                    return ComposedReply(text=text, template_id=template.id)
                logger.warning("Template %s rendered empty, using AI generation", template.id)

        text = await self.llm.generate_reply(
            mention.content, mention.author_username, analysis, template_hint=""
        )
        return ComposedReply(text=text)
