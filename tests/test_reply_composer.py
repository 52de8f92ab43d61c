"""Tests for template selection, rendering and the AI fallback."""

import pytest

from threads_autoreply.errors import TemplateRenderError
from threads_autoreply.models import MentionType, TemplateConditions
from threads_autoreply.orm import Account, Mention, Template
from threads_autoreply.services.reply_composer import ReplyComposer
from threads_autoreply.templating import TemplateVariables, extract_variables, render_template

from conftest import InMemoryTemplateRepository, StubLLM, add_template, make_analysis, make_event


class TestTemplating:
    """Test variable extraction and Jinja rendering."""

    def setup_method(self):
        self.variables = TemplateVariables(
            username="alice",
            display_name="Alice",
            content="It broke",
            mention_type="complaint",
            sentiment="-0.60",
        )

    def test_extract_variables_dedupes_in_order(self):
        content = "Hi {{username}}! {{ display_name }}, sorry. Thanks {{ username }}."

        assert extract_variables(content) == ["username", "display_name"]

    def test_extract_variables_none(self):
        assert extract_variables("Plain text") == []

    def test_render_substitutes_variables(self):
        rendered = render_template(
            "Sorry @{{ username }} ({{ mention_type }}, {{ sentiment }})", self.variables
        )

        assert rendered == "Sorry @alice (complaint, -0.60)"

    def test_render_unknown_variable_fails(self):
        with pytest.raises(TemplateRenderError):
            render_template("Hi {{ nickname }}", self.variables)

    def test_render_syntax_error_fails(self):
        with pytest.raises(TemplateRenderError):
            render_template("Hi {{ username ", self.variables)


class TestTemplateConditions:
    """Test condition matching against an analysis."""

    def test_empty_conditions_match(self):
        assert TemplateConditions().matches(make_analysis(sentiment=0.9))

    def test_sentiment_threshold_is_upper_bound(self):
        conditions = TemplateConditions(sentiment_threshold=0.0)

        assert conditions.matches(make_analysis(sentiment=-0.5))
        assert conditions.matches(make_analysis(sentiment=0.0))
        assert not conditions.matches(make_analysis(sentiment=0.5))

    def test_keywords_match_rationale_case_insensitively(self):
        conditions = TemplateConditions(keywords=["REFUND", "billing"])

        assert conditions.matches(make_analysis(raw_analysis="User wants a refund"))
        assert not conditions.matches(make_analysis(raw_analysis="User is happy"))


class TestReplyComposer:
    """Test template precedence and fallback to generation."""

    def setup_method(self):
        self.templates = InMemoryTemplateRepository()
        self.llm = StubLLM()
        self.composer = ReplyComposer(self.templates, self.llm)
        self.account = Account.new(platform_user_id="biz-1", username="acme")
        self.mention = Mention.new(
            account_id=self.account.id,
            threads_post_id="p1",
            author=make_event(username="alice").author,
            content="This app is broken, please fix it",
        )

    def _template(self, name, content, priority, conditions=None, **kwargs):
        return add_template(
            self.templates,
            Template.new(
                account_id=self.account.id,
                name=name,
                mention_type=kwargs.pop("mention_type", MentionType.COMPLAINT),
                content=content,
                priority=priority,
                conditions=conditions,
                **kwargs,
            ),
        )

    @pytest.mark.asyncio
    async def test_sentiment_threshold_selects_between_templates(self):
        a = self._template(
            "A", "Sorry {{ username }}!", 1, TemplateConditions(sentiment_threshold=0.0)
        )
        b = self._template("B", "Thanks {{ username }}!", 2)

        positive = await self.composer.select_template(
            self.account.id, make_analysis(sentiment=0.5)
        )
        negative = await self.composer.select_template(
            self.account.id, make_analysis(sentiment=-0.5)
        )

        assert positive.id == b.id
        assert negative.id == a.id

    @pytest.mark.asyncio
    async def test_inactive_and_other_types_are_ignored(self):
        self._template("inactive", "Nope", 1, is_active=False)
        self._template("question", "Nope", 1, mention_type=MentionType.QUESTION)

        assert await self.composer.select_template(self.account.id, make_analysis()) is None

    @pytest.mark.asyncio
    async def test_priority_tie_prefers_newest(self):
        older = self._template("older", "Older", 1)
        newer = self._template("newer", "Newer", 1)
        newer.created_at = older.created_at.replace(year=older.created_at.year + 1)

        selected = await self.composer.select_template(self.account.id, make_analysis())

        assert selected.id == newer.id

    @pytest.mark.asyncio
    async def test_compose_renders_template(self):
        template = self._template(
            "apology", "Sorry @{{ username }}, we're looking into it ({{ sentiment }}).", 1
        )

        composed = await self.composer.compose(self.mention, make_analysis(sentiment=-0.6))

        assert composed.text == "Sorry @alice, we're looking into it (-0.60)."
        assert composed.template_id == template.id
        assert self.llm.generate_calls == []

    @pytest.mark.asyncio
    async def test_compose_falls_back_without_template(self):
        composed = await self.composer.compose(self.mention, make_analysis())

        assert composed.text == self.llm.reply_text
        assert composed.template_id is None
        assert self.llm.generate_calls == [
            {
                "text": "This app is broken, please fix it",
                "handle": "alice",
                "template_hint": "",
            }
        ]

    @pytest.mark.asyncio
    async def test_compose_falls_back_when_render_fails(self):
        self._template("broken", "Hi {{ nickname }}", 1)

        composed = await self.composer.compose(self.mention, make_analysis())

        assert composed.text == self.llm.reply_text
        assert composed.template_id is None

    @pytest.mark.asyncio
    async def test_compose_falls_back_when_render_is_empty(self):
        self._template("blank", "   ", 1)

        composed = await self.composer.compose(self.mention, make_analysis())

        assert composed.template_id is None
        assert len(self.llm.generate_calls) == 1

    @pytest.mark.asyncio
    async def test_generation_failure_propagates(self):
        self.llm.generate_error = RuntimeError("model overloaded")

        with pytest.raises(RuntimeError):
            await self.composer.compose(self.mention, make_analysis())
