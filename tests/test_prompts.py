"""Tests for the prompt templater."""

import pytest

from agentbridge.errors import PromptNotFoundError, PromptRenderError
from agentbridge.llm.context import Context
from agentbridge.llm.prompts import PROMPT_DIRECT_MESSAGE_QUESTION, Prompts
from agentbridge.platform.models import User


def make_context(**kwargs) -> Context:
    return Context(
        time="Mon, 15 Jan 2024 12:00:00 UTC",
        server_name="Chat",
        company_name="Acme",
        requesting_user=User(id="u1", username="alice", locale="fr"),
        bot_name="Matty",
        bot_username="matty",
        **kwargs,
    )


def test_bundled_prompts_load():
    prompts = Prompts()

    assert prompts.list_prompts() == [
        "direct_message_question",
        "find_action_items",
        "find_open_questions",
        "summarize_channel_range",
        "summarize_channel_since",
        "summarize_thread",
        "thread_user",
    ]


def test_format_system_prompt():
    system, user = Prompts().format(PROMPT_DIRECT_MESSAGE_QUESTION, make_context())

    assert 'called "Matty"' in system
    assert "@alice" in system
    assert '"fr"' in system
    assert user == ""


def test_parameters_are_available_by_name():
    _, user = Prompts().format("thread_user", make_context(parameters={"Thread": "bob: hi\n\n"}))

    assert user.startswith("Thread to analyze:")
    assert "bob: hi" in user


def test_missing_template():
    with pytest.raises(PromptNotFoundError):
        Prompts().format("does_not_exist", make_context())


def test_format_string_inline_template():
    rendered = Prompts().format_string("{context.bot_name} helps @{context.requesting_user.username} with {Topic}", make_context(parameters={"Topic": "billing"}))

    assert rendered == "Matty helps @alice with billing"


def test_render_error_names_template():
    with pytest.raises(PromptRenderError) as exc:
        Prompts().format_string("Hello {context.nope}", make_context())

    assert "<inline>" in str(exc.value)


@pytest.mark.parametrize("template", [
    "{context.__class__}",
    "{context.tools._tools}",
    "{context.requesting_user.__dict__[id]}",
    "{Topic:{context._secret}}",
])
def test_private_fields_are_refused(template):
    with pytest.raises(PromptRenderError, match="private field"):
        Prompts().format_string(template, make_context(parameters={"Topic": "billing"}))


def test_custom_prompts_dir(tmp_path):
    (tmp_path / "greeting.system.md").write_text("Hi {context.requesting_user.username}, {Mood}\n")
    (tmp_path / "greeting.user.md").write_text("What is up?")

    prompts = Prompts(tmp_path)
    system, user = prompts.format("greeting", make_context(parameters={"Mood": "cheerful"}))

    assert prompts.list_prompts() == ["greeting"]
    assert system == "Hi alice, cheerful"
    assert user == "What is up?"


def test_missing_prompts_dir(tmp_path):
    assert Prompts(tmp_path / "missing").list_prompts() == []
