import json

import pytest

from browser_agent.models import ClickAction, ExtractAction, InvalidAction, NavigateAction, SearchAction
from browser_agent.planner import Planner, extract_json_object, fallback_plan, normalize_url

from tests.fakes import fake_openai


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("openai.com", "https://openai.com"),
        ("https://x.com/path", "https://x.com/path"),
        ("http://a.b", "http://a.b"),
        ("  ...www.example.com.", "https://www.example.com"),
        ('"github.com"', "https://github.com"),
        ("", ""),
    ],
)
def test_normalize_url(raw, expected):
    assert normalize_url(raw) == expected


def test_extract_json_ignores_braces_inside_strings():
    text = 'Sure! {"intent": "x", "actions": [{"type": "wait"}], "reasoning": "use {braces} carefully }"} trailing }'
    data = extract_json_object(text)
    assert data["reasoning"] == "use {braces} carefully }"
    assert data["actions"] == [{"type": "wait"}]


def test_extract_json_skips_invalid_candidates():
    assert extract_json_object('{not json} then {"a": 1}') == {"a": 1}
    assert extract_json_object("no json here") is None


def test_fallback_navigate():
    plan = fallback_plan("go to openai.com")
    assert plan.source == "fallback"
    assert plan.actions == [NavigateAction(url="https://openai.com", description="Navigate to https://openai.com")]


def test_fallback_search():
    plan = fallback_plan("search for rust ownership")
    assert len(plan.actions) == 1
    assert isinstance(plan.actions[0], SearchAction)
    assert plan.actions[0].query == "rust ownership"


def test_fallback_navigate_then_search():
    plan = fallback_plan("go to google.com and search for cats")
    assert [type(a) for a in plan.actions] == [NavigateAction, SearchAction]
    assert plan.actions[0].url == "https://google.com"
    assert plan.actions[1].query == "cats"


def test_fallback_platform_profile():
    plan = fallback_plan("go to Bill Gates's linkedin page")
    assert plan.platform == "linkedin"
    assert [type(a) for a in plan.actions] == [NavigateAction, SearchAction, ClickAction]
    assert plan.actions[1].query == "Bill Gates linkedin"
    assert plan.actions[2].target == "first profile result"


def test_fallback_general_command_is_search():
    plan = fallback_plan("what is the weather like")
    assert isinstance(plan.actions[0], SearchAction)
    assert plan.actions[0].query == "what is the weather like"


def test_fallback_empty_command_extracts():
    plan = fallback_plan("   ")
    assert isinstance(plan.actions[0], ExtractAction)


@pytest.mark.asyncio
async def test_parse_without_client_uses_fallback():
    plan = await Planner(None, "gpt-4o").parse("go to openai.com")
    assert plan.source == "fallback"


@pytest.mark.asyncio
async def test_parse_uses_llm_output():
    payload = {
        "intent": "read news",
        "platform": None,
        "actions": [
            {"type": "navigate", "url": "https://news.ycombinator.com"},
            {"type": "scroll"},
            {"type": "extract"},
        ],
        "reasoning": "open the site then capture it",
    }
    client = fake_openai("Here you go:\n" + json.dumps(payload))
    plan = await Planner(client, "gpt-4o").parse("read hacker news")

    assert plan.source == "llm"
    assert plan.intent == "read news"
    assert isinstance(plan.actions[0], NavigateAction)
    assert isinstance(plan.actions[1], InvalidAction)
    assert isinstance(plan.actions[2], ExtractAction)
    assert client.calls[0]["response_format"] == {"type": "json_object"}
    assert client.calls[0]["temperature"] == 0


@pytest.mark.asyncio
async def test_parse_falls_back_when_llm_fails():
    client = fake_openai(error=RuntimeError("rate limited"))
    plan = await Planner(client, "gpt-4o").parse("go to openai.com")
    assert plan.source == "fallback"
    assert plan.actions[0].url == "https://openai.com"


@pytest.mark.asyncio
async def test_parse_falls_back_when_no_valid_actions():
    client = fake_openai(json.dumps({"intent": "x", "actions": [{"type": "navigate"}]}))
    plan = await Planner(client, "gpt-4o").parse("search for cats")
    assert plan.source == "fallback"
    assert plan.actions[0].query == "cats"


@pytest.mark.parametrize(
    "command, query",
    [
        ("search for rust jobs on linkedin", "rust jobs on linkedin"),
        ("find python tutorials on youtube", "python tutorials on youtube"),
    ],
)
def test_fallback_search_on_platform_is_plain_search(command, query):
    plan = fallback_plan(command)
    assert [type(a) for a in plan.actions] == [SearchAction]
    assert plan.actions[0].query == query
    assert plan.platform is None


def test_fallback_on_platform_profile():
    plan = fallback_plan("find Ada Lovelace on linkedin profile")
    assert plan.intent == "find_linkedin_profile"
    assert plan.actions[1].query == "Ada Lovelace linkedin"
