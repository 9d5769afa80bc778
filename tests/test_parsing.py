"""Tests for app/services/build/parsing.py -- structured model output."""

import pytest

from app.errors import EmptyPlanError, PlanParseError
from app.services.build.models import BuildPlan, ConversationReply, QuickChangeRequest
from app.services.build.parsing import (
    clean_file_content,
    load_model_json,
    parse_agent_action,
    parse_path_list,
    parse_planning_response,
    parse_review,
    strip_code_fence,
    summarize_file_analysis,
)

_PLAN = """{
  "type": "build",
  "pluginName": "HomeTeleport",
  "packageName": "com.example.home",
  "description": "Set and teleport to homes",
  "phases": [
    {"name": "Core", "description": "Main class", "files": [
      {"path": "src/main/java/com/example/home/HomePlugin.java", "description": "Main plugin class"},
      {"path": "src/main/resources/plugin.yml", "description": "Descriptor"}
    ]}
  ]
}"""


# ---------------------------------------------------------------------------
# Fences and file content
# ---------------------------------------------------------------------------


def test_strip_code_fence_with_language():
    assert strip_code_fence("```java\nclass A {}\n```") == "class A {}"


def test_strip_code_fence_passthrough():
    assert strip_code_fence("  plain text  ") == "plain text"


def test_clean_file_content_single_trailing_newline():
    assert clean_file_content("```yaml\nname: Home\n\n\n```") == "name: Home\n"


def test_clean_file_content_blank_is_empty():
    assert clean_file_content("```\n   \n```") == ""
    assert clean_file_content("") == ""


# ---------------------------------------------------------------------------
# JSON repair
# ---------------------------------------------------------------------------


def test_load_model_json_fenced():
    assert load_model_json('```json\n{"ok": true}\n```') == {"ok": True}


def test_load_model_json_prose_preamble():
    text = 'Here is the plan you asked for:\n{"a": 1}\nLet me know!'
    assert load_model_json(text) == {"a": 1}


def test_load_model_json_trailing_comma():
    assert load_model_json('{"files": ["a", "b",],}') == {"files": ["a", "b"]}


def test_load_model_json_single_quotes():
    assert load_model_json("{'action': 'done'}") == {"action": "done"}


def test_load_model_json_array():
    assert load_model_json('I would read:\n["a.java", "b.yml"]', expect="array") == ["a.java", "b.yml"]


def test_load_model_json_unparseable_keeps_raw():
    with pytest.raises(PlanParseError) as exc_info:
        load_model_json("no json here")
    assert exc_info.value.raw == "no json here"


def test_load_model_json_empty():
    with pytest.raises(PlanParseError):
        load_model_json("   ")


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


def test_parse_planning_build_plan():
    plan = parse_planning_response(_PLAN)
    assert isinstance(plan, BuildPlan)
    assert plan.plugin_name == "HomeTeleport"
    assert plan.package_name == "com.example.home"
    assert plan.file_count == 2
    assert plan.phases[0].files[0].name == "HomePlugin.java"
    assert plan.kind == "build"


def test_parse_planning_without_type_but_with_phases():
    plan = parse_planning_response(
        '{"pluginName": "X", "phases": [{"name": "P", "files": [{"path": "a/B.java"}]}]}'
    )
    assert isinstance(plan, BuildPlan)
    assert plan.phases[0].files[0].name == "B.java"


def test_parse_planning_conversation():
    reply = parse_planning_response('{"type": "conversation", "response": "Hello!"}')
    assert isinstance(reply, ConversationReply)
    assert reply.response == "Hello!"


def test_parse_planning_empty_conversation_rejected():
    with pytest.raises(PlanParseError):
        parse_planning_response('{"type": "conversation", "response": ""}')


def test_parse_planning_quick_change():
    result = parse_planning_response(
        '{"type": "quick-change", "description": "Rename command", '
        '"files": [{"path": "plugin.yml", "description": "rename"}]}'
    )
    assert isinstance(result, QuickChangeRequest)
    assert result.description == "Rename command"
    assert result.files[0].path == "plugin.yml"


def test_parse_planning_empty_plan():
    with pytest.raises(EmptyPlanError):
        parse_planning_response('{"type": "build", "pluginName": "X", "phases": [{"name": "P", "files": []}]}')


def test_parse_planning_unknown_type():
    with pytest.raises(PlanParseError, match="Unknown planning response type"):
        parse_planning_response('{"type": "poem", "text": "roses"}')


def test_parse_planning_array_is_rejected():
    with pytest.raises(PlanParseError):
        parse_planning_response("[1, 2, 3]")


# ---------------------------------------------------------------------------
# Review / agent / dependency reads
# ---------------------------------------------------------------------------


def test_parse_review_drops_fixes_without_path():
    review = parse_review(
        '{"passed": false, "fixes": [{"path": "A.java", "reason": "missing import"}, {"reason": "vague"}]}'
    )
    assert review.passed is False
    assert [f.path for f in review.fixes] == ["A.java"]
    assert review.fixes[0].reason == "missing import"


def test_parse_review_passed_without_fixes():
    review = parse_review('{"passed": true}')
    assert review.passed is True
    assert review.fixes == []


def test_parse_agent_action_done_needs_no_path():
    action = parse_agent_action('{"action": "DONE", "summary": "Renamed"}')
    assert action.action == "done"
    assert action.summary == "Renamed"


def test_parse_agent_action_requires_path():
    with pytest.raises(PlanParseError, match="missing a path"):
        parse_agent_action('{"action": "update", "reason": "x"}')


def test_parse_agent_action_unknown():
    with pytest.raises(PlanParseError, match="Unknown agent action"):
        parse_agent_action('{"action": "compile", "path": "a"}')


def test_parse_path_list_dedupes_and_filters():
    assert parse_path_list('["a.java", "a.java", 3, "", "b.yml"]') == ["a.java", "b.yml"]


def test_parse_path_list_accepts_object():
    assert parse_path_list('{"files": ["a.java"]}') == ["a.java"]


def test_summarize_file_analysis_json():
    text = '{"purpose": "Main plugin class.", "exports": ["HomePlugin", "onEnable"], "version": "1.2"}'
    assert summarize_file_analysis(text) == "Main plugin class. Exports: HomePlugin, onEnable. Version: 1.2"


def test_summarize_file_analysis_fallback_truncates():
    text = "x" * 500
    assert summarize_file_analysis(text) == "x" * 200
