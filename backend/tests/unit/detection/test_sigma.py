"""Unit tests for Sigma-style pattern parsing and matching."""

import pytest

from lookout.detection.sigma import match_field, parse_detection
from lookout.exceptions import RuleDefinitionError
from tests.factories import SSH_BRUTE_FORCE_YAML, NormalizedEventFactory

pytestmark = pytest.mark.unit


class TestParseDetection:
    """Tests for parsing rule bodies."""

    def test_parses_selection_and_aggregation(self):
        """Test the boolean part and count clause are split."""
        detection = parse_detection(SSH_BRUTE_FORCE_YAML)

        assert set(detection.blocks) == {"selection"}
        assert detection.aggregation.operator == ">"
        assert detection.aggregation.value == 10
        assert detection.aggregation.group_by == "source.ip"

    @pytest.mark.parametrize("body", [None, "", "   \n", "title: No detection\n"])
    def test_missing_detection_yields_none(self, body):
        """Test bodies without a detection section."""
        assert parse_detection(body) is None

    def test_detection_without_selections_yields_none(self):
        """Test a detection section holding only a condition."""
        assert parse_detection("detection:\n  condition: selection\n") is None

    def test_malformed_yaml_raises(self):
        """Test invalid YAML is reported as a rule definition error."""
        with pytest.raises(RuleDefinitionError):
            parse_detection("detection:\n  selection: [unclosed\n")

    def test_unknown_selection_in_condition_raises(self):
        """Test conditions must reference existing blocks."""
        body = "detection:\n  selection:\n    event.action: login\n  condition: other\n"
        with pytest.raises(RuleDefinitionError, match="unknown selection"):
            parse_detection(body)

    def test_unknown_modifier_raises(self):
        """Test unsupported value modifiers are rejected."""
        body = (
            "detection:\n  selection:\n    process.name|base64offset: sudo\n"
            "  condition: selection\n"
        )
        with pytest.raises(RuleDefinitionError, match="modifier"):
            parse_detection(body)

    def test_unbalanced_parentheses_raise(self):
        """Test condition syntax errors."""
        body = "detection:\n  selection:\n    event.action: login\n  condition: (selection\n"
        with pytest.raises(RuleDefinitionError):
            parse_detection(body)


class TestConditionEvaluation:
    """Tests for condition logic."""

    BODY = """\
detection:
  selection_login:
    event.action: login
  selection_failure:
    event.outcome: failure
  filter_service:
    user.name|startswith: svc_
  condition: {condition}
"""

    def _detection(self, condition: str):
        return parse_detection(self.BODY.format(condition=condition))

    def test_and_not(self):
        """Test conjunction with a negated filter."""
        detection = self._detection("selection_login and selection_failure and not filter_service")

        assert detection.matches(NormalizedEventFactory(user_name="alice"))
        assert not detection.matches(NormalizedEventFactory(user_name="svc_backup"))

    def test_or_with_parentheses(self):
        """Test grouping changes precedence."""
        detection = self._detection("(selection_login or filter_service) and selection_failure")

        assert detection.matches(NormalizedEventFactory(event_action="logout", user_name="svc_x"))
        assert not detection.matches(
            NormalizedEventFactory(event_action="logout", user_name="alice")
        )

    def test_one_of_pattern(self):
        """Test '1 of selection_*'."""
        detection = self._detection("1 of selection_*")

        assert detection.matches(NormalizedEventFactory(event_action="logout"))
        assert not detection.matches(
            NormalizedEventFactory(event_action="logout", event_outcome="success")
        )

    def test_all_of_pattern(self):
        """Test 'all of selection_*'."""
        detection = self._detection("all of selection_*")

        assert detection.matches(NormalizedEventFactory())
        assert not detection.matches(NormalizedEventFactory(event_outcome="success"))

    def test_all_of_them(self):
        """Test 'all of them' includes filters."""
        detection = self._detection("all of them")

        assert detection.matches(NormalizedEventFactory(user_name="svc_web"))
        assert not detection.matches(NormalizedEventFactory(user_name="alice"))

    def test_list_of_maps_is_any_of(self):
        """Test a block given as a list of maps."""
        body = """\
detection:
  selection:
    - process.name: sudo
    - process.name: su
  condition: selection
"""
        detection = parse_detection(body)

        assert detection.matches(NormalizedEventFactory(process_name="su"))
        assert not detection.matches(NormalizedEventFactory(process_name="bash"))

    def test_keyword_block(self):
        """Test keyword lists search all event values."""
        body = "detection:\n  keywords:\n    - mimikatz\n  condition: keywords\n"
        detection = parse_detection(body)

        assert detection.matches(NormalizedEventFactory(process_name="C:\\tools\\Mimikatz.exe"))
        assert not detection.matches(NormalizedEventFactory(process_name="explorer.exe"))


class TestMatchField:
    """Tests for field predicates."""

    def test_equality_is_case_insensitive(self):
        event = NormalizedEventFactory(event_action="Login")
        assert match_field(event, "event.action", "LOGIN")

    def test_numbers_compare_as_text(self):
        event = NormalizedEventFactory(destination_port=22)
        assert match_field(event, "destination.port", 22)
        assert not match_field(event, "destination.port", 2222)

    def test_value_list_is_any_of(self):
        event = NormalizedEventFactory(user_name="admin")
        assert match_field(event, "user.name", ["root", "admin"])

    def test_all_modifier(self):
        event = NormalizedEventFactory(process_name="powershell -enc -nop")
        assert match_field(event, "process.name|contains|all", ["-enc", "-nop"])
        assert not match_field(event, "process.name|contains|all", ["-enc", "-w hidden"])

    @pytest.mark.parametrize(
        "key,expected,result",
        [
            ("process.name|contains", "sudo", True),
            ("process.name|startswith", "/usr", True),
            ("process.name|endswith", "sudo", True),
            ("process.name|endswith", "bash", False),
            ("process.name|re", r"^/usr/bin/su(do)?$", True),
            ("process.name", "/usr/*/sudo", True),
            ("process.name", "/usr/bin/su?o", True),
            ("process.name", "sudo", False),
        ],
    )
    def test_modifiers(self, key, expected, result):
        event = NormalizedEventFactory(process_name="/usr/bin/sudo")
        assert match_field(event, key, expected) is result

    def test_exists_modifier(self):
        event = NormalizedEventFactory(process_name=None)
        assert match_field(event, "process.name|exists", False)
        assert not match_field(event, "process.name|exists", True)
        assert match_field(event, "user.name|exists", True)

    def test_absent_field_does_not_match_value(self):
        event = NormalizedEventFactory(dns_question_name=None)
        assert not match_field(event, "dns.question.name|endswith", ".evil.net")

    def test_null_matches_absent_field(self):
        event = NormalizedEventFactory(file_name=None)
        assert match_field(event, "file.name", None)

    def test_invalid_regex_raises(self):
        event = NormalizedEventFactory(process_name="sudo")
        with pytest.raises(RuleDefinitionError):
            match_field(event, "process.name|re", "(unclosed")

    def test_attribute_fields(self):
        """Test fields outside the common schema are matched from attributes."""
        event = NormalizedEventFactory(attributes={"winlog.event_id": 4625})
        assert match_field(event, "winlog.event_id", 4625)
