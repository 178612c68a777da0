"""Unit tests for building rule definitions from stored rules."""

import pytest

from lookout.exceptions import ExpressionSyntaxError, RuleDefinitionError, UnsupportedRuleTypeError
from lookout.models.rule import RuleType
from lookout.schemas.events import SeverityLevel
from lookout.schemas.rules import ExpressionRule, ScriptedRule, SigmaRule, build_rule_definition
from tests.factories import DetectionRuleFactory, ExpressionRuleFactory, ScriptedRuleFactory

pytestmark = pytest.mark.unit


class TestBuildRuleDefinition:
    """Tests for the rule type dispatch."""

    def test_sigma_rule(self, test_settings):
        rule = DetectionRuleFactory()
        definition = build_rule_definition(rule, test_settings)

        assert isinstance(definition, SigmaRule)
        assert definition.id == str(rule.id)
        assert definition.level == SeverityLevel.HIGH
        assert definition.detection is not None
        assert definition.timeframe_label == "5 minutes"

    def test_expression_rule(self, test_settings):
        definition = build_rule_definition(ExpressionRuleFactory(), test_settings)

        assert isinstance(definition, ExpressionRule)
        assert definition.program is not None

    def test_scripted_rule(self, test_settings):
        definition = build_rule_definition(ScriptedRuleFactory(), test_settings)

        assert isinstance(definition, ScriptedRule)
        assert definition.sequence is not None

    def test_enum_rule_type_is_accepted(self, test_settings):
        rule = DetectionRuleFactory(type=RuleType.SIGMA)
        assert isinstance(build_rule_definition(rule, test_settings), SigmaRule)

    def test_unknown_type_is_rejected(self, test_settings):
        rule = DetectionRuleFactory(type="yara")

        with pytest.raises(UnsupportedRuleTypeError) as exc_info:
            build_rule_definition(rule, test_settings)

        assert exc_info.value.rule_type == "yara"
        assert exc_info.value.status_code == 422

    def test_defaults_applied_for_unset_tuning(self, test_settings):
        rule = DetectionRuleFactory(timeframe=None, threshold=None)
        definition = build_rule_definition(rule, test_settings)

        assert definition.timeframe == 5
        assert definition.threshold == 1

    @pytest.mark.parametrize("timeframe,threshold", [(5, 0), (-1, 1)])
    def test_invalid_tuning_is_rejected(self, test_settings, timeframe, threshold):
        rule = DetectionRuleFactory(timeframe=timeframe, threshold=threshold)

        with pytest.raises(RuleDefinitionError):
            build_rule_definition(rule, test_settings)

    def test_empty_bodies_build_without_matcher(self, test_settings):
        sigma = build_rule_definition(DetectionRuleFactory(yaml=None), test_settings)
        expression = build_rule_definition(ExpressionRuleFactory(expression="  "), test_settings)
        scripted = build_rule_definition(ScriptedRuleFactory(python_code=""), test_settings)

        assert sigma.detection is None
        assert expression.program is None
        assert scripted.sequence is None

    def test_expression_syntax_error(self, test_settings):
        rule = ExpressionRuleFactory(expression="event.action ==")

        with pytest.raises(ExpressionSyntaxError):
            build_rule_definition(rule, test_settings)

    def test_scripted_rule_uses_configured_sentinel(self, test_settings):
        settings = test_settings.model_copy(update={"scripted_sentinel_process": "doas"})
        definition = build_rule_definition(ScriptedRuleFactory(), settings)

        elevation = definition.sequence.steps[1]
        assert elevation.alternatives == ({"process.name|contains": "doas"},)
