"""
Tests for the multi-factor scoring engine (sigfind.core.scoring).
"""

import logging

import pytest

from conftest import CALCULATOR_JS, CALCULATOR_SIGNATURE, make_candidate
from sigfind.core.config import DiscoveryConfig
from sigfind.core.scoring import (
    FileNameFactor,
    MethodMentionFactor,
    PathFactor,
    ScoringEngine,
    TypeHintFactor,
)
from sigfind.core.signature import normalize_signature


@pytest.fixture
def engine():
    return ScoringEngine(DiscoveryConfig())


def _sig(**fields):
    return normalize_signature(fields)


# =============================================================================
# Individual factors
# =============================================================================

class TestPathFactor:

    def test_custom_negative_weight(self):
        config = DiscoveryConfig(scoring={"paths": {"negative": {"/test/": -10}}})
        score = PathFactor().score(make_candidate("test/x.js"), _sig(name="x"), "", config)
        assert score == -10

    def test_matches_are_summed(self):
        config = DiscoveryConfig()
        # "/src/" (+12) and "/tests/" (-40) both match
        score = PathFactor().score(make_candidate("src/tests/Calculator.js"), _sig(name="x"), "", config)
        assert score == 12 - 40

    def test_top_level_directory_matches(self):
        config = DiscoveryConfig()
        score = PathFactor().score(make_candidate("tests/Calculator.js"), _sig(name="x"), "", config)
        assert score == -40

    def test_case_insensitive(self):
        config = DiscoveryConfig()
        score = PathFactor().score(make_candidate("Src/Calculator.js"), _sig(name="x"), "", config)
        assert score == 12


class TestExtensionFactor:

    def test_custom_extension_weight(self, engine):
        config = DiscoveryConfig(scoring={"extensions": {".js": 10}})
        result = ScoringEngine(config).score(make_candidate("a/x.js"), _sig(name="Q"), "")
        assert result.breakdown["extension"] == 10

    def test_typescript_default(self, engine):
        result = engine.score(make_candidate("a/x.ts"), _sig(name="Q"), "")
        assert result.breakdown["extension"] == 18


class TestFileNameFactor:

    @pytest.mark.parametrize("relative_path,expected", [
        ("src/Calculator.js", 45),
        ("src/calculator.js", 30),
        ("src/CalculatorService.js", 8),
        ("src/Calc.js", 8),
        ("src/Widget.js", 0),
    ])
    def test_tiers(self, relative_path, expected):
        score = FileNameFactor().score(
            make_candidate(relative_path), _sig(name="Calculator"), "", DiscoveryConfig()
        )
        assert score == expected

    def test_regex_name(self):
        score = FileNameFactor().score(
            make_candidate("src/MyCalculator.js"), _sig(name="/calc/i"), "", DiscoveryConfig()
        )
        assert score == 12

    def test_regex_name_no_match(self):
        score = FileNameFactor().score(
            make_candidate("src/Widget.js"), _sig(name="/calc/i"), "", DiscoveryConfig()
        )
        assert score == 0

    def test_uses_exports_when_name_missing(self):
        score = FileNameFactor().score(
            make_candidate("src/Calculator.js"), _sig(exports="Calculator"), "", DiscoveryConfig()
        )
        assert score == 45


class TestTypeHintFactor:

    @pytest.mark.parametrize("kind,content,expected", [
        ("class", "class Calculator {}", 15),
        ("function", "function add(a, b) {}", 12),
        ("function", "def add(a, b):\n    pass", 12),
        ("class", "const x = 1;", 0),
    ])
    def test_hints(self, kind, content, expected):
        score = TypeHintFactor().score(
            make_candidate(), _sig(name="X", type=kind), content, DiscoveryConfig()
        )
        assert score == expected

    def test_no_type_no_bonus(self):
        score = TypeHintFactor().score(make_candidate(), _sig(name="X"), "class X {}", DiscoveryConfig())
        assert score == 0


class TestMethodMentionFactor:

    def test_counts_mentions(self):
        score = MethodMentionFactor().score(
            make_candidate(), _sig(methods=["add", "subtract", "missing"]),
            CALCULATOR_JS, DiscoveryConfig()
        )
        assert score == 6

    def test_cap(self):
        config = DiscoveryConfig(scoring={"methods": {"perMention": 3, "maxMentions": 1}})
        score = MethodMentionFactor().score(
            make_candidate(), _sig(methods=["add", "subtract"]), CALCULATOR_JS, config
        )
        assert score == 3


# =============================================================================
# Engine
# =============================================================================

class TestScoringEngine:

    def test_calculator_breakdown(self, engine):
        result = engine.score(
            make_candidate("src/Calculator.js"), normalize_signature(CALCULATOR_SIGNATURE), CALCULATOR_JS
        )
        assert result.breakdown == {
            "path": 12,
            "extension": 0,
            "fileName": 45,
            "typeHints": 15,
            "methods": 6,
            "exports": 30,
            "names": 4,
            "custom": 0,
        }
        assert result.total == 112

    def test_total_is_sum_of_breakdown(self, engine):
        result = engine.score(
            make_candidate("tests/__mocks__/calc.ts"), _sig(name="/calc/i", type="class"), CALCULATOR_JS
        )
        assert result.total == sum(result.breakdown.values())

    def test_every_factor_key_present(self, engine):
        result = engine.score(make_candidate("x/y.rb"), _sig(name="Nothing"), "")
        assert set(result.breakdown) == {
            "path", "extension", "fileName", "typeHints", "methods", "exports", "names", "custom",
        }
        assert result.total == 0

    def test_factors_are_additive(self):
        """Raising one weight moves the total by exactly that delta."""
        base = ScoringEngine(DiscoveryConfig())
        bumped_config = DiscoveryConfig()
        bumped_config.scoring["fileName"]["exactMatch"] = 50
        bumped = ScoringEngine(bumped_config)
        sig = normalize_signature(CALCULATOR_SIGNATURE)
        candidate = make_candidate()
        delta = bumped.score(candidate, sig, CALCULATOR_JS).total - base.score(candidate, sig, CALCULATOR_JS).total
        assert delta == 5

    def test_update_config(self, engine):
        engine.update_config(DiscoveryConfig(scoring={"extensions": {".js": 7}}))
        result = engine.score(make_candidate(), _sig(name="Q"), "")
        assert result.breakdown["extension"] == 7

    def test_custom_factor_list(self):
        engine = ScoringEngine(DiscoveryConfig(), factors=[PathFactor()])
        result = engine.score(make_candidate(), _sig(name="Calculator"), CALCULATOR_JS)
        assert result.breakdown == {"path": 12}


class TestCustomScorers:

    def test_register_and_unregister(self, engine):
        def bonus(candidate, signature, content):
            return 7

        sig = _sig(name="Q")
        engine.register_scorer(bonus)
        assert engine.score(make_candidate(), sig, "").breakdown["custom"] == 7
        engine.unregister_scorer(bonus)
        assert engine.score(make_candidate(), sig, "").breakdown["custom"] == 0

    def test_scorer_receives_extra_fields(self, engine):
        seen = {}

        def capture(candidate, signature, content):
            seen.update(signature.extra)
            return 0

        engine.register_scorer(capture)
        engine.score(make_candidate(), _sig(name="Q", team="payments"), "")
        assert seen == {"team": "payments"}

    def test_failing_scorer_contributes_zero(self, engine, caplog):
        def broken(candidate, signature, content):
            raise RuntimeError("boom")

        engine.register_scorer(broken)
        with caplog.at_level(logging.WARNING, logger="sigfind.core.scoring"):
            result = engine.score(make_candidate(), _sig(name="Q"), "")
        assert result.breakdown["custom"] == 0
        assert "boom" in caplog.text

    def test_non_numeric_result_ignored(self, engine):
        engine.register_scorer(lambda c, s, t: "lots")
        assert engine.score(make_candidate(), _sig(name="Q"), "").breakdown["custom"] == 0

    def test_scorers_from_config(self):
        config = DiscoveryConfig()
        config.scoring["custom"] = [lambda c, s, t: 4]
        result = ScoringEngine(config).score(make_candidate(), _sig(name="Q"), "")
        assert result.breakdown["custom"] == 4


class TestPostLoadFactors:

    def test_score_target_name(self, engine):
        sig = _sig(name="Calculator")
        assert engine.score_target_name("Calculator", sig) == 35
        assert engine.score_target_name("calculator", sig) == 30
        assert engine.score_target_name("Calc", sig) == 0
        assert engine.score_target_name(None, sig) == 0

    def test_score_target_name_pattern(self, engine):
        assert engine.score_target_name("MyCalculator", _sig(name="/calc/i")) == 12

    def test_score_method_validation(self, engine):
        assert engine.score_method_validation(["add", "subtract"]) == 10
        assert engine.score_method_validation([]) == 0
