"""
Tests for per-file candidate evaluation, the safety filter and the
structural pre-filter (sigfind.core.evaluator).
"""

import json
import sys

import pytest

from conftest import CALC_JS, CALCULATOR_JS, UNSAFE_CALCULATOR_JS, make_candidate, write
from sigfind.core.aliases import TSConfigAliasResolver
from sigfind.core.config import DiscoveryConfig
from sigfind.core.evaluator import (
    CandidateEvaluator,
    FeedbackCollector,
    explain_mismatch,
    kind_matches,
    matches_signature_metadata,
    quick_name_check,
    tokenize_name,
)
from sigfind.core.extractors import CommandExtractor, ExtractorRegistry
from sigfind.core.models import ExportAccess, ExportEntry, ExportInfo, ExportMetadata
from sigfind.core.signature import normalize_signature


@pytest.fixture
def calculator_sig(calculator_signature):
    return normalize_signature(calculator_signature)


def _evaluator(root, config=None, **kwargs):
    config = config or DiscoveryConfig()
    return CandidateEvaluator(root, config, extractors=ExtractorRegistry(config), **kwargs)


def _entry(name="Calculator", kind="class", methods=(), properties=(), extends=None,
           access=None):
    return ExportEntry(
        exported_name=name,
        access=access or ExportAccess(type="direct"),
        info=ExportInfo(name=name, kind=kind, methods=list(methods),
                        properties=list(properties), extends=extends),
    )


# =============================================================================
# Name helpers
# =============================================================================

class TestNameHelpers:

    @pytest.mark.parametrize("name,tokens", [
        ("Calculator", ["calculator"]),
        ("HTTPClientFactory", ["http", "client", "factory"]),
        ("user_service", ["user", "service"]),
        ("parseJSON2", ["parse", "json2"]),
    ])
    def test_tokenize_name(self, name, tokens):
        assert tokenize_name(name) == tokens

    def test_quick_name_check(self):
        sig = normalize_signature({"name": "UserService"})
        assert quick_name_check("user-service.ts", sig)
        assert quick_name_check("UserRepository.ts", sig)
        assert not quick_name_check("Orders.ts", sig)

    def test_quick_name_check_pattern_and_exports(self):
        assert quick_name_check("MyCalc.js", normalize_signature({"name": "/calc/i"}))
        assert quick_name_check("index.js", normalize_signature({"type": "class"}))
        assert quick_name_check("calculator.js", normalize_signature({"exports": "Calculator"}))

    def test_quick_name_check_ignores_extension(self):
        assert not quick_name_check("helpers.py", normalize_signature({"name": "PyParser"}))
        assert not quick_name_check("unrelated.ts", normalize_signature({"name": "TsConfigResolver"}))
        assert not quick_name_check("index.js", normalize_signature({"name": "/js$/"}))
        assert quick_name_check("parser.py", normalize_signature({"name": "PyParser"}))

    def test_module_accepts_object(self):
        assert kind_matches("object", "module")
        assert kind_matches("module", "module")
        assert not kind_matches("object", "class")


# =============================================================================
# Structural pre-filter
# =============================================================================

class TestMetadataPreFilter:

    def test_matching_entry(self, calculator_sig):
        assert matches_signature_metadata(_entry(methods=["add", "subtract", "divide"]), calculator_sig)

    def test_missing_method(self, calculator_sig):
        entry = _entry(methods=["add"])
        assert not matches_signature_metadata(entry, calculator_sig)
        assert explain_mismatch(entry, calculator_sig) == "Calculator is missing methods: subtract"

    def test_wrong_kind(self, calculator_sig):
        entry = _entry(kind="function", methods=["add", "subtract"])
        assert not matches_signature_metadata(entry, calculator_sig)
        assert "expected class" in explain_mismatch(entry, calculator_sig)

    def test_name_is_case_insensitive(self, calculator_sig):
        assert matches_signature_metadata(_entry(name="calculator", methods=["add", "subtract"]),
                                          calculator_sig)

    def test_named_export_must_match_exports(self):
        sig = normalize_signature({"exports": "Calc"})
        assert matches_signature_metadata(_entry(access=ExportAccess("named", "Calc")), sig)
        assert not matches_signature_metadata(_entry(access=ExportAccess("named", "Other")), sig)

    def test_extends_and_properties(self):
        sig = normalize_signature({"name": "Circle", "extends": "Shape", "properties": ["radius"]})
        good = _entry(name="Circle", properties=["radius"], extends="Shape")
        assert matches_signature_metadata(good, sig)
        assert not matches_signature_metadata(_entry(name="Circle", properties=["radius"]), sig)
        assert explain_mismatch(good, sig) is None

    def test_select_export(self, tmp_path, calculator_sig):
        evaluator = _evaluator(tmp_path)
        candidate = make_candidate(metadata=ExportMetadata(exports=[
            _entry(name="helper", kind="function"),
            _entry(methods=["add", "subtract"]),
        ]))
        assert evaluator.select_export(candidate, calculator_sig).info.name == "Calculator"
        assert evaluator.select_export(make_candidate(), calculator_sig) is None


# =============================================================================
# Evaluation pipeline
# =============================================================================

class TestEvaluate:

    def test_scored_candidate(self, tmp_path, calculator_sig):
        path = write(tmp_path, "src/Calculator.js", CALCULATOR_JS)
        candidate = _evaluator(tmp_path).evaluate(path, calculator_sig)
        assert candidate is not None
        assert candidate.relative_path == "src/Calculator.js"
        assert candidate.score == 112
        assert candidate.score == sum(candidate.score_breakdown.values())
        assert candidate.score_breakdown["recency"] == 0
        assert candidate.score_breakdown["quickName"] == 0
        assert candidate.metadata.exports[0].info.name == "Calculator"
        assert candidate.mtime_ms is not None

    def test_loose_name_penalty(self, tmp_path, calculator_sig):
        path = write(tmp_path, "src/legacy/Calc.js", CALC_JS)
        candidate = _evaluator(tmp_path).evaluate(path, calculator_sig)
        assert candidate.quick_name_matched is False
        assert candidate.score_breakdown["quickName"] == -25
        assert candidate.score_breakdown["fileName"] == 8
        assert candidate.score == 46

    def test_loose_names_disallowed(self, tmp_path, calculator_sig):
        path = write(tmp_path, "src/legacy/Calc.js", CALC_JS)
        config = DiscoveryConfig(allow_loose_name_match=False)
        assert _evaluator(tmp_path, config).evaluate(path, calculator_sig) is None

    def test_minimum_score_gate(self, tmp_path, calculator_sig):
        path = write(tmp_path, "src/Calculator.js", CALCULATOR_JS)
        assert _evaluator(tmp_path, DiscoveryConfig(min_candidate_score=112)).evaluate(
            path, calculator_sig) is None
        assert _evaluator(tmp_path, DiscoveryConfig(min_candidate_score=111)).evaluate(
            path, calculator_sig) is not None

    def test_size_gate(self, tmp_path, calculator_sig):
        path = write(tmp_path, "src/Calculator.js", CALCULATOR_JS)
        config = DiscoveryConfig()
        config.languages["javascript"]["parser"]["maxFileSize"] = 10
        assert _evaluator(tmp_path, config).evaluate(path, calculator_sig) is None

    def test_global_size_limit(self, tmp_path):
        config = DiscoveryConfig(parser_max_file_size=2048)
        config.languages["javascript"]["parser"].pop("maxFileSize")
        evaluator = _evaluator(tmp_path, config)
        assert evaluator.max_file_size_for(".js") == 2048
        assert evaluator.max_file_size_for(".unknown") == 2048

    def test_float_size_limits(self, tmp_path):
        config = DiscoveryConfig(parser_max_file_size=4e3)
        config.languages["javascript"]["parser"]["maxFileSize"] = 5e5
        config.languages["python"]["parser"]["maxFileSize"] = True
        evaluator = _evaluator(tmp_path, config)
        assert evaluator.max_file_size_for(".js") == 500_000
        assert evaluator.max_file_size_for(".py") == 4000

    def test_extension_token_is_not_a_name_match(self, tmp_path):
        path = write(tmp_path, "src/helpers.py", "def helper():\n    return 1\n")
        candidate = _evaluator(tmp_path).evaluate(path, normalize_signature({"name": "PyParser"}))
        assert candidate is not None
        assert candidate.quick_name_matched is False
        assert candidate.score_breakdown["quickName"] == -25

    def test_unreadable_file(self, tmp_path, calculator_sig):
        path = tmp_path / "src" / "Calculator.js"
        path.parent.mkdir(parents=True)
        path.write_bytes(b"\xff\xfe\x00 invalid utf-8 \xc3\x28")
        assert _evaluator(tmp_path).evaluate(path, calculator_sig) is None

    def test_missing_file(self, tmp_path, calculator_sig):
        assert _evaluator(tmp_path).evaluate(tmp_path / "Calculator.js", calculator_sig) is None

    def test_parser_timeout_degrades_to_no_metadata(self, tmp_path, calculator_sig):
        path = write(tmp_path, "src/Calculator.js", CALCULATOR_JS)
        config = DiscoveryConfig()
        registry = ExtractorRegistry(config)
        registry.register(".js", CommandExtractor(
            [sys.executable, "-c", "import time; time.sleep(5)"], timeout_ms=100))
        candidate = CandidateEvaluator(tmp_path, config, extractors=registry).evaluate(path, calculator_sig)
        assert candidate is not None
        assert candidate.metadata is None
        assert candidate.score == 112

    def test_feedback_bonus(self, tmp_path, calculator_sig):
        path = write(tmp_path, "src/Calculator.js", CALCULATOR_JS)
        config = DiscoveryConfig()
        config.scoring["feedback"]["enabled"] = True
        feedback = FeedbackCollector()
        evaluator = _evaluator(tmp_path, config, feedback=feedback)

        feedback.accept(calculator_sig, str(path))
        assert evaluator.evaluate(path, calculator_sig).score_breakdown["pattern"] == 15
        feedback.reject(calculator_sig, str(path))
        assert evaluator.evaluate(path, calculator_sig).score_breakdown["pattern"] == -15

    def test_alias_annotations(self, tmp_path, calculator_sig):
        write(tmp_path, "tsconfig.json", json.dumps({
            "compilerOptions": {"baseUrl": ".", "paths": {"@app/*": ["src/*"]}}
        }))
        path = write(tmp_path, "src/Calculator.js", CALCULATOR_JS)
        resolver = TSConfigAliasResolver.from_root(tmp_path)
        candidate = _evaluator(tmp_path, alias_resolver=resolver).evaluate(path, calculator_sig)
        assert candidate.aliases == ["@app/Calculator"]
        assert candidate.base_import == "src/Calculator"


class TestRecency:

    def _evaluator(self, tmp_path, max_bonus=10, half_life=6):
        config = DiscoveryConfig()
        config.scoring["recency"] = {"maxBonus": max_bonus, "halfLifeHours": half_life}
        return CandidateEvaluator(tmp_path, config)

    def test_fresh_file_gets_full_bonus(self, tmp_path):
        assert self._evaluator(tmp_path).recency_bonus(1_000_000, now=1_000_000) == 10

    def test_half_life(self, tmp_path):
        six_hours = 6 * 3_600_000
        assert self._evaluator(tmp_path).recency_bonus(0, now=six_hours) == pytest.approx(5)

    def test_future_mtime_counts_as_now(self, tmp_path):
        assert self._evaluator(tmp_path).recency_bonus(5_000, now=1_000) == 10

    def test_disabled_by_default(self, tmp_path):
        assert CandidateEvaluator(tmp_path, DiscoveryConfig()).recency_bonus(0, now=0) == 0


# =============================================================================
# Safety filter
# =============================================================================

class TestSafety:

    def test_blocked_token(self, tmp_path):
        evaluator = CandidateEvaluator(tmp_path, DiscoveryConfig())
        assert not evaluator.is_candidate_safe(make_candidate(content=UNSAFE_CALCULATOR_JS))
        assert evaluator.is_candidate_safe(make_candidate(content=CALCULATOR_JS))

    def test_case_insensitive(self, tmp_path):
        evaluator = CandidateEvaluator(tmp_path, DiscoveryConfig())
        assert not evaluator.is_candidate_safe(make_candidate(content="PROCESS.EXIT(0)"))

    def test_python_tokens(self, tmp_path):
        evaluator = CandidateEvaluator(tmp_path, DiscoveryConfig())
        assert not evaluator.is_candidate_safe(make_candidate(content="import shutil\nshutil.rmtree(p)\n"))

    def test_allow_unsafe(self, tmp_path):
        evaluator = CandidateEvaluator(tmp_path, DiscoveryConfig(allow_unsafe=True))
        assert evaluator.is_candidate_safe(make_candidate(content=UNSAFE_CALCULATOR_JS))

    def test_custom_denylist(self, tmp_path):
        evaluator = CandidateEvaluator(tmp_path, DiscoveryConfig(blocked_tokens=("dropDatabase(",)))
        assert not evaluator.is_candidate_safe(make_candidate(content="db.dropDatabase()"))
        assert evaluator.is_candidate_safe(make_candidate(content=UNSAFE_CALCULATOR_JS))
