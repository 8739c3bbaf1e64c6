"""
tests/test_stimuli.py - Stimulus Packs, Validation, Seeded Order, Indicators
"""

import pytest

from mapper.constants import CiCode, FlagKind, STIMULUS_SCHEMA_VERSION
from mapper.hashing import compute_words_sha256
from mapper.indicators import (
    INDICATOR_DESCRIPTORS,
    INDICATOR_ORDER,
    aggregate_indicator_counts,
    compute_ci_codes,
    indicator_label,
    merge_trial_indicators,
)
from mapper.stimuli import (
    DEMO_10,
    StimulusList,
    get_stimulus_list,
    list_available_stimulus_lists,
    mulberry32,
    normalize_snapshot,
    random_seed,
    seeded_shuffle,
    validate_stimulus_list,
)


@pytest.fixture
def valid_pack():
    return {
        "id": "custom-pack",
        "version": "0.1.0",
        "language": "en",
        "source": "Lab list",
        "provenance": {
            "sourceName": "Lab",
            "sourceYear": "2026",
            "sourceCitation": "Internal",
            "licenseNote": "CC0",
        },
        "words": ["sun", "moon", "star"],
    }


def codes(errors):
    return [e.code for e in errors]


class TestValidateStimulusList:
    """Every problem is reported at once."""

    def test_valid(self, valid_pack):
        assert validate_stimulus_list(valid_pack) == []

    def test_builtin_packs_valid(self):
        assert validate_stimulus_list(DEMO_10.to_dict()) == []

    def test_empty_payload_reports_everything(self):
        found = codes(validate_stimulus_list({}))
        for expected in ("MISSING_ID", "MISSING_VERSION", "MISSING_LANGUAGE",
                         "MISSING_SOURCE", "MISSING_PROVENANCE", "EMPTY_WORD_LIST"):
            assert expected in found

    def test_missing_provenance_fields(self, valid_pack):
        valid_pack["provenance"] = {"sourceName": "Lab"}
        errors = validate_stimulus_list(valid_pack)
        assert codes(errors) == ["MISSING_PROVENANCE_FIELD"] * 3
        assert {e.field for e in errors} == {
            "provenance.sourceYear", "provenance.sourceCitation", "provenance.licenseNote",
        }

    def test_blank_words(self, valid_pack):
        valid_pack["words"] = ["sun", "  ", ""]
        assert "BLANK_WORDS" in codes(validate_stimulus_list(valid_pack))

    def test_duplicates_trimmed_lowercase(self, valid_pack):
        valid_pack["words"] = ["Sun", " sun", "moon"]
        errors = validate_stimulus_list(valid_pack)
        assert codes(errors) == ["DUPLICATE_WORDS"]

    def test_several_problems_together(self, valid_pack):
        valid_pack["id"] = ""
        valid_pack["words"] = ["a", "A", " "]
        assert codes(validate_stimulus_list(valid_pack)) == ["MISSING_ID", "BLANK_WORDS", "DUPLICATE_WORDS"]


class TestRegistry:
    """Built-in pack lookup."""

    def test_lookup(self):
        pack = get_stimulus_list("demo-10", "1.0.0")
        assert pack is DEMO_10
        assert len(pack.words) == 10

    def test_unknown(self):
        assert get_stimulus_list("demo-10", "9.9.9") is None

    def test_listing(self):
        ids = {entry["id"] for entry in list_available_stimulus_lists()}
        assert ids == {"demo-10", "kent-rosanoff-1910"}

    def test_dict_round_trip(self, valid_pack):
        assert StimulusList.from_dict(valid_pack).to_dict() == valid_pack


class TestSeededOrder:
    """mulberry32 + Fisher-Yates."""

    def test_same_seed_same_order(self):
        assert seeded_shuffle(DEMO_10.words, 42) == seeded_shuffle(DEMO_10.words, 42)

    def test_is_permutation(self):
        shuffled = seeded_shuffle(DEMO_10.words, 7)
        assert sorted(shuffled) == sorted(DEMO_10.words)

    def test_input_untouched(self):
        words = list(DEMO_10.words)
        seeded_shuffle(words, 3)
        assert words == list(DEMO_10.words)

    def test_seeds_differ(self):
        orders = {tuple(seeded_shuffle(DEMO_10.words, seed)) for seed in range(20)}
        assert len(orders) > 1

    def test_generator_range(self):
        rng = mulberry32(123456)
        values = [rng() for _ in range(1000)]
        assert all(0.0 <= v < 1.0 for v in values)
        assert len(set(values)) > 990

    def test_random_seed_in_range(self):
        assert 0 <= random_seed() < 2147483647


class TestNormalizeSnapshot:
    """Word payload always travels with its hash and schema version."""

    def test_fills_when_words_present(self):
        snap = normalize_snapshot({"provenance": {}}, ["a", "b"])
        assert snap["stimulusSchemaVersion"] == STIMULUS_SCHEMA_VERSION
        assert snap["stimulusListHash"] == compute_words_sha256(["a", "b"])
        assert snap["words"] == ["a", "b"]

    def test_uses_snapshot_words(self):
        snap = normalize_snapshot({"words": ["x"], "stimulusListHash": None})
        assert snap["stimulusListHash"] == compute_words_sha256(["x"])

    def test_no_words_unchanged(self):
        base = {"provenance": {"listId": "p"}, "stimulusListHash": None}
        assert normalize_snapshot(base) == base


class TestIndicators:
    """CI codes and the shared descriptor table."""

    def test_every_code_described(self):
        assert set(INDICATOR_ORDER) == set(INDICATOR_DESCRIPTORS)
        assert len(INDICATOR_ORDER) == len(CiCode) + len(FlagKind)

    def test_failure_short_circuits(self, make_trial):
        trial = make_trial(word="tree", response="")
        assert compute_ci_codes(trial, [FlagKind.EMPTY_RESPONSE, FlagKind.REPEATED_RESPONSE]) == [CiCode.F]

    def test_timeout_is_failure(self, make_trial):
        assert compute_ci_codes(make_trial(timed_out=True), [FlagKind.TIMEOUT]) == [CiCode.F]

    def test_canonical_order(self, make_trial):
        trial = make_trial(word="big tree", response=" Big Tree ")
        flags = [FlagKind.REPEATED_RESPONSE, FlagKind.TIMING_OUTLIER_SLOW]
        assert compute_ci_codes(trial, flags) == [CiCode.MSW, CiCode.RSW, CiCode.PRT, CiCode.P]

    def test_merge_dedupes_ci_first(self):
        merged = merge_trial_indicators([CiCode.P], [FlagKind.REPEATED_RESPONSE, FlagKind.REPEATED_RESPONSE])
        assert merged == [CiCode.P, FlagKind.REPEATED_RESPONSE]

    def test_aggregate_in_canonical_order(self):
        counts = aggregate_indicator_counts([[FlagKind.TIMEOUT, CiCode.F], [CiCode.F]])
        assert list(counts) == [CiCode.F, FlagKind.TIMEOUT]
        assert counts[CiCode.F] == 2

    def test_labels(self):
        assert indicator_label(CiCode.P) == "Perseveration"
        assert indicator_label(FlagKind.TIMEOUT) == "Timeout"
