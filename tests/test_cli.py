"""
tests/test_cli.py - mapper Command Line

Exit codes: 0 success, 1 actionable issue, 2 fatal.
JSON output is parsed from stdout only.
"""

import json

import pytest
import yaml
from click.testing import CliRunner

from cli import cli
from mapper.constants import ACTION_BLOCKED, ACTION_IMPORT_SESSION
from mapper.stimuli import DEMO_10

ALPHA_BETA_GAMMA = "f3220283d05d1ff2ae350cfe9e0e367cb5aef46e10efb203c8a53c678e2218c8"


@pytest.fixture
def env(tmp_path):
    return {"MAPPER_STORAGE_DIR": str(tmp_path / "store"), "MAPPER_LOG_LEVEL": "ERROR"}


@pytest.fixture
def run(env):
    runner = CliRunner()

    def invoke(*args):
        return runner.invoke(cli, list(args), env=env)
    return invoke


@pytest.fixture
def session_file(tmp_path, run):
    path = tmp_path / "session.json"
    result = run("simulate", "--seed", "7", "--out", str(path), "-o", "json")
    assert result.exit_code == 0
    return path


@pytest.fixture
def package_file(tmp_path, run, session_file):
    result = run("export", str(session_file), "-f", "package", "-m", "full", "-d", str(tmp_path / "out"), "-o", "json")
    assert result.exit_code == 0
    return json.loads(result.stdout)["path"]


@pytest.fixture
def tampered_file(tmp_path, package_file):
    with open(package_file, encoding="utf-8") as fh:
        package = json.load(fh)
    package["bundle"]["sessionResult"]["trials"][0]["association"]["reactionTimeMs"] += 1
    path = tmp_path / "tampered.json"
    path.write_text(json.dumps(package), encoding="utf-8")
    return path


class TestSimulate:
    """simulate prints or writes a session."""

    def test_json(self, run):
        result = run("simulate", "--seed", "3", "-n", "4", "-o", "json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["id"] == "sim_3"
        assert len(data["trials"]) == 4

    def test_rich(self, run, tmp_path):
        result = run("simulate", "--out", str(tmp_path / "s.json"))
        assert result.exit_code == 0
        assert "sim_42" in result.stdout
        assert (tmp_path / "s.json").exists()

    def test_word_range(self, run):
        assert run("simulate", "-n", "11").exit_code == 2


class TestScoreAndInsights:
    """Reads bare sessions, bundles and packages."""

    def test_score_matches_stored(self, run, session_file):
        result = run("score", str(session_file), "-o", "json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["sessionId"] == "sim_7"
        assert data["matchesStored"] is True

    def test_score_from_package(self, run, package_file):
        result = run("score", package_file, "-o", "json")
        assert json.loads(result.stdout)["sessionId"] == "sim_7"

    def test_insights_with_prompts(self, run, session_file):
        result = run("insights", str(session_file), "--prompts", "-o", "json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert set(data) == {"sessionId", "insights", "quality", "microGoal", "reflectionPrompts"}
        assert 0 <= data["quality"]["score"] <= 100

    def test_unreadable_session(self, run, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text("not json")
        result = run("score", str(bad), "-o", "json")
        assert result.exit_code == 2
        assert "error" in json.loads(result.stdout)

    def test_score_table_uses_indicator_labels(self, run, sample_session, tmp_path):
        path = tmp_path / "sample.json"
        path.write_text(json.dumps(sample_session.to_dict()))
        result = run("score", str(path))
        assert result.exit_code == 0
        assert "Slow outlier" in result.stdout
        assert "Timeout" in result.stdout
        assert "timing_outlier_slow" not in result.stdout

    def test_rich_output(self, run, session_file):
        result = run("insights", str(session_file))
        assert result.exit_code == 0
        assert "Micro goal" in result.stdout


class TestExportVerify:
    """Sealed packages verify; tampered ones exit 1."""

    def test_full_bundle_carries_saved_custom_pack_words(self, run, session_file, tmp_path):
        words = ["lamp", "river", "stone", "cloud", "bread", "door", "field", "glass", "hand", "iron", "key", "lake"]
        pack = tmp_path / "simulated.json"
        pack.write_text(json.dumps(dict(DEMO_10.to_dict(), id="simulated", version="1.0.0", words=words)))
        assert run("validate-pack", str(pack), "--save", "-o", "json").exit_code == 0

        result = run("export", str(session_file), "-f", "bundle", "-m", "full", "-d", str(tmp_path / "out"), "-o", "json")
        assert result.exit_code == 0
        with open(json.loads(result.stdout)["path"], encoding="utf-8") as fh:
            bundle = json.load(fh)
        assert bundle["stimulusPackSnapshot"]["words"] == words
        assert bundle["sessionResult"]["stimulusOrder"] != words

    @pytest.mark.parametrize("fmt", ["package", "csv"])
    def test_anonymize_rejected_outside_bundle(self, run, session_file, tmp_path, fmt):
        result = run("export", str(session_file), "-f", fmt, "--anonymize", "-d", str(tmp_path / "out"))
        assert result.exit_code == 2
        assert not (tmp_path / "out").exists()

    def test_verify_valid(self, run, package_file):
        result = run("verify", package_file, "-o", "json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["valid"] is True
        assert data["receipt"]["receipt_type"] == "verify"

    def test_verify_tampered(self, run, tampered_file):
        result = run("verify", str(tampered_file), "-o", "json")
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["valid"] is False
        assert data["expected"] != data["actual"]

    def test_package_filename(self, package_file):
        assert "cm_pkg_v1_full_" in package_file

    def test_mode_default_from_config(self, run, session_file, tmp_path):
        config = tmp_path / "mapper.yaml"
        config.write_text(yaml.safe_dump({"default_privacy_mode": "redacted"}))
        result = run("-c", str(config), "export", str(session_file), "-f", "bundle",
                     "-d", str(tmp_path / "out"), "-o", "json")
        data = json.loads(result.stdout)
        assert data["mode"] == "redacted"
        with open(data["path"], encoding="utf-8") as fh:
            bundle = json.load(fh)
        assert {t["association"]["response"] for t in bundle["sessionResult"]["trials"]} == {""}

    def test_csv(self, run, session_file, tmp_path):
        result = run("export", str(session_file), "-f", "csv", "-d", str(tmp_path / "out"), "-o", "json")
        data = json.loads(result.stdout)
        assert data["path"].endswith(".csv")
        assert data["digest"] is None

    def test_receipts_file(self, run, session_file, tmp_path):
        receipts = tmp_path / "receipts.jsonl"
        for _ in range(2):
            run("--receipts", str(receipts), "export", str(session_file), "-d", str(tmp_path / "out"), "-o", "json")
        lines = receipts.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["receipt_type"] == "export"

    def test_anonymize(self, run, session_file, tmp_path):
        exported = run("export", str(session_file), "-f", "bundle", "-d", str(tmp_path / "out"), "-o", "json")
        result = run("anonymize", json.loads(exported.stdout)["path"], "-o", "json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["sessionResult"]["id"].startswith("anon_")
        assert data["privacy"]["identifiersAnonymized"] is True


class TestInspectImport:
    """Integrity gates every import."""

    def test_inspect_valid(self, run, package_file):
        result = run("inspect", package_file, "-o", "json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["type"] == "package"
        assert ACTION_IMPORT_SESSION in data["actions"]

    def test_inspect_tampered(self, run, tampered_file):
        result = run("inspect", str(tampered_file), "-o", "json")
        assert result.exit_code == 1
        assert json.loads(result.stdout)["actions"] == [ACTION_BLOCKED]

    def test_import_twice_renames(self, run, package_file):
        first = run("import-session", package_file, "-o", "json")
        second = run("import-session", package_file, "-o", "json")
        assert first.exit_code == 0
        assert second.exit_code == 0
        first_id = json.loads(first.stdout)["sessionId"]
        second = json.loads(second.stdout)
        assert first_id == "sim_7"
        assert second["sessionId"] == f"sim_7__import_{second['importedFrom']['packageHash'][:8]}"
        assert second["importedFrom"]["originalSessionId"] == "sim_7"

    def test_import_tampered_blocked(self, run, tampered_file):
        result = run("import-session", str(tampered_file), "-o", "json")
        assert result.exit_code == 1
        assert "integrityResult" in json.loads(result.stdout)

    def test_import_bundle_has_no_session(self, run, session_file, tmp_path):
        exported = run("export", str(session_file), "-f", "bundle", "-d", str(tmp_path / "out"), "-o", "json")
        result = run("import-session", json.loads(exported.stdout)["path"], "-o", "json")
        assert result.exit_code == 2


class TestPacksAndWords:
    """validate-pack and hash-words."""

    def test_validate_and_save(self, run, tmp_path):
        pack = tmp_path / "pack.json"
        pack.write_text(json.dumps(dict(DEMO_10.to_dict(), id="mine")))
        result = run("validate-pack", str(pack), "--save", "-o", "json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["valid"] is True
        assert data["saved"] is True
        assert data["wordCount"] == 10

    def test_invalid_pack(self, run, tmp_path):
        pack = tmp_path / "pack.json"
        pack.write_text(json.dumps({"id": "x", "words": ["a", "a"]}))
        result = run("validate-pack", str(pack), "-o", "json")
        assert result.exit_code == 1
        codes = {e["code"] for e in json.loads(result.stdout)["errors"]}
        assert "DUPLICATE_WORDS" in codes

    def test_hash_args(self, run):
        result = run("hash-words", "alpha", "beta", "gamma", "-o", "json")
        assert result.exit_code == 0
        assert json.loads(result.stdout)["sha256"] == ALPHA_BETA_GAMMA

    def test_hash_file_lines(self, run, tmp_path):
        words = tmp_path / "words.txt"
        words.write_text("alpha\nbeta\ngamma\n")
        result = run("hash-words", "--file", str(words), "-o", "json")
        assert json.loads(result.stdout)["sha256"] == ALPHA_BETA_GAMMA

    def test_hash_matches_pack(self, run, tmp_path):
        words = tmp_path / "words.json"
        words.write_text(json.dumps(list(DEMO_10.words)))
        result = run("hash-words", "--file", str(words), "--pack", "demo-10@1.0.0", "-o", "json")
        assert result.exit_code == 0
        assert json.loads(result.stdout)["matches"] is True

    def test_hash_mismatch(self, run):
        result = run("hash-words", "alpha", "--pack", "demo-10@1.0.0", "-o", "json")
        assert result.exit_code == 1
        assert json.loads(result.stdout)["matches"] is False

    def test_unknown_pack(self, run):
        assert run("hash-words", "alpha", "--pack", "nope@1").exit_code == 1
