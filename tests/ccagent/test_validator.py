"""Tests for the constitutional validator."""

import json
import subprocess
from pathlib import Path

import pytest

from ccagent.errors import (
    AgentInvocationFailed,
    CommandFailed,
    OutputLimitExceeded,
    ValidationError,
)
from ccagent.state.git import GitClient
from ccagent.validator import (
    NO_DIFF_REASON,
    ConstitutionValidator,
    DiffPayload,
    DiffSource,
    build_check_prompt,
    get_diff_payload,
    normalize_verdict,
)


@pytest.fixture
def git_repo(tmp_path: Path):
    """Create a temporary git repository with one commit."""
    repo_path = tmp_path / "repo"
    repo_path.mkdir()
    for args in (
        ["init"],
        ["config", "user.email", "test@test.com"],
        ["config", "user.name", "Test User"],
    ):
        subprocess.run(["git"] + args, cwd=repo_path, capture_output=True, check=True)
    (repo_path / "app.py").write_text("print('v1')\n")
    subprocess.run(["git", "add", "."], cwd=repo_path, capture_output=True, check=True)
    subprocess.run(
        ["git", "commit", "-m", "Initial commit"], cwd=repo_path, capture_output=True, check=True
    )
    return repo_path


class StaticDiffs:
    """DiffReader serving fixed diffs, or raising from the working-tree read."""

    def __init__(self, cwd: Path, staged="", working="", latest="", error=None):
        self.cwd = cwd
        self.staged = staged
        self.working = working
        self.latest = latest
        self.error = error

    def staged_diff(self):
        return self.staged

    def worktree_diff(self):
        if self.error is not None:
            raise self.error
        return self.working

    def latest_commit_patch(self):
        return self.latest


class RecordingAgent:
    """Agent stub returning canned output and recording prompts."""

    name = "fake"

    def __init__(self, output="", error=None):
        self.output = output
        self.error = error
        self.calls = []

    def run(self, prompt, workdir=None, auto_approve=True):
        self.calls.append({"prompt": prompt, "workdir": workdir, "auto_approve": auto_approve})
        if self.error is not None:
            raise self.error
        return self.output


class TestGetDiffPayload:
    """Tests for diff source selection."""

    def test_staged_wins(self, git_repo: Path):
        """WHEN staged and unstaged changes exist THEN the staged diff is used."""
        (git_repo / "app.py").write_text("print('staged')\n")
        subprocess.run(["git", "add", "app.py"], cwd=git_repo, check=True)
        (git_repo / "app.py").write_text("print('unstaged')\n")

        payload = get_diff_payload(GitClient(cwd=git_repo))

        assert payload.source == DiffSource.STAGED
        assert "+print('staged')" in payload.diff

    def test_working_tree_next(self, git_repo: Path):
        (git_repo / "new_module.py").write_text("X = 1\n")
        payload = get_diff_payload(GitClient(cwd=git_repo))
        assert payload.source == DiffSource.WORKING_TREE
        assert "new_module.py" in payload.diff

    def test_latest_commit_when_clean(self, git_repo: Path):
        """WHEN the worktree is clean THEN HEAD's patch is used."""
        payload = get_diff_payload(GitClient(cwd=git_repo))
        assert payload.source == DiffSource.LATEST_COMMIT
        assert "+print('v1')" in payload.diff

    def test_non_ascii_new_file_is_working_tree(self, git_repo: Path):
        """WHEN the only change is a new non-ASCII file THEN HEAD is not judged instead."""
        (git_repo / "café.py").write_text("X = 1\n", encoding="utf-8")
        payload = get_diff_payload(GitClient(cwd=git_repo))
        assert payload.source == DiffSource.WORKING_TREE
        assert "+X = 1" in payload.diff
        assert "print('v1')" not in payload.diff

    def test_none_without_commits(self, tmp_path: Path):
        """WHEN the repo has no commits and no changes THEN source is none."""
        subprocess.run(["git", "init"], cwd=tmp_path, capture_output=True, check=True)
        payload = get_diff_payload(GitClient(cwd=tmp_path))
        assert payload.source == DiffSource.NONE
        assert payload.diff == ""


class TestNormalizeVerdict:
    """Tests for normalize_verdict()."""

    def test_pass(self):
        verdict = normalize_verdict({"result": "PASS", "reasoning": ["fine"]})
        assert verdict.passed is True
        assert verdict.result == "PASS"
        assert verdict.reasoning == ["fine"]

    def test_result_is_case_insensitive(self):
        assert normalize_verdict({"result": " pass "}).passed is True

    @pytest.mark.parametrize(
        "raw",
        [
            {"result": "FAIL"},
            {"result": "maybe"},
            {"result": None},
            {},
            [],
            "PASS",
            None,
        ],
    )
    def test_anything_but_pass_fails(self, raw):
        """WHEN result is not PASS THEN the verdict fails."""
        verdict = normalize_verdict(raw)
        assert verdict.passed is False
        assert verdict.result == "FAIL"

    def test_malformed_fields_are_dropped(self):
        """WHEN optional fields have wrong types THEN they default."""
        verdict = normalize_verdict(
            {"result": "FAIL", "reasoning": "one string", "violations": {}, "amendment_suggestion": 3}
        )
        assert verdict.reasoning == []
        assert verdict.violations == []
        assert verdict.amendment_suggestion == ""

    def test_violations_are_normalized(self):
        verdict = normalize_verdict(
            {
                "result": "FAIL",
                "violations": [
                    {"reference": "invariant 2", "explanation": "global state"},
                    "bare string",
                    {"reference": None},
                ],
            }
        )
        assert verdict.violations[0].reference == "invariant 2"
        assert verdict.violations[0].explanation == "global state"
        assert verdict.violations[1].explanation == "bare string"
        assert verdict.violations[2].reference == ""

    def test_source_is_carried(self):
        verdict = normalize_verdict({"result": "PASS"}, DiffSource.STAGED)
        assert verdict.source == DiffSource.STAGED


class TestBuildCheckPrompt:
    def test_includes_constitution_source_and_diff(self):
        payload = DiffPayload(diff="+added line", source=DiffSource.WORKING_TREE)
        prompt = build_check_prompt("### CONSTITUTION.md\n\nBe kind", payload)
        assert "Diff source: working tree changes" in prompt
        assert "Be kind" in prompt
        assert "+added line" in prompt
        assert '"result": "PASS" | "FAIL"' in prompt


class TestConstitutionValidator:
    """Tests for ConstitutionValidator.validate()."""

    def test_pass_verdict(self, git_repo: Path):
        """WHEN the agent answers PASS THEN the verdict passes with the diff source."""
        (git_repo / "app.py").write_text("print('v2')\n")
        agent = RecordingAgent('Here:\n```json\n{"result": "PASS", "reasoning": ["ok"]}\n```')

        verdict = ConstitutionValidator(agent, GitClient(cwd=git_repo), "rules").validate()

        assert verdict.passed is True
        assert verdict.source == DiffSource.WORKING_TREE
        assert len(agent.calls) == 1
        assert agent.calls[0]["workdir"] == git_repo
        assert "+print('v2')" in agent.calls[0]["prompt"]

    def test_fail_verdict(self, git_repo: Path):
        (git_repo / "app.py").write_text("print('v2')\n")
        agent = RecordingAgent(
            json.dumps({"result": "FAIL", "reasoning": ["breaks invariant"], "violations": []})
        )
        verdict = ConstitutionValidator(agent, GitClient(cwd=git_repo), "rules").validate()
        assert verdict.passed is False
        assert verdict.reasoning == ["breaks invariant"]

    def test_no_diff_auto_passes_without_agent(self, tmp_path: Path):
        """WHEN there is nothing to validate THEN PASS without calling the agent."""
        subprocess.run(["git", "init"], cwd=tmp_path, capture_output=True, check=True)
        agent = RecordingAgent("unused")

        verdict = ConstitutionValidator(agent, GitClient(cwd=tmp_path), "rules").validate()

        assert verdict.passed is True
        assert verdict.reasoning == [NO_DIFF_REASON]
        assert verdict.source == DiffSource.NONE
        assert agent.calls == []

    def test_agent_failure_is_validation_error(self, git_repo: Path):
        """WHEN the agent fails THEN ValidationError is raised."""
        agent = RecordingAgent(error=AgentInvocationFailed("codex failed (1): boom", status=1))
        with pytest.raises(ValidationError) as exc_info:
            ConstitutionValidator(agent, GitClient(cwd=git_repo), "rules").validate()
        assert "boom" in str(exc_info.value)

    def test_unparseable_output_is_validation_error(self, git_repo: Path):
        """WHEN the agent answers without JSON THEN ValidationError is raised."""
        agent = RecordingAgent("I think it looks fine.")
        with pytest.raises(ValidationError):
            ConstitutionValidator(agent, GitClient(cwd=git_repo), "rules").validate()

    def test_validate_does_not_modify_repo(self, git_repo: Path):
        """WHEN validating working tree changes THEN nothing is staged or committed."""
        (git_repo / "extra.py").write_text("Y = 2\n")
        client = GitClient(cwd=git_repo)
        before = client.status_porcelain()
        head = client.short_head()

        ConstitutionValidator(RecordingAgent('{"result": "PASS"}'), client, "rules").validate()

        assert client.status_porcelain() == before
        assert client.short_head() == head

    def test_oversized_diff_is_validation_error(self, tmp_path: Path):
        """WHEN git output exceeds the capture bound THEN ValidationError is raised."""
        error = OutputLimitExceeded(["git", "diff"], 0, "Output exceeded 100 bytes")
        agent = RecordingAgent('{"result": "PASS"}')

        with pytest.raises(ValidationError) as exc_info:
            ConstitutionValidator(agent, StaticDiffs(tmp_path, error=error), "rules").validate()

        assert "Could not read diff" in str(exc_info.value)
        assert exc_info.value.original_error is error
        assert agent.calls == []

    def test_git_failure_is_validation_error(self, tmp_path: Path):
        error = CommandFailed(["git", "diff", "--no-index"], 128, "fatal: bad path")
        with pytest.raises(ValidationError):
            ConstitutionValidator(
                RecordingAgent(), StaticDiffs(tmp_path, error=error), "rules"
            ).validate()

    def test_any_diff_reader(self, tmp_path: Path):
        """WHEN given a non-git DiffReader THEN its diffs and cwd are used."""
        agent = RecordingAgent('{"result": "PASS"}')
        reader = StaticDiffs(tmp_path, latest="diff --git a/x b/x\n+latest\n")

        verdict = ConstitutionValidator(agent, reader, "rules").validate()

        assert verdict.source == DiffSource.LATEST_COMMIT
        assert agent.calls[0]["workdir"] == tmp_path
        assert "+latest" in agent.calls[0]["prompt"]
