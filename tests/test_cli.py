"""
CLI smoke tests: flow.py driven through main(argv).
"""
import sys

import pytest
from loguru import logger

from flow import find_flow_file, main


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    # main() points loguru at the captured stderr; put the default sink back
    logger.remove()
    logger.add(sys.__stderr__)


def test_check_prints_graph_size(examples_dir, capsys):
    assert main(["check", str(examples_dir / "bugfix.flow")]) == 0
    assert "[CLI] OK: 5 nodes, 4 edges" in capsys.readouterr().out


def test_show_prints_the_tree(examples_dir, capsys):
    assert main(["show", str(examples_dir / "retry_loop.flow")]) == 0
    out = capsys.readouterr().out
    assert "[builder]" in out
    assert "↺ back to [builder]" in out


def test_dry_run(examples_dir, capsys):
    assert main(["run", str(examples_dir / "bugfix.flow"), "--dry-run", "--unattended"]) == 0
    out = capsys.readouterr().out
    assert "[CLI] Running:" in out
    assert "[CLI] status=completed" in out


def test_dry_run_with_registry(examples_dir, capsys):
    argv = ["run", str(examples_dir / "review.flow"), "--agents", str(examples_dir / "agents.json"),
            "--dry-run", "--unattended"]
    assert main(argv) == 0
    assert "[CLI] status=completed" in capsys.readouterr().out


def test_missing_file(capsys):
    assert main(["check", "no-such-workflow"]) == 1
    out = capsys.readouterr().out
    assert "Could not find flow file for 'no-such-workflow'" in out
    assert "no-such-workflow.flow" in out


def test_syntax_error(tmp_path, capsys):
    path = tmp_path / "broken.flow"
    path.write_text("a -> [b", encoding="utf-8")
    assert main(["check", str(path)]) == 1
    assert "[SyntaxError] (char 7)" in capsys.readouterr().out


def test_validation_error(tmp_path, capsys):
    path = tmp_path / "cycle.flow"
    path.write_text("a -> b -> a", encoding="utf-8")
    assert main(["check", str(path)]) == 1
    assert "[ValidationError]" in capsys.readouterr().out


def test_no_command_prints_help(capsys):
    assert main([]) == 1
    assert "usage" in capsys.readouterr().out.lower()


def test_find_flow_file_adds_extension(tmp_path, monkeypatch):
    (tmp_path / "deploy.flow").write_text("a", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    found, checked = find_flow_file("deploy")
    assert found.name == "deploy.flow"
    assert len(checked) == 4


def test_unknown_policy_is_rejected(examples_dir):
    with pytest.raises(SystemExit):
        main(["run", str(examples_dir / "bugfix.flow"), "--policy", "panic"])


def test_check_rejects_misspelled_step_without_agents_flag(tmp_path, capsys):
    path = tmp_path / "typo.flow"
    path.write_text("analzyer -> debugger", encoding="utf-8")
    (tmp_path / "agents.json").write_text('{"agents": [{"name": "analyzer"}]}', encoding="utf-8")
    assert main(["check", str(path)]) == 1
    out = capsys.readouterr().out
    assert "[ValidationError]" in out
    assert "Did you mean 'analyzer'?" in out


def test_agents_file_from_environment(tmp_path, examples_dir, monkeypatch, capsys):
    path = tmp_path / "build.flow"
    path.write_text("builder -> tester", encoding="utf-8")
    monkeypatch.setenv("AGENTFLOW_AGENTS", str(examples_dir / "agents.json"))
    assert main(["check", str(path)]) == 0
    assert "[CLI] OK: 2 nodes, 1 edges" in capsys.readouterr().out


def test_no_step_check_flag(tmp_path, capsys):
    path = tmp_path / "free.flow"
    path.write_text("anything -> goes", encoding="utf-8")
    assert main(["check", str(path), "--no-step-check"]) == 0
    assert "[CLI] OK: 2 nodes, 1 edges" in capsys.readouterr().out
