import json

import pytest

from clusterwms.cli import build_parser, main


@pytest.fixture
def workflow_file(tmp_path):
    path = tmp_path / "workflow.json"
    path.write_text(json.dumps({
        "tasks": [
            {"id": "a", "flops": 6e10},
            {"id": "b", "flops": 6e10},
            {"id": "c", "flops": 1e9, "parents": ["a", "b"]},
        ]
    }))
    return str(path)


def test_plan_static(workflow_file, capsys):
    assert main(["plan", workflow_file, "--clustering-spec", "hc-2-2"]) == 0

    plan = json.loads(capsys.readouterr().out)
    assert len(plan) == 1
    entry = plan[0]
    assert entry["reservation"] == "pilot_job_1"
    assert entry["levels"] == [0, 0]
    assert entry["nodes"] == 2
    assert entry["tasks"] == ["a", "b"]
    assert entry["runtime"] == 60.0
    # 66s with the default fudge factor
    assert entry["service_args"] == {"-N": "2", "-c": "1", "-t": "2"}


def test_plan_ratio_search(workflow_file, capsys):
    assert main(["plan", workflow_file, "--clustering-spec", "zhang", "--hosts", "4"]) == 0

    # A constant wait never gets worse relative to a growing runtime
    *entries, marker = json.loads(capsys.readouterr().out)
    assert marker == {"individual_mode": True}
    assert sorted(e["tasks"][0] for e in entries) == ["a", "b"]
    assert all(e["nodes"] == 1 and e["runtime"] == 60.0 for e in entries)


def test_plan_individual_mode(workflow_file, capsys):
    assert main([
        "plan", workflow_file, "--clustering-spec", "zhang", "--queue-wait", "1e6",
    ]) == 0

    plan = json.loads(capsys.readouterr().out)
    assert plan[-1] == {"individual_mode": True}
    assert sorted(e["tasks"][0] for e in plan[:-1]) == ["a", "b"]


def test_invalid_spec(workflow_file, capsys):
    assert main(["plan", workflow_file, "--clustering-spec", "hc-1"]) == 2
    assert "Invalid clustering spec" in capsys.readouterr().err


def test_plimit_violation(workflow_file, capsys):
    rc = main(["plan", workflow_file, "--clustering-spec", "zhang", "--hosts", "1", "--plimit"])
    assert rc == 2
    assert "more than the 1 hosts" in capsys.readouterr().err


def test_no_command(capsys):
    assert main([]) == 1
    assert "plan" in capsys.readouterr().out


def test_parser_defaults():
    args = build_parser().parse_args(["plan", "wf.json"])
    assert args.hosts == 16
    assert args.queue_wait == 0.0
    assert args.clustering_spec is None
