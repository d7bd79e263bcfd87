"""
Tests for the strata CLI

Tests verify:
- Each command's text and --json output
- Exit codes (0 ok, 1 not found / unreadable, 2 bad config)
- Project directory from --project or STRATA_PROJECT_PATH
"""

import io

import orjson
import pytest

from strata import __version__
from strata.cli import main


LOOP_CODE = '''codeunit 50100 "Order Totals"
{
    procedure Sum()
    begin
        if SalesLine.FindSet() then
            repeat
                Total += SalesLine.Amount;
            until SalesLine.Next() = 0;
    end;
}
'''


@pytest.fixture
def project(strata_factory):
    """Project whose config points at the three sample layers."""
    strata_factory.create_sample_layers()
    strata_factory.write_config({
        "layers": [
            {"name": name, "priority": priority,
             "source": {"type": "local", "path": str(strata_factory.layer_dir(name))}}
            for name, priority in (("base", 10), ("team", 20), ("project", 100))
        ],
    })
    return strata_factory


def run(project, capsys, *args):
    code = main(["--project", str(project.project_dir), "--user-dir", str(project.user_dir), *args])
    captured = capsys.readouterr()
    return code, captured.out, captured.err


class TestEntryPoint:
    """Arguments before the command."""

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "usage: strata" in capsys.readouterr().out

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main(["--version"])
        assert excinfo.value.code == 0
        assert f"strata {__version__}" in capsys.readouterr().out

    def test_project_from_environment(self, project, capsys, monkeypatch):
        monkeypatch.setenv("STRATA_PROJECT_PATH", str(project.project_dir))
        assert main(["--user-dir", str(project.user_dir), "overrides"]) == 0
        assert "performance/findset-vs-findfirst" in capsys.readouterr().out

    def test_invalid_config_exits_2(self, strata_factory, capsys):
        strata_factory.write_config({"layers": [{"name": "x", "priority": 5000,
                                                 "source": {"type": "local", "path": "k"}}]})
        code, _, err = run(strata_factory, capsys, "layers")
        assert code == 2
        assert "layers[0].priority" in err


class TestLayers:
    """strata layers"""

    def test_text(self, project, capsys):
        code, out, _ = run(project, capsys, "layers")
        assert code == 0
        lines = out.splitlines()
        assert [line.split()[1] for line in lines] == ["project", "team", "base"]
        assert "4 topics, 1 specialists" in lines[2]

    def test_json(self, project, capsys):
        code, out, _ = run(project, capsys, "--json", "layers")
        data = orjson.loads(out)
        assert code == 0
        assert [layer["name"] for layer in data["layers"]] == ["project", "team", "base"]
        assert all(result["success"] for result in data["load_results"])


class TestResolve:
    """strata resolve"""

    def test_override_trail(self, project, capsys):
        code, out, _ = run(project, capsys, "resolve", "performance/findset-vs-findfirst")
        assert code == 0
        assert "performance/findset-vs-findfirst: FindSet vs FindFirst (project)" in out
        assert "source layer: project" in out
        assert "overrides:    team, base" in out

    def test_content(self, project, capsys):
        _, out, _ = run(project, capsys, "resolve", "performance/setloadfields", "--content")
        assert "Guidance for performance/setloadfields." in out

    def test_json(self, project, capsys):
        _, out, _ = run(project, capsys, "--json", "resolve", "performance/findset-vs-findfirst")
        data = orjson.loads(out)
        assert data["source_layer"] == "project"
        assert data["overridden_layers"] == ["team", "base"]
        assert data["topic"]["title"] == "FindSet vs FindFirst (project)"

    def test_missing_topic(self, project, capsys):
        code, _, err = run(project, capsys, "resolve", "performance/nope")
        assert code == 1
        assert "Topic not found: performance/nope" in err


class TestSearch:
    """strata search / strata analyze"""

    def test_search(self, project, capsys):
        code, out, _ = run(project, capsys, "search", "validation", "testfield")
        assert code == 0
        assert "1.00  error-handling/testfield  Validation with TestField" in out

    def test_search_no_hits(self, project, capsys):
        _, out, _ = run(project, capsys, "search", "gardening")
        assert "No relevant topics." in out

    def test_search_json_with_limit(self, project, capsys):
        _, out, _ = run(project, capsys, "--json", "search", "findset", "calcfields", "-n", "1")
        assert len(orjson.loads(out)) == 1

    def test_search_domain_filter(self, project, capsys):
        _, out, _ = run(project, capsys, "--json", "search", "findset", "testfield", "--domain", "error-handling")
        assert [m["topic_id"] for m in orjson.loads(out)] == ["error-handling/testfield"]

    def test_search_rejects_unknown_difficulty(self, project, capsys):
        with pytest.raises(SystemExit):
            run(project, capsys, "search", "findset", "--difficulty", "legendary")

    def test_analyze_file(self, project, capsys, tmp_path):
        source = tmp_path / "Totals.Codeunit.al"
        source.write_text(LOOP_CODE, encoding="utf-8")

        code, out, _ = run(project, capsys, "analyze", str(source))

        assert code == 0
        assert "Object type: codeunit" in out
        assert "Constructs:  FindSet, Next, repeat, until" in out
        assert "performance/findset-vs-findfirst" in out

    def test_analyze_stdin(self, project, capsys, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO(LOOP_CODE))
        _, out, _ = run(project, capsys, "--json", "analyze", "-")
        data = orjson.loads(out)
        assert data["characteristics"]["object_type"] == "codeunit"
        assert data["matches"][0]["topic_id"] == "performance/findset-vs-findfirst"

    def test_analyze_unreadable_file(self, project, capsys, tmp_path):
        code, _, err = run(project, capsys, "analyze", str(tmp_path / "missing.al"))
        assert code == 1
        assert "Cannot read" in err


class TestSuggest:
    """strata suggest"""

    def test_by_name(self, project, capsys):
        code, out, _ = run(project, capsys, "suggest", "ask", "dean")
        assert code == 0
        assert "**Dean Debug** (95% match)" in out

    def test_defaults(self, project, capsys):
        _, out, _ = run(project, capsys, "--json", "suggest")
        data = orjson.loads(out)
        assert [s["specialist_id"] for s in data] == ["sam-coder"]
        assert data[0]["match_type"] == "default"

    def test_current_domain(self, project, capsys):
        _, out, _ = run(project, capsys, "--json", "suggest", "zzzz", "--domain", "performance")
        data = orjson.loads(out)
        assert {s["specialist_id"] for s in data} == {"sam-coder", "dean-debug"}


class TestOverrides:
    """strata overrides"""

    def test_text(self, project, capsys):
        _, out, _ = run(project, capsys, "overrides")
        assert "performance/findset-vs-findfirst: project > team > base" in out

    def test_none(self, strata_factory, capsys):
        strata_factory.add_topic("only", "performance/solo")
        strata_factory.write_config({"layers": [
            {"name": "only", "priority": 10, "source": {"type": "local", "path": str(strata_factory.layer_dir("only"))}},
        ]})
        _, out, _ = run(strata_factory, capsys, "overrides")
        assert "No overridden topics." in out
