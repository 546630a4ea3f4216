import csv
import json

import numpy as np
import pytest

import campy_qmra

from campy_qmra import (
    run_simulation,
    summarize,
    interpret,
    print_percentile_table,
    quick_sensitivity,
    main,
    ModelInputs,
    DEFAULT_PROBS,
)


def make_results(seed=123):
    return run_simulation(ModelInputs(n_people=200, n_trials=400, seed=seed))


def test_summarize_schema():
    res = make_results()
    summ = summarize(res)
    assert set(summ.keys()) == {"overall", "percentiles", "settings"}
    assert len(summ["percentiles"]) == len(DEFAULT_PROBS) == 41
    assert summ["percentiles"][0]["infected"] == res.outcomes.min()
    assert summ["percentiles"][-1]["infected"] == res.outcomes.max()
    values = [row["infected"] for row in summ["percentiles"]]
    assert all(a <= b for a, b in zip(values, values[1:]))
    assert 0.0 <= summ["overall"]["p_any_infected"] <= 1.0
    assert summ["settings"]["seed_entropy"] == 123
    # JSON-serializable
    json.loads(json.dumps(summ))


def test_interpret_bands():
    assert interpret(0.05).startswith("Very low")
    assert interpret(0.5).startswith("Low")
    assert interpret(2.0).startswith("Moderate")
    assert interpret(12.0).startswith("High")


def test_print_percentile_table(capsys):
    summ = summarize(make_results())
    print_percentile_table(summ)
    out = capsys.readouterr().out
    assert "Infections per 200 swimmers" in out
    assert "97.5%" in out


def test_quick_sensitivity_labels():
    sens = quick_sensitivity(ModelInputs(n_people=50, n_trials=50, seed=1))
    labels = [label for label, _ in sens]
    assert labels[0] == "independent sites"
    assert "duration x2" in labels
    assert all("overall" in s for _, s in sens)


def test_cli_writes_reports(tmp_path, capsys):
    jpath = tmp_path / "summary.json"
    cpath = tmp_path / "outcomes.csv"
    rc = main([
        "--people", "100", "--trials", "60", "--seed", "5",
        "--ecoli_table", "50:40,80:540,95:1000", "--ecoli_count", "540",
        "--report_json", str(jpath), "--outcomes_csv", str(cpath),
    ])
    assert rc == 0
    out = capsys.readouterr().out
    assert "Simulated 60 trials of 100 swimmers" in out
    assert "Risk at E. coli 540/100ml" in out

    loaded = json.loads(jpath.read_text(encoding="utf-8"))
    assert loaded["overall"]["n_trials"] == 60
    assert loaded["indicator"]["counts"] == [40.0, 540.0, 1000.0]
    assert loaded["indicator"]["query"]["risk_pct"] == pytest.approx(loaded["indicator"]["risks"][1])

    with cpath.open("r", encoding="utf-8") as f:
        reader = csv.reader(f)
        assert next(reader) == ["trial", "infected"]
        rows = list(reader)
    assert len(rows) == 60
    assert all(0 <= int(k) <= 100 for _, k in rows)


def test_cli_same_seed_same_outcomes(tmp_path):
    paths = [tmp_path / "a.csv", tmp_path / "b.csv"]
    for p in paths:
        main(["--people", "50", "--trials", "40", "--seed", "3", "--outcomes_csv", str(p)])
    assert paths[0].read_text() == paths[1].read_text()


@pytest.mark.parametrize("argv", [
    ["--people", "0"],
    ["--trials", "-3"],
    ["--duration", "min=2,mode=1,max=3"],
    ["--breaks", "0,5,1"],
    ["--alpha", "-1"],
    ["--ecoli_count", "100"],
    ["--seed", "-1"],
    ["--log_level", "loud"],
])
def test_cli_rejects_bad_configuration(argv):
    with pytest.raises(SystemExit) as exc:
        main(["--trials", "5"] + argv)
    assert exc.value.code == 2


def test_cli_rejects_bad_ecoli_table_before_simulating(monkeypatch):
    def fail(inputs):
        raise AssertionError("simulation should not start")

    monkeypatch.setattr(campy_qmra, "run_simulation", fail)
    with pytest.raises(SystemExit) as exc:
        main(["--trials", "5", "--ecoli_table", "80:540,50:40"])
    assert exc.value.code == 2


def test_cli_accepts_lowercase_log_level(capsys):
    assert main(["--people", "10", "--trials", "5", "--seed", "1", "--log_level", "info"]) == 0
