import json
from datetime import date

import pandas as pd
import pytest

from greencard.cli import main
from greencard.composer import generate_paths
from greencard.path_summary import generate_path_summaries, print_path_summary_table
from greencard.utils import load_json, paths_to_dataframe, save_paths_csv


@pytest.fixture
def paths(indian_h1b_profile, resolver, velocity_model, bulletin, config):
    return generate_paths(indian_h1b_profile, resolver, velocity_model, bulletin, config)


def _write(tmp_path, name, data):
    target = tmp_path / name
    target.write_text(json.dumps(data))
    return str(target)


def test_missing_json_is_empty(tmp_path):
    assert load_json(str(tmp_path / "nope.json")) == {}


def test_paths_export(paths, tmp_path):
    frame = paths_to_dataframe(paths)
    assert len(frame) == sum(len(p.stages) for p in paths)
    assert set(frame['path_id']) == {p.path_id for p in paths}

    output = tmp_path / "out" / "paths.csv"
    save_paths_csv(paths, str(output))
    assert len(pd.read_csv(output)) == len(frame)


def test_path_summaries(paths, capsys):
    summaries = generate_path_summaries(paths)
    assert [s.rank for s in summaries] == list(range(1, len(paths) + 1))
    perm = next(s for s in summaries if s.path_id == "h1b_direct_perm_route")
    assert perm.queue_wait_months > 0
    assert perm.has_lottery

    print_path_summary_table(summaries, "india")
    assert "GREEN CARD PATHS: INDIA" in capsys.readouterr().out

    print_path_summary_table([])
    assert "No eligible paths" in capsys.readouterr().out


def test_track_command_writes_csv(tmp_path):
    case = _write(tmp_path, "case.json", {"route": "perm", "countryOfBirth": "india",
                                          "permFiledDate": "2024-03-01"})
    output = tmp_path / "track.csv"
    main(["track", "--case", case, "--as-of", "2025-01-01", "--output", str(output)])

    frame = pd.read_csv(output)
    assert frame['stage_id'].iloc[0] == "perm"
    assert frame['stage_id'].iloc[-1] == "gc"


def test_paths_command_with_profile(tmp_path, capsys):
    profile = _write(tmp_path, "profile.json", {"currentStatus": "tn", "education": "bachelors",
                                                "experience": "2to5", "countryOfBirth": "canada"})
    output = tmp_path / "paths.csv"
    main(["paths", "--profile", profile, "--now", date(2025, 1, 1).isoformat(), "--output", str(output),
          "--show-stages", "1"])

    assert output.exists()
    assert "GREEN CARD PATH FORECAST" in capsys.readouterr().out


def test_progress_command_filters_path(tmp_path, capsys):
    profile = _write(tmp_path, "profile.json", {"currentStatus": "h1b", "education": "masters",
                                                "countryOfBirth": "india"})
    progress = _write(tmp_path, "progress.json", {"stages": {"pwd": {"status": "approved"}},
                                                  "portedPriorityDate": "2015-01-01"})
    main(["progress", "--profile", profile, "--progress", progress, "--path-id", "h1b_direct_perm_route",
          "--as-of", "2025-01-01", "--output", str(tmp_path / "unused.csv")])

    out = capsys.readouterr().out
    assert "REMAINING:" in out
    assert "Effective priority date: 2015-01-01" in out


def test_invalid_as_of_exits(tmp_path):
    case = _write(tmp_path, "case.json", {})
    with pytest.raises(SystemExit) as excinfo:
        main(["track", "--case", case, "--as-of", "someday"])
    assert excinfo.value.code == 1
