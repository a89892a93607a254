import json

import pytest

import learn
from ingest import IngestionPipeline
from store import ReviewStore


@pytest.mark.parametrize(
    "answer, expected",
    [("4", 4), (" 0 ", 0), ("q", "quit"), ("EXIT", "quit"), ("s", "skip"), ("6", None), ("x", None), ("", None)],
)
def test_parse_quality(answer, expected):
    assert learn.parse_quality(answer) == expected


def test_summary_line():
    assert learn.summary_line({"reviewed": 4, "passed": 3, "skipped": 1}) == (
        "Reviewed 4, remembered 3, skipped 1 (75.0% recall)."
    )
    assert "0.0% recall" in learn.summary_line({"reviewed": 0, "passed": 0, "skipped": 0})


def write_lesson(path, **overrides):
    data = {
        "topic": "Küche",
        "language": "german",
        "proficiency": "B1",
        "vocabulary": [
            {"word": "Topf", "type": "noun", "meaning": "nồi", "definition": "Ein Gefäß zum Kochen."},
            {"word": "kochen", "type": "verb", "meaning": "nấu"},
        ],
    }
    data.update(overrides)
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_import_command(tmp_path, capsys):
    lesson = write_lesson(tmp_path / "lesson.json")
    db_path = tmp_path / "cli.db"
    assert learn.main(["--db", str(db_path), "import", str(lesson), "--owner", "ana"]) == 0
    assert "2 created, 0 skipped" in capsys.readouterr().out

    assert learn.main(["--db", str(db_path), "import", str(lesson), "--owner", "ana"]) == 0
    assert "0 created, 2 skipped" in capsys.readouterr().out


def test_import_command_rejects_bad_file(tmp_path, capsys):
    lesson = write_lesson(tmp_path / "lesson.json", proficiency="Z1")
    assert learn.main(["--db", str(tmp_path / "cli.db"), "import", str(lesson), "--owner", "ana"]) == 2
    assert "Invalid lesson file" in capsys.readouterr().out


def test_practice_loop_grades_and_skips(database, monkeypatch, capsys):
    with database.connect() as conn:
        lesson = {"word": "Topf", "type": "noun", "meaning": "nồi"}
        IngestionPipeline(conn).ingest("ana", "Küche", "german", "A1", [lesson, {**lesson, "word": "Herd"}])
        answers = iter(["", "5", "", "s"])
        monkeypatch.setattr("builtins.input", lambda prompt="": next(answers))

        tally = learn.practice_loop(conn, "ana", None)
        assert tally == {"reviewed": 1, "passed": 1, "skipped": 1}
        assert len(ReviewStore(conn).due_flashcards("ana")) == 1
    assert "Next review in 1 day(s)." in capsys.readouterr().out
