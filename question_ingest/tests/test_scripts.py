import json

from question_ingest.core.arbiter import ArbiterConfig
from question_ingest.scripts import goldset_eval, subject_diagnostics

ENGLISH_ITEM = (
    "There are reports coming in that a number of people have been injured in a terrorist ___ . "
    "(A) access (B) supply (C) attack (D) burden"
)
MATH_ITEM = "In triangle ABC, angle A = 60°, AB = 4 and AC = 6. Find BC."
CHINESE_ITEM = "下列關於清代臺灣歷史的敘述，何者正確？"
CLOZE = (
    "Coffee culture (1) in many cities since the 1970s. People (2) meet friends in cafes.\n"
    "(1) (A) grows (B) has grown (C) grew (D) growing\n"
    "(2) (A) often (B) never (C) hardly (D) rarely"
)


def test_diagnose_reports_routing_trail():
    report = subject_diagnostics.diagnose(MATH_ITEM, ArbiterConfig())
    assert report["guard"]["subject"] == "math"
    assert report["subject_hint"] == "math"
    assert report["chosen"] == ["math"]
    assert len(report["experts"]) == 5
    json.dumps(report, ensure_ascii=False)


def test_subject_diagnostics_main_json(capsys):
    assert subject_diagnostics.main(["--json", ENGLISH_ITEM]) == 0
    lines = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.strip()]
    assert len(lines) == 1
    assert lines[0]["subject_hint"] == "english"


def test_subject_diagnostics_main_samples(capsys):
    assert subject_diagnostics.main(["--threshold", "0.99"]) == 0
    out = capsys.readouterr().out
    assert out.count("Guard:") == len(subject_diagnostics.SAMPLES)


def _write_goldset(tmp_path):
    path = tmp_path / "gold.jsonl"
    rows = [
        {"id": "en", "text": ENGLISH_ITEM, "subject": "english"},
        {"id": "ma", "text": MATH_ITEM, "subject": "math"},
        {"id": "zh", "text": CHINESE_ITEM, "subject": "chinese"},
        {"id": "cl", "text": CLOZE, "kind": "cloze"},
    ]
    lines = ["# comment", ""] + [json.dumps(r, ensure_ascii=False) for r in rows]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def test_evaluate_goldset(tmp_path):
    items = goldset_eval.load_goldset(_write_goldset(tmp_path))
    assert [i.id for i in items] == ["en", "ma", "zh", "cl"]

    summary = goldset_eval.evaluate(items, ArbiterConfig())
    assert summary.total == 4
    assert (summary.subject_correct, summary.subject_total) == (2, 3)
    assert (summary.kind_correct, summary.kind_total) == (1, 1)
    assert summary.subject_confusion == {"chinese->unknown": 1}
    assert summary.misses == [{"id": "zh", "subject": {"expected": "chinese", "predicted": "unknown"}}]
    assert summary.to_dict()["kind_accuracy"] == 1.0


def test_goldset_main_writes_report(tmp_path, capsys):
    out = tmp_path / "report.json"
    assert goldset_eval.main(["--goldset", str(_write_goldset(tmp_path)), "--output", str(out)]) == 0
    report = json.loads(out.read_text(encoding="utf-8"))
    assert report["subject_total"] == 3
    assert "subject:  2/3" in capsys.readouterr().out
