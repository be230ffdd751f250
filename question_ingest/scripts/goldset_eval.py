#!/usr/bin/env python3
"""
Score subject routing and question-set detection against a labelled goldset.

Goldset format (JSONL), one object per line:
    {"id": "q1", "text": "...", "subject": "english", "kind": "cloze"}

`subject` and `kind` are both optional; a line is scored on the labels it has.

Usage:
    python -m question_ingest.scripts.goldset_eval --goldset goldset.jsonl
    python -m question_ingest.scripts.goldset_eval --goldset goldset.jsonl --output report.json
"""

from __future__ import annotations

import argparse
import json
import sys
from collections import Counter
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

# Add repository root to path so `import question_ingest` works when executed as a file.
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from question_ingest.core.arbiter import ArbiterConfig, arbitrate
from question_ingest.core.question_set import analyse_question_set
from question_ingest.utils.logging_setup import configure_logging_from_settings


@dataclass
class GoldItem:
    id: str
    text: str
    subject: Optional[str] = None
    kind: Optional[str] = None


@dataclass
class EvalSummary:
    total: int = 0
    subject_total: int = 0
    subject_correct: int = 0
    kind_total: int = 0
    kind_correct: int = 0
    subject_confusion: Dict[str, int] = field(default_factory=dict)
    kind_confusion: Dict[str, int] = field(default_factory=dict)
    misses: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def subject_accuracy(self) -> Optional[float]:
        return self.subject_correct / self.subject_total if self.subject_total else None

    @property
    def kind_accuracy(self) -> Optional[float]:
        return self.kind_correct / self.kind_total if self.kind_total else None

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["subject_accuracy"] = self.subject_accuracy
        out["kind_accuracy"] = self.kind_accuracy
        return out


def load_goldset(path: Path) -> List[GoldItem]:
    items: List[GoldItem] = []
    with path.open("r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError as e:
                raise SystemExit(f"{path}:{lineno}: invalid JSON ({e})")
            if not isinstance(obj, dict) or not isinstance(obj.get("text"), str):
                raise SystemExit(f"{path}:{lineno}: expected an object with a string `text`")
            items.append(
                GoldItem(
                    id=str(obj.get("id") or f"line{lineno}"),
                    text=obj["text"],
                    subject=obj.get("subject"),
                    kind=obj.get("kind"),
                )
            )
    return items


def evaluate(items: List[GoldItem], config: Optional[ArbiterConfig] = None) -> EvalSummary:
    cfg = config or ArbiterConfig()
    summary = EvalSummary()
    subject_confusion: Counter = Counter()
    kind_confusion: Counter = Counter()
    for item in items:
        summary.total += 1
        miss: Dict[str, Any] = {}
        if item.subject:
            predicted = arbitrate(item.text, cfg).subject_hint.value
            summary.subject_total += 1
            if predicted == item.subject:
                summary.subject_correct += 1
            else:
                subject_confusion[f"{item.subject}->{predicted}"] += 1
                miss["subject"] = {"expected": item.subject, "predicted": predicted}
        if item.kind:
            predicted_kind = analyse_question_set(item.text).question_kind.value
            summary.kind_total += 1
            if predicted_kind == item.kind:
                summary.kind_correct += 1
            else:
                kind_confusion[f"{item.kind}->{predicted_kind}"] += 1
                miss["kind"] = {"expected": item.kind, "predicted": predicted_kind}
        if miss:
            summary.misses.append({"id": item.id, **miss})
    summary.subject_confusion = dict(subject_confusion)
    summary.kind_confusion = dict(kind_confusion)
    return summary


def _fmt_pct(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value * 100:.1f}%"


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Evaluate routing against a labelled JSONL goldset.")
    parser.add_argument("--goldset", required=True, help="Path to goldset JSONL")
    parser.add_argument("--output", default=None, help="Write the full report as JSON")
    parser.add_argument("--threshold", type=float, default=None, help="Expert confidence threshold override")
    args = parser.parse_args(argv)
    configure_logging_from_settings()

    path = Path(args.goldset).expanduser().resolve()
    if not path.exists():
        raise SystemExit(f"Goldset not found: {path}")

    base = ArbiterConfig.from_settings()
    cfg = ArbiterConfig(threshold=base.threshold if args.threshold is None else args.threshold, top_k=base.top_k)
    summary = evaluate(load_goldset(path), cfg)

    print("=== Goldset evaluation ===")
    print(f"items:    {summary.total}")
    print(f"subject:  {summary.subject_correct}/{summary.subject_total} ({_fmt_pct(summary.subject_accuracy)})")
    print(f"kind:     {summary.kind_correct}/{summary.kind_total} ({_fmt_pct(summary.kind_accuracy)})")
    for label, confusion in (("subject", summary.subject_confusion), ("kind", summary.kind_confusion)):
        for pair, count in sorted(confusion.items(), key=lambda kv: -kv[1]):
            print(f"  {label} miss {pair}: {count}")

    if args.output:
        out = Path(args.output).expanduser()
        out.write_text(json.dumps(summary.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
        print(f"report written to {out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
