#!/usr/bin/env python3
"""
Print the routing trail (hard guard, expert probes, decision, question-set kind)
for sample or given questions. No LLM calls.

Usage:
    python -m question_ingest.scripts.subject_diagnostics
    python -m question_ingest.scripts.subject_diagnostics "If x + 3 = 5, find x."
    python -m question_ingest.scripts.subject_diagnostics --json "text ..."
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List

# Add repository root to path so `import question_ingest` works when executed as a file.
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from question_ingest.core.arbiter import ArbiterConfig, arbitrate
from question_ingest.core.question_set import analyse_question_set
from question_ingest.utils.logging_setup import configure_logging_from_settings

SAMPLES: List[str] = [
    "There are reports coming in that a number of people have been injured in a terrorist ___ . "
    "(A) access (B) supply (C) attack (D) burden",
    "In triangle ABC, angle A = 60°, AB = 4 and AC = 6. Find BC.",
    "下列關於清代臺灣歷史的敘述，何者正確？",
    "If I ____ more time, I would travel around the world. (A) have (B) had (C) will have (D) would have",
]


def diagnose(text: str, config: ArbiterConfig) -> Dict[str, Any]:
    arbitration = arbitrate(text, config)
    analysis = analyse_question_set(text)
    return {
        "text": text,
        "guard": arbitration.guard.model_dump(mode="json"),
        "experts": [
            {"subject": e.subject.value, "confidence": round(e.confidence, 2), "tags": e.tags, "notes": e.notes}
            for e in arbitration.experts
        ],
        "chosen": [c.subject.value for c in arbitration.chosen],
        "subject_hint": arbitration.subject_hint.value,
        "reason": arbitration.reason,
        "question_kind": analysis.question_kind.value,
        "matched_rule": analysis.matched_rule,
    }


def _print_report(report: Dict[str, Any]) -> None:
    print(f"\n📝 {report['text'][:80]}")
    print("─" * 60)
    guard = report["guard"]
    print(f"Guard:   {guard['subject']} ({guard['reason']}) tokens={guard['matched_tokens']}")
    experts = ", ".join(f"{e['subject']}:{e['confidence']:.2f}" for e in report["experts"])
    print(f"Experts: [{experts}]")
    print(f"Chosen:  {'/'.join(report['chosen']) or 'general'}")
    print(f"Hint:    {report['subject_hint']}  reason=\"{report['reason']}\"")
    print(f"Kind:    {report['question_kind']}  rule={report['matched_rule']}")


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Show subject routing diagnostics for questions.")
    parser.add_argument("texts", nargs="*", help="Question texts (default: built-in samples)")
    parser.add_argument("--threshold", type=float, default=None, help="Expert confidence threshold override")
    parser.add_argument("--top-k", type=int, default=None, help="Number of experts to keep")
    parser.add_argument("--json", action="store_true", help="Emit one JSON object per line")
    args = parser.parse_args(argv)
    configure_logging_from_settings()

    base = ArbiterConfig.from_settings()
    config = ArbiterConfig(
        threshold=base.threshold if args.threshold is None else args.threshold,
        top_k=base.top_k if args.top_k is None else args.top_k,
    )
    for text in args.texts or SAMPLES:
        report = diagnose(text, config)
        if args.json:
            print(json.dumps(report, ensure_ascii=False))
        else:
            _print_report(report)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
