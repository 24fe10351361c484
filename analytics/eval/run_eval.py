"""
Evaluation harness -- runs eval_questions.jsonl through the parameter
extractor and generates analytics/reports/eval_report.md.

Questions are evaluated at a fixed reference time so expected dates are
stable.  Checks:
  - Metric correctness    (extracted metrics match expected)
  - Grouping correctness  (group_by matches expected, order-independent)
  - Date window           (start / end match, when expected)
  - Locations             (resolved ids match, order-independent)
  - Limit / periods       (when expected)
  - Latency               (extraction ms)

Run:  python -m analytics.eval.run_eval            (keyword mode)
      python -m analytics.eval.run_eval --model    (configured LLM provider)
"""
from __future__ import annotations

import datetime
import json
import sys
from pathlib import Path
from typing import Any

from salesqa.copilot.extractor import ParameterExtractor
from salesqa.copilot.llm_client import build_completions
from salesqa.copilot.locations import LocationResolver
from salesqa.core.utils import timer

EVAL_PATH = Path(__file__).resolve().parent / "eval_questions.jsonl"
REPORT_PATH = Path(__file__).resolve().parents[1] / "reports" / "eval_report.md"
REFERENCE_NOW = datetime.datetime(2025, 9, 19, 12, 0)

_CHECKS = ("metric_ok", "group_ok", "dates_ok", "locations_ok", "shape_ok")


def _load_questions(path: Path = EVAL_PATH) -> list[dict[str, Any]]:
    lines = path.read_text().splitlines()
    return [json.loads(line) for line in lines if line.strip()]


def build_extractor(use_model: bool = False) -> ParameterExtractor:
    locations = LocationResolver()
    locations.initialize([])
    completions = build_completions() if use_model else None
    return ParameterExtractor(locations, completions=completions, clock=lambda: REFERENCE_NOW)


def _run_one(extractor: ParameterExtractor, q: dict[str, Any]) -> dict[str, Any]:
    """Extract parameters for one question and score them."""
    with timer() as t:
        result = extractor.extract(q["question"])
    p = result.parameters

    dates_ok = True
    if "expected_start" in q:
        dates_ok = (
            p.date_range is not None
            and p.date_range.start.date().isoformat() == q["expected_start"]
            and p.date_range.end.date().isoformat() == q["expected_end"]
        )

    shape_ok = True
    if "expected_limit" in q:
        shape_ok = p.limit == q["expected_limit"]
    if "expected_periods" in q:
        shape_ok = shape_ok and len(p.comparison_ranges) == q["expected_periods"]

    checks = {
        "metric_ok": p.metrics == q.get("expected_metrics", ["revenue"]),
        "group_ok": set(p.group_by) == set(q.get("expected_group_by", [])),
        "dates_ok": dates_ok,
        "locations_ok": set(p.location_ids) == set(q.get("expected_locations", [])),
        "shape_ok": shape_ok,
    }
    return {
        "question": q["question"],
        "latency_ms": t["elapsed_ms"],
        "extracted": result.success,
        "success": result.success and all(checks.values()),
        "window": p.date_range.describe() if p.date_range else "all time",
        **checks,
    }


def _pct(n: int, total: int) -> str:
    return f"{(n / total * 100) if total else 0:.0f}%"


def _generate_report(results: list[dict[str, Any]], mode: str) -> str:
    """Generate the Markdown eval report."""
    total = len(results)
    now = datetime.datetime.now().strftime("%Y-%m-%d %H:%M")
    latencies = sorted(r["latency_ms"] for r in results)
    successes = sum(1 for r in results if r["success"])

    lines: list[str] = []
    lines.append("# Extraction Evaluation Report")
    lines.append("")
    lines.append(
        f"> Generated: {now}  |  Questions: **{total}**  |  Mode: `{mode}`  |  "
        f"Reference time: {REFERENCE_NOW.isoformat()}"
    )
    lines.append("")
    lines.append("## Summary")
    lines.append("")
    lines.append("| Check | Value |")
    lines.append("|-------|-------|")
    lines.append(f"| Overall success rate | **{_pct(successes, total)}** ({successes}/{total}) |")
    for check in _CHECKS:
        ok = sum(1 for r in results if r[check])
        lines.append(f"| {check.replace('_ok', '').title()} correctness | **{_pct(ok, total)}** ({ok}/{total}) |")
    lines.append("")
    if latencies:
        lines.append("## Latency")
        lines.append("")
        lines.append("| Stat | ms |")
        lines.append("|------|-----|")
        lines.append(f"| Mean | {sum(latencies) / len(latencies):.0f} |")
        lines.append(f"| p50 | {latencies[len(latencies) // 2]} |")
        lines.append(f"| Max | {latencies[-1]} |")
        lines.append("")

    lines.append("## Per-Question Results")
    lines.append("")
    lines.append("| # | Question | Metric | Group | Dates | Locations | Shape | Window | Pass |")
    lines.append("|---|----------|--------|-------|-------|-----------|-------|--------|------|")
    for i, r in enumerate(results, 1):
        marks = " | ".join("✓" if r[c] else "✗" for c in _CHECKS)
        lines.append(f"| {i} | {r['question']} | {marks} | {r['window']} | {'✓' if r['success'] else '✗'} |")
    lines.append("")
    return "\n".join(lines)


def evaluate(use_model: bool = False, path: Path = EVAL_PATH) -> tuple[list[dict[str, Any]], str]:
    extractor = build_extractor(use_model)
    results = [_run_one(extractor, q) for q in _load_questions(path)]
    return results, _generate_report(results, "model" if use_model else "keyword")


def main() -> int:
    use_model = "--model" in sys.argv[1:]
    results, report = evaluate(use_model)
    REPORT_PATH.parent.mkdir(parents=True, exist_ok=True)
    REPORT_PATH.write_text(report)
    passed = sum(1 for r in results if r["success"])
    print(f"Eval complete: {passed}/{len(results)} passed -> {REPORT_PATH}")
    return 0 if passed == len(results) else 1


if __name__ == "__main__":
    sys.exit(main())
