"""Diff Reporter - Render run reports as log lines, JSON and Markdown summaries."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from src.results.reports import IntegrityReport, PerformanceReport

logger = logging.getLogger(__name__)

Report = Union[IntegrityReport, PerformanceReport]


def _ms(value: Optional[float]) -> str:
    return f"{value * 1000:.1f}" if value is not None else "-"


class DiffReporter:
    """Render integrity and performance reports. Formatting only, no run logic."""

    def log_results(self, report: Report) -> None:
        """Write one summary line per method to the log."""
        if isinstance(report, IntegrityReport):
            for method, stats in report.methods.items():
                logger.info(
                    "RESULTS OF %s METHOD TEST: TESTED PUBKEYS TOTAL: %d, FAILED TESTS: %d",
                    method.value,
                    stats.total,
                    stats.failed,
                )
        else:
            for method, stats in report.methods.items():
                logger.info(
                    "RESULTS OF %s METHOD LOAD: REQUESTS: %d, ERRORS: %d, "
                    "LATENCY MS min/mean/max: %s/%s/%s, RPS: %.2f",
                    method.value,
                    stats.count,
                    stats.error_count,
                    _ms(stats.min_latency),
                    _ms(stats.mean_latency),
                    _ms(stats.max_latency),
                    stats.requests_per_second,
                )
        logger.info("OVERALL RESULT: %s", "PASS" if report.overall_success else "FAIL")

    def generate_json_report(self, report: Report) -> str:
        data = {
            "metadata": {"generated_at": datetime.now().isoformat()},
            **report.to_dict(),
        }
        return json.dumps(data, indent=2, default=str)

    def generate_markdown_summary(self, report: Report) -> str:
        if isinstance(report, IntegrityReport):
            return self._integrity_markdown(report)
        return self._performance_markdown(report)

    def _integrity_markdown(self, report: IntegrityReport) -> str:
        passed = report.total_pairs - report.total_failed
        pass_rate = (passed / report.total_pairs * 100) if report.total_pairs else 100.0
        md_lines = [
            "# Integrity Test Report",
            f"**Generated:** {datetime.now().isoformat()}",
            "",
            "## Overall Results",
            f"- **Pairs Tested:** {report.total_pairs}",
            f"- **Passed:** {passed}",
            f"- **Failed:** {report.total_failed}",
            f"- **Pass Rate:** {pass_rate:.1f}%",
            f"- **Status:** {'PASS' if report.overall_success else 'FAIL'}",
            "",
            "## Per Method",
            "",
            "| Method | Total | Passed | Divergent | Malformed | Reference failed | Testing failed "
            "| Errored |",
            "|---|---|---|---|---|---|---|---|",
        ]
        for method, stats in report.methods.items():
            md_lines.append(
                f"| {method.value} | {stats.total} | {stats.passed} | {stats.divergent} | "
                f"{stats.malformed} | {stats.reference_failed} | {stats.testing_failed} | "
                f"{stats.errored} |"
            )

        failure_lines: List[str] = []
        for method, stats in report.methods.items():
            for key, diff in stats.failures:
                failure_lines.extend([f"### {method.value} `{key}`", "", "```", diff, "```", ""])

        if failure_lines:
            md_lines.extend(["", "## Differences", ""])
            md_lines.extend(failure_lines)

        return "\n".join(md_lines)

    def _performance_markdown(self, report: PerformanceReport) -> str:
        md_lines = [
            "# Performance Test Report",
            f"**Generated:** {datetime.now().isoformat()}",
            "",
            "## Overall Results",
            f"- **Virtual Users:** {report.virtual_users}",
            f"- **Elapsed:** {report.elapsed_seconds:.1f}s",
            f"- **Requests:** {report.total_requests}",
            f"- **Errors:** {report.total_errors}",
            f"- **Requests/sec:** {report.requests_per_second:.2f}",
            "",
            "## Per Method",
            "",
            "| Method | Requests | Errors | Min ms | Mean ms | Max ms | RPS |",
            "|---|---|---|---|---|---|---|",
        ]
        for method, stats in report.methods.items():
            md_lines.append(
                f"| {method.value} | {stats.count} | {stats.error_count} | "
                f"{_ms(stats.min_latency)} | {_ms(stats.mean_latency)} | "
                f"{_ms(stats.max_latency)} | {stats.requests_per_second:.2f} |"
            )
        return "\n".join(md_lines)

    def write_json_report(self, report: Report, path: Union[str, Path]) -> Path:
        json_path = Path(path)
        json_path.parent.mkdir(parents=True, exist_ok=True)
        json_path.write_text(self.generate_json_report(report), encoding="utf-8")
        logger.info("Wrote JSON report: %s", json_path)
        return json_path

    def write_markdown_summary(self, report: Report, path: Union[str, Path]) -> Path:
        md_path = Path(path)
        md_path.parent.mkdir(parents=True, exist_ok=True)
        md_path.write_text(self.generate_markdown_summary(report), encoding="utf-8")
        logger.info("Wrote Markdown summary: %s", md_path)
        return md_path
