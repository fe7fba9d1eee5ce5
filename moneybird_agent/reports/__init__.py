from moneybird_agent.reports.btw import (
    BTWQuarterlyReport,
    build_quarterly_report,
    format_report_csv,
    validate_report,
)

__all__ = ["BTWQuarterlyReport", "build_quarterly_report", "format_report_csv", "validate_report"]
