"""
Registry Health Monitor for EthicCheck

Turns the import guard's data quality report into leveled alerts.
Performs no writes. Meant to be triggered externally (cron, CI job or
the run_monitoring CLI).

Usage:
    with db_provider.session_scope() as session:
        monitor = RegistryMonitor(session, config)
        report = monitor.run_monitoring()
        monitor.send_report(report)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from config_manager import MonitoringThresholdsConfig
from registry.import_guard import ImportGuard
from registry.monitoring import publish_registry_metrics
from registry.repositories import CompanyRepository, StorageError

logger = logging.getLogger(__name__)


class AlertLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class OverallHealth(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class MonitoringAlert:
    level: AlertLevel
    title: str
    message: str
    action_required: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "title": self.title,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "action_required": self.action_required,
        }


@dataclass
class MonitoringReport:
    timestamp: datetime
    overall_health: OverallHealth
    metrics: Dict[str, Any]
    alerts: List[MonitoringAlert] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    @property
    def critical_count(self) -> int:
        return sum(1 for alert in self.alerts if alert.level == AlertLevel.CRITICAL)

    @property
    def warning_count(self) -> int:
        return sum(1 for alert in self.alerts if alert.level == AlertLevel.WARNING)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "overall_health": self.overall_health.value,
            "metrics": self.metrics,
            "alerts": [alert.to_dict() for alert in self.alerts],
            "recommendations": self.recommendations,
        }


def calculate_overall_health(alerts: List[MonitoringAlert]) -> OverallHealth:
    """Critical on any critical alert, warning above two warnings."""
    critical = sum(1 for a in alerts if a.level == AlertLevel.CRITICAL)
    warnings = sum(1 for a in alerts if a.level == AlertLevel.WARNING)

    if critical > 0:
        return OverallHealth.CRITICAL
    if warnings > 2:
        return OverallHealth.WARNING
    if warnings > 0:
        return OverallHealth.GOOD
    return OverallHealth.EXCELLENT


class RegistryMonitor:
    """
    Audits registry health against configurable thresholds.

    Storage failures propagate from run_monitoring(); quick_health_check()
    reports them as unhealthy instead.
    """

    def __init__(self, session: Session, config=None, guard: Optional[ImportGuard] = None):
        """
        Args:
            session: SQLAlchemy database session
            config: Optional ConfigManager instance
            guard: Import guard supplying the quality report
        """
        self.session = session
        self.guard = guard or ImportGuard(session, config)
        self._company_repo = CompanyRepository(session)

        self.thresholds = MonitoringThresholdsConfig()
        if config and hasattr(config, 'monitoring'):
            self.thresholds = config.monitoring

    def run_monitoring(self) -> MonitoringReport:
        """
        Run the full audit.

        Returns:
            MonitoringReport with metrics, alerts and recommendations

        Raises:
            StorageError: If the registry cannot be read
        """
        logger.info("Starting registry monitoring...")
        timestamp = datetime.now(timezone.utc)
        t = self.thresholds

        quality = self.guard.build_quality_report()
        alerts: List[MonitoringAlert] = []
        recommendations: List[str] = []

        def alert(level: AlertLevel, title: str, message: str, recommendation: str) -> None:
            alerts.append(MonitoringAlert(
                level=level,
                title=title,
                message=message,
                action_required=level == AlertLevel.CRITICAL,
                timestamp=timestamp
            ))
            recommendations.append(recommendation)

        # Ticker coverage (an empty registry has nothing to cover)
        coverage = quality.ticker_coverage
        if quality.total_companies > 0:
            if coverage < t.coverage_critical:
                alert(AlertLevel.CRITICAL, "Critical: Very Low Ticker Coverage",
                      f"Only {coverage:.1f}% of companies have tickers. Screening by ticker is severely limited.",
                      "Immediately assign tickers to major companies")
            elif coverage < t.coverage_warning:
                alert(AlertLevel.WARNING, "Warning: Low Ticker Coverage",
                      f"Ticker coverage is {coverage:.1f}%.",
                      "Review companies without tickers and assign where appropriate")

        duplicates = quality.potential_duplicates
        if duplicates > t.duplicates_critical:
            alert(AlertLevel.CRITICAL, "Critical: High Duplicate Count",
                  f"{duplicates} potential duplicate companies detected.",
                  "Immediately review and merge duplicate companies")
        elif duplicates > t.duplicates_warning:
            alert(AlertLevel.WARNING, "Warning: Duplicate Companies Detected",
                  f"{duplicates} potential duplicate companies found.",
                  "Review duplicate companies and merge as needed")

        high_severity = quality.high_severity_issues
        if high_severity > t.validation_critical:
            alert(AlertLevel.CRITICAL, "Critical: High Validation Issues",
                  f"{high_severity} high-severity validation issues found.",
                  "Fix high-severity validation issues immediately")
        elif high_severity > t.validation_warning:
            alert(AlertLevel.WARNING, "Warning: Validation Issues Detected",
                  f"{high_severity} high-severity validation issues found.",
                  "Review and fix validation issues")

        missing = self.major_companies_without_tickers()
        if missing:
            shown = ", ".join(missing[:3]) + ("..." if len(missing) > 3 else "")
            alert(AlertLevel.WARNING, "Major Companies Missing Tickers",
                  f"{len(missing)} major companies are missing tickers: {shown}",
                  "Assign tickers to major companies for better coverage")

        # Breaks the one-active-holder-per-ticker invariant; never downgraded
        duplicate_tickers = self.guard.detector.duplicate_tickers()
        if duplicate_tickers:
            alert(AlertLevel.CRITICAL, "Critical: Duplicate Ticker Assignments",
                  f"{len(duplicate_tickers)} tickers are assigned to multiple active companies: "
                  f"{', '.join(duplicate_tickers)}",
                  "Immediately resolve duplicate ticker assignments")

        if coverage < t.coverage_target:
            recommendations.append(f"Work towards {t.coverage_target:.0f}%+ ticker coverage for better user experience")
        if duplicates > 0:
            recommendations.append("Implement duplicate detection in data import processes")
        if quality.validation_issues > 0:
            recommendations.append("Review ticker validation rules and fix flagged companies")

        overall = calculate_overall_health(alerts)
        report = MonitoringReport(
            timestamp=timestamp,
            overall_health=overall,
            metrics={
                "total_companies": quality.total_companies,
                "companies_with_ticker": quality.companies_with_ticker,
                "ticker_coverage": coverage,
                "potential_duplicates": duplicates,
                "validation_issues": quality.validation_issues,
                "high_severity_issues": high_severity,
                "critical_issues": sum(1 for a in alerts if a.level == AlertLevel.CRITICAL),
            },
            alerts=alerts,
            recommendations=recommendations
        )

        logger.info(f"Monitoring completed. Overall health: {overall.value}")
        return report

    def major_companies_without_tickers(self) -> List[str]:
        """Active companies without a ticker whose name contains a watch-list name."""
        watch_list = [name.lower() for name in self.thresholds.major_companies]
        return [
            company.name
            for company in self._company_repo.list_active(has_ticker=False)
            if any(name in company.name.lower() for name in watch_list)
        ]

    def quick_health_check(self) -> Tuple[bool, int]:
        """
        Cheap polling check.

        Returns:
            (healthy, critical_count); (False, 1) if the registry is unreadable
        """
        try:
            report = self.run_monitoring()
        except StorageError as e:
            logger.error(f"Health check failed: {e}")
            return False, 1

        return report.critical_count == 0, report.critical_count

    def get_metrics(self) -> Dict[str, Any]:
        return self.run_monitoring().metrics

    def send_report(self, report: MonitoringReport) -> None:
        """Log the report summary and publish the registry gauges."""
        logger.info(f"Overall Health: {report.overall_health.value.upper()}")
        logger.info(f"Alerts: {len(report.alerts)} ({report.critical_count} critical)")

        for alert in report.alerts:
            if alert.level == AlertLevel.CRITICAL:
                logger.error(f"{alert.title}: {alert.message}")
            elif alert.level == AlertLevel.WARNING:
                logger.warning(f"{alert.title}: {alert.message}")
            else:
                logger.info(f"{alert.title}: {alert.message}")

        for recommendation in report.recommendations:
            logger.info(f"Recommendation: {recommendation}")

        publish_registry_metrics(report.metrics)
