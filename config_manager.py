"""
Configuration Management Module
Loads and validates configuration from config.yaml
"""

import os
import sys
import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List

logger = logging.getLogger(__name__)


# Curated company name -> canonical ticker table. Keys are normalized the
# same way as company names before matching.
DEFAULT_REFERENCE_TICKERS: Dict[str, str] = {
    # Tech
    'apple': 'AAPL',
    'tesla': 'TSLA',
    'meta': 'META',
    'netflix': 'NFLX',
    'microsoft': 'MSFT',
    'google': 'GOOGL',
    'alphabet': 'GOOGL',
    'amazon': 'AMZN',
    'nvidia': 'NVDA',
    'intel': 'INTC',
    'amd': 'AMD',
    'oracle': 'ORCL',
    'adobe': 'ADBE',
    'cisco': 'CSCO',
    'salesforce': 'CRM',
    'palantir': 'PLTR',
    # Consumer
    'coca-cola': 'KO',
    'pepsi': 'PEP',
    'mcdonalds': 'MCD',
    'starbucks': 'SBUX',
    'disney': 'DIS',
    'walmart': 'WMT',
    'target': 'TGT',
    'kroger': 'KR',
    # Financial
    'jpmorgan': 'JPM',
    'bank of america': 'BAC',
    'wells fargo': 'WFC',
    'goldman sachs': 'GS',
    'morgan stanley': 'MS',
    'visa': 'V',
    'mastercard': 'MA',
    'berkshire hathaway': 'BRK-B',
    'us bancorp': 'USB',
    'pnc': 'PNC',
    # Healthcare
    'unitedhealth': 'UNH',
    'pfizer': 'PFE',
    'moderna': 'MRNA',
    'biontech': 'BNTX',
    'johnson & johnson': 'JNJ',
    'procter & gamble': 'PG',
    # Defense / industrial
    'boeing': 'BA',
    'lockheed martin': 'LMT',
    'general electric': 'GE',
    'northrop grumman': 'NOC',
    'rtx': 'RTX',
    'raytheon': 'RTX',
    'general dynamics': 'GD',
    'bae systems': 'BAESY',
    # Energy / materials / autos
    'chevron': 'CVX',
    'valero': 'VLO',
    'volkswagen': 'VWAGY',
    'volvo': 'VOLV-B.ST',
    'cemex': 'CX',
    'solvay': 'SOLB.BR',
}

# Reference key -> qualifier words that veto a match for that key
DEFAULT_KEY_EXCLUSIONS: Dict[str, List[str]] = {
    'target': ['hospitality'],
}

DEFAULT_MAJOR_COMPANIES: List[str] = [
    'Apple', 'Microsoft', 'Google', 'Amazon', 'Tesla', 'Meta', 'Netflix',
    'IBM', 'Intel', 'Cisco', 'Oracle', 'Adobe', 'Salesforce', 'Palantir'
]


@dataclass
class DatabaseConfig:
    """Database configuration"""
    host: str = "localhost"
    port: int = 5432
    user: str = "ethiccheck"
    password: str = "ethiccheck"
    name: str = "ethiccheck"
    url: Optional[str] = None
    pool_size: int = 5
    echo: bool = False


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: Optional[str] = None
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class IdentifierConfig:
    """Ticker validation settings"""
    reference_tickers: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_REFERENCE_TICKERS))
    key_exclusions: Dict[str, List[str]] = field(default_factory=lambda: {
        k: list(v) for k, v in DEFAULT_KEY_EXCLUSIONS.items()
    })
    max_length: int = 10
    similar_limit: int = 5


@dataclass
class ImportGuardConfig:
    """Import guard sanity bounds"""
    name_min_length: int = 2
    country_max_length: int = 50


@dataclass
class ScreeningConfig:
    """Screening engine configuration"""
    debt_ratio_max: float = 0.40
    cash_ratio_max: float = 0.50
    receivables_ratio_max: float = 0.49
    scoped_exclusions: bool = True
    unknown_symbol_verdict: str = "REVIEW"
    persist_audits: bool = False


@dataclass
class MonitoringThresholdsConfig:
    """Registry monitor thresholds"""
    coverage_critical: float = 20.0
    coverage_warning: float = 50.0
    coverage_target: float = 80.0
    duplicates_critical: int = 20
    duplicates_warning: int = 10
    validation_critical: int = 10
    validation_warning: int = 5
    slow_query_ms: float = 1000.0
    publish_metrics: bool = True
    major_companies: List[str] = field(default_factory=lambda: list(DEFAULT_MAJOR_COMPANIES))


@dataclass
class CollectorConfig:
    """Third-party financial data provider settings"""
    base_url: str = "https://financialmodelingprep.com/api/v3"
    api_key: Optional[str] = None
    request_delay_seconds: float = 0.2
    timeout_seconds: int = 30
    period: str = "2024-Q4"
    source_domain: str = "financialmodelingprep.com"
    source_title: str = "Financial Modeling Prep"


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


class ConfigManager:
    """Manages system configuration"""

    _instance: Optional['ConfigManager'] = None

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.database: DatabaseConfig = DatabaseConfig()
        self.logging: LoggingConfig = LoggingConfig()
        self.identifiers: IdentifierConfig = IdentifierConfig()
        self.import_guard: ImportGuardConfig = ImportGuardConfig()
        self.screening: ScreeningConfig = ScreeningConfig()
        self.monitoring: MonitoringThresholdsConfig = MonitoringThresholdsConfig()
        self.collector: CollectorConfig = CollectorConfig(api_key=os.getenv("FMP_API_KEY"))

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        search_paths = [
            Path.cwd() / "config.yaml",
            Path(__file__).parent / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        self._parse_database()
        self._parse_logging()
        self._parse_identifiers()
        self._parse_import_guard()
        self._parse_screening()
        self._parse_monitoring()
        self._parse_collector()
        self._validate()

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._raw_config.get('database', {})
        self.database = DatabaseConfig(
            host=cfg.get('host', self.database.host),
            port=cfg.get('port', self.database.port),
            user=cfg.get('user', self.database.user),
            password=cfg.get('password', self.database.password),
            name=cfg.get('name', self.database.name),
            url=cfg.get('url', self.database.url),
            pool_size=cfg.get('pool_size', self.database.pool_size),
            echo=cfg.get('echo', self.database.echo)
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._raw_config.get('logging', {})
        self.logging = LoggingConfig(
            level=cfg.get('level', 'INFO'),
            file=cfg.get('file', self.logging.file),
            console=cfg.get('console', True),
            format=cfg.get('format', self.logging.format)
        )

    def _parse_identifiers(self) -> None:
        """Parse ticker validation configuration

        Entries under reference_tickers extend the curated table unless
        replace_reference_tickers is set.
        """
        cfg = self._raw_config.get('identifiers', {})

        tickers = {} if cfg.get('replace_reference_tickers', False) else dict(DEFAULT_REFERENCE_TICKERS)
        tickers.update(cfg.get('reference_tickers', {}) or {})

        exclusions = {k: list(v) for k, v in DEFAULT_KEY_EXCLUSIONS.items()}
        for key, words in (cfg.get('key_exclusions', {}) or {}).items():
            exclusions[key] = list(words)

        self.identifiers = IdentifierConfig(
            reference_tickers=tickers,
            key_exclusions=exclusions,
            max_length=cfg.get('max_length', 10),
            similar_limit=cfg.get('similar_limit', 5)
        )

    def _parse_import_guard(self) -> None:
        """Parse import guard configuration"""
        cfg = self._raw_config.get('import_guard', {})
        self.import_guard = ImportGuardConfig(
            name_min_length=cfg.get('name_min_length', 2),
            country_max_length=cfg.get('country_max_length', 50)
        )

    def _parse_screening(self) -> None:
        """Parse screening configuration"""
        cfg = self._raw_config.get('screening', {})
        shariah = cfg.get('shariah', {})
        self.screening = ScreeningConfig(
            debt_ratio_max=shariah.get('debt_ratio_max', 0.40),
            cash_ratio_max=shariah.get('cash_ratio_max', 0.50),
            receivables_ratio_max=shariah.get('receivables_ratio_max', 0.49),
            scoped_exclusions=shariah.get('scoped_exclusions', True),
            unknown_symbol_verdict=str(cfg.get('unknown_symbol_verdict', 'REVIEW')).upper(),
            persist_audits=cfg.get('persist_audits', False)
        )

    def _parse_monitoring(self) -> None:
        """Parse registry monitor thresholds"""
        cfg = self._raw_config.get('monitoring', {})
        self.monitoring = MonitoringThresholdsConfig(
            coverage_critical=cfg.get('coverage_critical', 20.0),
            coverage_warning=cfg.get('coverage_warning', 50.0),
            coverage_target=cfg.get('coverage_target', 80.0),
            duplicates_critical=cfg.get('duplicates_critical', 20),
            duplicates_warning=cfg.get('duplicates_warning', 10),
            validation_critical=cfg.get('validation_critical', 10),
            validation_warning=cfg.get('validation_warning', 5),
            slow_query_ms=cfg.get('slow_query_ms', 1000.0),
            publish_metrics=cfg.get('publish_metrics', True),
            major_companies=cfg.get('major_companies', self.monitoring.major_companies)
        )

    def _parse_collector(self) -> None:
        """Parse financial data collector configuration"""
        cfg = self._raw_config.get('collector', {})
        self.collector = CollectorConfig(
            base_url=cfg.get('base_url', self.collector.base_url),
            api_key=os.getenv("FMP_API_KEY") or cfg.get('api_key'),
            request_delay_seconds=cfg.get('request_delay_seconds', 0.2),
            timeout_seconds=cfg.get('timeout_seconds', 30),
            period=cfg.get('period', self.collector.period),
            source_domain=cfg.get('source_domain', self.collector.source_domain),
            source_title=cfg.get('source_title', self.collector.source_title)
        )

    @classmethod
    def get_instance(cls, config_path: Optional[str] = None) -> 'ConfigManager':
        """Get singleton instance of ConfigManager"""
        if cls._instance is None:
            cls._instance = ConfigManager(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)"""
        cls._instance = None

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary (secrets omitted)"""
        return {
            'database': {
                'host': self.database.host,
                'port': self.database.port,
                'user': self.database.user,
                'name': self.database.name,
                'pool_size': self.database.pool_size
            },
            'identifiers': {
                'reference_tickers': len(self.identifiers.reference_tickers),
                'max_length': self.identifiers.max_length,
                'similar_limit': self.identifiers.similar_limit
            },
            'import_guard': {
                'name_min_length': self.import_guard.name_min_length,
                'country_max_length': self.import_guard.country_max_length
            },
            'screening': {
                'shariah': {
                    'debt_ratio_max': self.screening.debt_ratio_max,
                    'cash_ratio_max': self.screening.cash_ratio_max,
                    'receivables_ratio_max': self.screening.receivables_ratio_max,
                    'scoped_exclusions': self.screening.scoped_exclusions
                },
                'unknown_symbol_verdict': self.screening.unknown_symbol_verdict,
                'persist_audits': self.screening.persist_audits
            },
            'monitoring': {
                'coverage_critical': self.monitoring.coverage_critical,
                'coverage_warning': self.monitoring.coverage_warning,
                'duplicates_critical': self.monitoring.duplicates_critical,
                'duplicates_warning': self.monitoring.duplicates_warning,
                'validation_critical': self.monitoring.validation_critical,
                'validation_warning': self.monitoring.validation_warning,
                'slow_query_ms': self.monitoring.slow_query_ms,
                'major_companies': self.monitoring.major_companies
            },
            'collector': {
                'base_url': self.collector.base_url,
                'request_delay_seconds': self.collector.request_delay_seconds,
                'period': self.collector.period
            }
        }

    def _validate(self) -> None:
        """Validate configuration values"""
        errors = []

        for name in ('debt_ratio_max', 'cash_ratio_max', 'receivables_ratio_max'):
            value = getattr(self.screening, name)
            if not 0 < value <= 1:
                errors.append(f"screening.shariah.{name} must be in (0, 1], got {value}")

        if self.screening.unknown_symbol_verdict not in ('PASS', 'REVIEW'):
            errors.append(
                f"screening.unknown_symbol_verdict must be PASS or REVIEW, "
                f"got {self.screening.unknown_symbol_verdict}"
            )

        m = self.monitoring
        if m.coverage_critical > m.coverage_warning:
            errors.append("monitoring.coverage_critical must not exceed coverage_warning")
        if m.duplicates_critical < m.duplicates_warning:
            errors.append("monitoring.duplicates_critical must not be below duplicates_warning")
        if m.validation_critical < m.validation_warning:
            errors.append("monitoring.validation_critical must not be below validation_warning")

        if m.slow_query_ms < 0:
            errors.append("monitoring.slow_query_ms must not be negative")

        if self.identifiers.max_length < 1:
            errors.append("identifiers.max_length must be positive")

        if self.collector.request_delay_seconds < 0:
            errors.append("collector.request_delay_seconds must not be negative")

        if errors:
            raise ConfigurationError("; ".join(errors))


def setup_logging(config: ConfigManager, verbose: bool = False) -> None:
    """Configure root logging from the logging section"""
    level = logging.DEBUG if verbose else getattr(logging, config.logging.level.upper(), logging.INFO)

    handlers: List[logging.Handler] = []
    if config.logging.console:
        handlers.append(logging.StreamHandler(sys.stderr))
    if config.logging.file:
        Path(config.logging.file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.logging.file, encoding='utf-8'))

    logging.basicConfig(
        level=level,
        format=config.logging.format,
        handlers=handlers or None,
        force=True
    )


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)
