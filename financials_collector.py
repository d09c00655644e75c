#!/usr/bin/env python3
"""
Financials Collector for EthicCheck

Fetches company profiles and the latest balance sheet from Financial
Modeling Prep and stores them as Financials snapshots for the Shariah
ratio screen.

Calls are spaced by a fixed delay. A failed lookup is logged and the
batch moves on; that company simply keeps missing financial data. A
storage failure stops the batch, keeping what was already committed.

Usage:
    python financials_collector.py AAPL MSFT LMT
    python financials_collector.py --all
"""

import sys
import time
import argparse
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config_manager import ConfigManager, ConfigurationError, CollectorConfig, setup_logging
from registry.connection import DatabaseSettings, init_db, close_db
from registry.import_guard import ImportGuard
from registry.repositories import (
    CompanyRepository,
    FinancialsRepository,
    SourceRepository,
    StorageError,
)

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ('sector', 'industry', 'description')


class CollectorError(Exception):
    """Fatal collector failure (misconfiguration)"""
    pass


@dataclass
class CollectionSummary:
    collected: List[str] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collected": self.collected,
            "skipped": self.skipped,
            "failed": self.failed,
        }


def _first(payload: Any) -> Dict[str, Any]:
    """FMP answers with a list; the first element is the latest."""
    if isinstance(payload, list) and payload:
        return payload[0]
    return {}


class FinancialsCollector:
    """Batched profile and balance sheet lookups."""

    def __init__(
        self,
        session: Session,
        config: Optional[ConfigManager] = None,
        http: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.session = session
        self.settings: CollectorConfig = config.collector if config else CollectorConfig()
        self.http = http or requests.Session()
        self._sleep = sleep
        self._company_repo = CompanyRepository(session)
        self._financials_repo = FinancialsRepository(session)
        self._source_repo = SourceRepository(session)
        self._guard = ImportGuard(session, config)

        if not self.settings.api_key:
            raise CollectorError("No API key configured (set FMP_API_KEY)")

    def _get(self, path: str, **params) -> Any:
        response = self.http.get(
            f"{self.settings.base_url}/{path}",
            params={**params, "apikey": self.settings.api_key},
            timeout=self.settings.timeout_seconds
        )
        response.raise_for_status()
        return response.json()

    def fetch_profile(self, symbol: str) -> Dict[str, Any]:
        return _first(self._get(f"profile/{symbol}"))

    def fetch_balance_sheet(self, symbol: str) -> Dict[str, Any]:
        return _first(self._get(f"balance-sheet-statement/{symbol}", limit=1))

    def _source_id(self, symbol: str):
        source, _ = self._source_repo.get_or_create(
            domain=self.settings.source_domain,
            title=self.settings.source_title,
            url=f"https://{self.settings.source_domain}/financial-statements/{symbol}",
            publisher=self.settings.source_title
        )
        return source.id

    def collect_one(self, symbol: str, summary: CollectionSummary) -> None:
        company = self._company_repo.find_by_ticker(symbol)
        if company is None:
            logger.info(f"Company {symbol} not found in registry, skipping")
            summary.skipped[symbol] = "not found"
            return

        if self._financials_repo.exists_for_period(company.id, self.settings.period):
            logger.info(f"Financial data for {symbol} ({self.settings.period}) already exists, skipping")
            summary.skipped[symbol] = "already collected"
            return

        try:
            profile = self.fetch_profile(symbol)
            balance_sheet = self.fetch_balance_sheet(symbol)
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Error fetching {symbol}: {e}")
            summary.failed[symbol] = str(e)
            return

        if not profile:
            logger.warning(f"No profile data returned for {symbol}")
            summary.failed[symbol] = "no profile data"
            return

        self._financials_repo.create(company.id, {
            'period': self.settings.period,
            'market_cap': profile.get('mktCap') or profile.get('marketCap'),
            'total_assets': balance_sheet.get('totalAssets'),
            'debt': balance_sheet.get('totalDebt'),
            'cash_securities': balance_sheet.get('cashAndCashEquivalents'),
            'short_term_investments': balance_sheet.get('shortTermInvestments'),
            'receivables': balance_sheet.get('netReceivables'),
            'source_id': self._source_id(symbol),
        })

        missing = {
            name: profile[name] for name in PROFILE_FIELDS
            if profile.get(name) and not getattr(company, name)
        }
        if missing:
            outcome = self._guard.update_safely(company.id, missing)
            if not outcome.success:
                logger.warning(f"Profile update rejected for {symbol}: {outcome.errors}")

        self.session.commit()
        summary.collected.append(symbol)
        logger.info(f"Added financial data for {symbol}")

    def collect(self, symbols: List[str]) -> CollectionSummary:
        """
        Collect financials for each symbol.

        Raises:
            StorageError: The registry became unavailable; earlier
                symbols stay committed
        """
        summary = CollectionSummary()
        for index, symbol in enumerate(symbols):
            if index:
                self._sleep(self.settings.request_delay_seconds)
            self.collect_one(symbol.strip().upper(), summary)

        logger.info(
            f"Collection finished: {len(summary.collected)} collected, "
            f"{len(summary.skipped)} skipped, {len(summary.failed)} failed"
        )
        return summary


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Collect financial snapshots for registry companies")
    parser.add_argument("symbols", nargs="*", help="Tickers to collect")
    parser.add_argument("--all", action="store_true", help="Collect for every active company with a ticker")
    parser.add_argument("--config", "-c", default=None, help="Path to config.yaml")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args(argv)

    if not args.symbols and not args.all:
        parser.print_usage(sys.stderr)
        return 1

    try:
        config = ConfigManager(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(config, verbose=args.verbose)

    try:
        provider = init_db(DatabaseSettings.from_config(config), echo=config.database.echo)
        with provider.session_scope() as session:
            symbols = args.symbols
            if args.all:
                symbols = [c.ticker for c in CompanyRepository(session).list_active(has_ticker=True)]
            summary = FinancialsCollector(session, config).collect(symbols)
        print(f"Collected: {len(summary.collected)}, skipped: {len(summary.skipped)}, failed: {len(summary.failed)}")
        return 0
    except CollectorError as e:
        logger.error(str(e))
        return 1
    except (StorageError, SQLAlchemyError) as e:
        logger.error(f"Collection stopped: {e}")
        return 1
    finally:
        close_db()


if __name__ == "__main__":
    sys.exit(main())
