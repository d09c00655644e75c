"""
Registry Package for the EthicCheck Compliance Screening System

This package provides:
- SQLAlchemy ORM models for companies, evidence and financials
- Session provider and Unit of Work for transaction management
- Repository pattern for data access
- Identifier validation, duplicate detection and the import guard
- Compliance screening and registry health monitoring
- Performance monitoring and query timing
"""

from registry.models import (
    Base,
    Company,
    CompanyAlias,
    Tag,
    Source,
    Evidence,
    Financials,
    ScreenResult,
    AliasType,
    BdsCategory,
    CategoryStatus,
    ConfidenceLevel,
    EvidenceStrength,
    FinalVerdict,
)
from registry.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    UnitOfWork,
    get_db_provider,
    init_db,
    close_db,
    create_test_provider,
)
from registry.repositories import (
    RepositoryError,
    EntityNotFoundError,
    DuplicateEntityError,
    StorageError,
)
from registry.monitoring import (
    query_timer,
    get_db_metrics,
    get_slow_query_report,
    reset_metrics,
    configure_monitoring,
)

__all__ = [
    # Base
    'Base',
    # Registry models
    'Company',
    'CompanyAlias',
    'Tag',
    'Source',
    'Evidence',
    'Financials',
    'ScreenResult',
    # Enums
    'AliasType',
    'BdsCategory',
    'CategoryStatus',
    'ConfidenceLevel',
    'EvidenceStrength',
    'FinalVerdict',
    # Database provider
    'DatabaseSessionProvider',
    'DatabaseSettings',
    'UnitOfWork',
    'get_db_provider',
    # Initialization
    'init_db',
    'close_db',
    # Testing support
    'create_test_provider',
    # Errors
    'RepositoryError',
    'EntityNotFoundError',
    'DuplicateEntityError',
    'StorageError',
    # Monitoring
    'query_timer',
    'get_db_metrics',
    'get_slow_query_report',
    'reset_metrics',
    'configure_monitoring',
]
