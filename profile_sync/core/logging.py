"""
Logging configuration for the Profile Sync service.
Provides structured logging for publish, pull and ledger operations.
"""

import logging
import sys
from typing import Any, Dict

import structlog
from structlog.stdlib import LoggerFactory

from profile_sync.core.config import settings


def setup_logging() -> None:
    """
    Configure structured logging for the application.
    Sets up different log formats for development and production environments.
    """

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _get_processor(),
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.LOG_LEVEL.upper()),
    )

    # Set specific logger levels
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("motor").setLevel(logging.WARNING)
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("web3").setLevel(logging.WARNING)


def _get_processor():
    """
    Get the appropriate processor based on environment.

    Returns:
        Processor function for structlog
    """
    if settings.ENVIRONMENT == "production":
        return structlog.processors.JSONRenderer()
    else:
        return structlog.dev.ConsoleRenderer(colors=True)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        structlog.stdlib.BoundLogger: Configured logger instance
    """
    return structlog.get_logger(name)


# Specialized logging functions for sync operations

def log_sync_operation(
    operation: str,
    identity_id: str = None,
    username: str = None,
    step: str = None,
    snapshot_cid: str = None,
    **kwargs
) -> None:
    """
    Log publish/pull saga progress.

    Args:
        operation: Operation type (publish, pull, relink, unbind, expire)
        identity_id: Identity record ID
        username: Identity username
        step: Saga step being entered or completed
        snapshot_cid: Snapshot CID involved
        **kwargs: Additional context
    """
    logger = get_logger("sync.operation")
    logger.info(
        "Sync operation",
        operation=operation,
        identity_id=identity_id,
        username=username,
        step=step,
        snapshot_cid=snapshot_cid,
        **kwargs
    )


def log_blockchain_transaction(
    tx_hash: str,
    chain_id: int,
    contract_address: str = None,
    method: str = None,
    identity_id: str = None,
    **kwargs
) -> None:
    """
    Log blockchain transaction details.

    Args:
        tx_hash: Transaction hash
        chain_id: Blockchain chain ID
        contract_address: Registry contract address
        method: Contract method called
        identity_id: Identity record ID
        **kwargs: Additional transaction context
    """
    logger = get_logger("blockchain.transaction")
    logger.info(
        "Blockchain transaction",
        tx_hash=tx_hash,
        chain_id=chain_id,
        contract_address=contract_address,
        method=method,
        identity_id=identity_id,
        **kwargs
    )


def log_ipfs_operation(
    operation: str,
    ipfs_hash: str = None,
    file_size: int = None,
    **kwargs
) -> None:
    """
    Log IPFS operations.

    Args:
        operation: Operation type (upload, upload_batch, retrieve)
        ipfs_hash: IPFS hash
        file_size: Payload size in bytes
        **kwargs: Additional context
    """
    logger = get_logger("ipfs.operation")
    logger.info(
        "IPFS operation",
        operation=operation,
        ipfs_hash=ipfs_hash,
        file_size=file_size,
        **kwargs
    )


def log_error(error: Exception, context: Dict[str, Any] = None) -> None:
    """
    Log an error with context.

    Args:
        error: Exception instance
        context: Additional context information
    """
    logger = get_logger("error")
    logger.error(
        "An error occurred",
        error=str(error),
        error_type=type(error).__name__,
        context=context or {},
        exc_info=True
    )
