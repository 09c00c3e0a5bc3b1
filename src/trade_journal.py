"""
Persistent journal of trade attempts, one JSON file per attempt.
"""
import json
import logging
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class TradeRecord:
    transaction_type: str
    execution_method: str
    successful: bool
    flash_loan_amount: int
    expected_gross_profit: int
    flash_loan_fee: int
    jito_tip: int
    net_profit: int
    profit_percentage: str
    net_negative: bool
    signature: Optional[str] = None
    bundle_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class TradeJournal:
    """Writes trade_<ts>.json on success and failed_trade_<ts>.json otherwise."""

    def __init__(self, directory: str = "trades"):
        self.directory = Path(directory)

    def record(self, record: TradeRecord) -> Optional[Path]:
        """
        Persist a trade record.

        Returns:
            Path of the written file, or None if writing failed
        """
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        prefix = "trade" if record.successful else "failed_trade"
        path = self.directory / f"{prefix}_{stamp}.json"
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(path, "w") as f:
                json.dump(asdict(record), f, indent=2)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to write trade record {path}: {e}")
            return None

        logger.debug(f"Trade record written: {path}")
        return path
