# Wallet Writer
# Projects ledger movements onto per-user wallet balances after commit

from dataclasses import dataclass
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from typing import Iterable, Optional
import logging

from config.app_config import PAYMENT_CURRENCY
from database.collaboration_models import Wallet
from database.config import get_db_context

logger = logging.getLogger(__name__)


@dataclass
class WalletMovement:
    """Signed deltas in paise for one user's wallet."""
    user_id: str
    balance: int = 0
    hold: int = 0
    earned: int = 0
    spent: int = 0
    reason: str = ""


def get_or_create_wallet(db: Session, user_id: str) -> Wallet:
    wallet = db.query(Wallet).filter(Wallet.user_id == user_id).first()
    if wallet is None:
        wallet = Wallet(user_id=user_id, balance=0, hold_balance=0, total_earned=0, total_spent=0, currency=PAYMENT_CURRENCY)
        db.add(wallet)
        db.flush()
    return wallet


class WalletService:
    """
    Applies wallet movements in their own unit of work. The ledger is the
    source of truth, so a failure here is logged and not surfaced.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def apply(self, movements: Iterable[WalletMovement]) -> bool:
        movements = [m for m in movements if m.user_id]
        if not movements:
            return True
        try:
            with get_db_context(self.session_factory) as db:
                for movement in movements:
                    wallet = get_or_create_wallet(db, movement.user_id)
                    wallet.balance = (wallet.balance or 0) + movement.balance
                    wallet.hold_balance = (wallet.hold_balance or 0) + movement.hold
                    wallet.total_earned = (wallet.total_earned or 0) + movement.earned
                    wallet.total_spent = (wallet.total_spent or 0) + movement.spent
                    logger.info(f"Wallet {movement.user_id}: {movement.reason} {movement}")
            return True
        except SQLAlchemyError as e:
            logger.error(f"Wallet update failed, ledger remains authoritative: {e}")
            return False

    def get_wallet(self, user_id: str) -> Optional[Wallet]:
        with get_db_context(self.session_factory) as db:
            wallet = db.query(Wallet).filter(Wallet.user_id == user_id).first()
            if wallet is not None:
                db.expunge(wallet)
            return wallet
