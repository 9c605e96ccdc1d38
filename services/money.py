# Money Model for Collaboration Payments
# Paise-precise breakdowns, commission settings and INR formatting

from decimal import Decimal, InvalidOperation, ROUND_FLOOR
from datetime import datetime
from typing import Optional
import logging

from sqlalchemy.orm import Session

from config.app_config import ADVANCE_PERCENT, DEFAULT_COMMISSION_PERCENT, PAYMENT_CURRENCY
from database.collaboration_models import CommissionSetting
from schemas.collaboration import PaymentBreakdown, PaymentBreakdownDisplay
from services.errors import InvalidInputError

logger = logging.getLogger(__name__)

HALF = Decimal("0.5")
HUNDRED = Decimal(100)


def round_half_up(value) -> int:
    """floor(x + 0.5) on an exact decimal value."""
    return int((Decimal(value) + HALF).to_integral_value(rounding=ROUND_FLOOR))


def to_decimal(value) -> Decimal:
    """Parse a caller-supplied amount into a Decimal. Floats go through their repr."""
    if isinstance(value, bool):
        raise InvalidInputError("Amount must be a number")
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidInputError(f"Amount {value!r} is not a number")
    if not amount.is_finite():
        raise InvalidInputError("Amount must be finite")
    return amount


def rupees_to_paise(value) -> int:
    """Convert a positive rupee amount to paise. Raises InvalidInputError otherwise."""
    amount = to_decimal(value)
    if amount <= 0:
        raise InvalidInputError("Amount must be greater than zero")
    paise = round_half_up(amount * HUNDRED)
    if paise <= 0:
        raise InvalidInputError("Amount must be at least one paisa")
    return paise


def format_inr(amount_paise: int) -> str:
    """
    Format paise as a rupee display string

    Returns:
        Formatted string like "₹90,000.00"
    """
    rupees = Decimal(amount_paise) / HUNDRED
    return f"₹{rupees:,.2f}"


def compute_breakdown(total_paise: int, commission_percentage, advance_percentage: int = ADVANCE_PERCENT,
                      currency: str = PAYMENT_CURRENCY) -> PaymentBreakdown:
    """
    Split a total into commission, net, advance and final.

    Commission and advance are rounded with round_half_up; net and final are
    derived by subtraction so that total = net + commission and
    net = advance + final hold exactly.
    """
    if total_paise <= 0:
        raise InvalidInputError("Total must be greater than zero")
    percentage = to_decimal(commission_percentage)
    if percentage < 0 or percentage > HUNDRED:
        raise InvalidInputError("Commission percentage must be between 0 and 100")

    commission_paise = round_half_up(Decimal(total_paise) * percentage / HUNDRED)
    net_paise = total_paise - commission_paise
    advance_paise = round_half_up(Decimal(net_paise) * Decimal(advance_percentage) / HUNDRED)
    final_paise = net_paise - advance_paise

    return PaymentBreakdown(
        total_paise=total_paise,
        commission_paise=commission_paise,
        net_paise=net_paise,
        advance_paise=advance_paise,
        final_paise=final_paise,
        commission_percentage=f"{percentage.quantize(Decimal('0.01'))}",
        advance_percentage=advance_percentage,
        currency=currency,
        display=PaymentBreakdownDisplay(
            total=format_inr(total_paise),
            commission=format_inr(commission_paise),
            net=format_inr(net_paise),
            advance=format_inr(advance_paise),
            final=format_inr(final_paise),
        ),
    )


# =========================================================================
# COMMISSION SETTINGS
# =========================================================================

class CommissionService:
    """Reads and records the platform commission percentage."""

    def __init__(self, db: Session):
        self.db = db

    def get_active_setting(self, now: Optional[datetime] = None) -> Optional[CommissionSetting]:
        """Latest active setting already in effect at ``now``."""
        return self.db.query(CommissionSetting).filter(
            CommissionSetting.is_active == True,
            CommissionSetting.effective_from <= (now or datetime.utcnow())
        ).order_by(CommissionSetting.effective_from.desc()).first()

    def get_active_percentage(self, now: Optional[datetime] = None) -> Decimal:
        """Latest active setting, or the configured default."""
        setting = self.get_active_setting(now)
        if setting is None:
            return Decimal(DEFAULT_COMMISSION_PERCENT)
        return Decimal(setting.percentage)

    def set_commission(self, percentage, created_by: Optional[str] = None,
                       effective_from: Optional[datetime] = None, now: Optional[datetime] = None) -> CommissionSetting:
        value = to_decimal(percentage)
        if value < 0 or value > HUNDRED:
            raise InvalidInputError("Commission percentage must be between 0 and 100")
        setting = CommissionSetting(
            percentage=value.quantize(Decimal("0.01")),
            is_active=True,
            effective_from=effective_from or now or datetime.utcnow(),
            created_by=created_by,
        )
        self.db.add(setting)
        self.db.flush()
        logger.info(f"Commission set to {setting.percentage}%")
        return setting

    def breakdown_for(self, total_paise: int, now: Optional[datetime] = None) -> PaymentBreakdown:
        return compute_breakdown(total_paise, self.get_active_percentage(now))
