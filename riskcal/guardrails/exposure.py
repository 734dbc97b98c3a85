"""
Open-bet exposure.

Sums the stakes still at risk in pending bets and breaks them down by
league, side (home/away/over/under) and market (moneyline/spread/total),
then warns when the total, one league, or the largest single bet takes too
large a share of the bankroll.

Usage:
    from riskcal.guardrails.exposure import calculate_risk_exposure

    exposure = calculate_risk_exposure(bets, bankroll=1000)
    if exposure.risk_level in ("high", "critical"):
        for warning in exposure.warnings:
            print(warning.message)
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import pandas as pd

from riskcal.config import ExposureConfig
from riskcal.exceptions import ConfigurationError
from riskcal.schema import BetRecord

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"

SEVERITY_WARNING = "warning"
SEVERITY_DANGER = "danger"

WARNING_LEAGUE = "over_exposure_league"
WARNING_SINGLE_BET = "single_bet_too_large"
WARNING_TOTAL = "total_exposure_high"

RISK_LOW = "low"
RISK_MODERATE = "moderate"
RISK_HIGH = "high"
RISK_CRITICAL = "critical"


@dataclass(frozen=True)
class ExposureBucket:
    amount: float
    count: int
    percentage: float  # of bankroll


@dataclass(frozen=True)
class ExposureWarning:
    type: str
    severity: str
    message: str
    value: float
    threshold: float


@dataclass(frozen=True)
class LargestBet:
    bet_id: str
    title: Optional[str]
    amount: float
    percentage: float


@dataclass(frozen=True)
class RiskExposure:
    total_exposure: float
    exposure_percent: float
    open_bets_count: int
    by_league: Dict[str, ExposureBucket] = field(default_factory=dict)
    by_side: Dict[str, ExposureBucket] = field(default_factory=dict)
    by_market: Dict[str, ExposureBucket] = field(default_factory=dict)
    largest_single_bet: Optional[LargestBet] = None
    warnings: List[ExposureWarning] = field(default_factory=list)
    risk_level: str = RISK_LOW

    def to_dict(self) -> dict:
        def buckets(group: Dict[str, ExposureBucket]) -> dict:
            return {k: {'amount': b.amount, 'count': b.count, 'percentage': round(b.percentage, 4)}
                    for k, b in group.items()}

        largest = self.largest_single_bet
        return {
            'total_exposure': self.total_exposure,
            'exposure_percent': round(self.exposure_percent, 4),
            'open_bets_count': self.open_bets_count,
            'by_league': buckets(self.by_league),
            'by_side': buckets(self.by_side),
            'by_market': buckets(self.by_market),
            'largest_single_bet': None if largest is None else {
                'bet_id': largest.bet_id,
                'title': largest.title,
                'amount': largest.amount,
                'percentage': round(largest.percentage, 4),
            },
            'warnings': [
                {'type': w.type, 'severity': w.severity, 'message': w.message,
                 'value': round(w.value, 4), 'threshold': w.threshold}
                for w in self.warnings
            ],
            'risk_level': self.risk_level,
        }


def market_type(selection: Optional[str]) -> str:
    """Moneyline, Spread or Total, read from the selection text."""
    text = selection or ""
    if "Spread" in text:
        return "Spread"
    if "Over" in text or "Under" in text:
        return "Total"
    return "Moneyline"


def _group(df: pd.DataFrame, column: str, bankroll: float) -> Dict[str, ExposureBucket]:
    grouped = df.groupby(column)['stake'].agg(['sum', 'count'])
    return {
        str(key): ExposureBucket(
            amount=float(row['sum']),
            count=int(row['count']),
            percentage=float(row['sum']) / bankroll * 100,
        )
        for key, row in grouped.iterrows()
    }


def _severity(value: float, limit: float, danger_factor: float) -> str:
    return SEVERITY_DANGER if value > limit * danger_factor else SEVERITY_WARNING


def _risk_level(warnings: List[ExposureWarning], exposure_percent: float, config: ExposureConfig) -> str:
    danger = sum(1 for w in warnings if w.severity == SEVERITY_DANGER)
    warning = sum(1 for w in warnings if w.severity == SEVERITY_WARNING)
    if danger >= 2 or exposure_percent > config.critical_exposure_percent:
        return RISK_CRITICAL
    if danger >= 1 or warning >= 2:
        return RISK_HIGH
    if warning >= 1 or exposure_percent > config.moderate_exposure_percent:
        return RISK_MODERATE
    return RISK_LOW


def calculate_risk_exposure(
    bets: Iterable[BetRecord],
    bankroll: float,
    config: Optional[ExposureConfig] = None,
) -> RiskExposure:
    """
    Exposure of the open (pending) bets in ``bets``.

    Settled bets are ignored. Warnings are listed league first, then the
    largest single bet, then the total.

    Args:
        bets: Bet history; only pending bets count as open
        bankroll: Current bankroll (> 0)
        config: Exposure limits

    Returns:
        RiskExposure with the breakdowns, warnings and an overall risk level
    """
    config = (config or ExposureConfig()).validate()
    if bankroll is None or not bankroll > 0:
        raise ConfigurationError("bankroll", f"must be positive, got {bankroll}")

    open_bets = [b for b in bets if b.is_open]
    if not open_bets:
        return RiskExposure(total_exposure=0.0, exposure_percent=0.0, open_bets_count=0)

    df = pd.DataFrame({
        'id': [b.id for b in open_bets],
        'title': [b.title for b in open_bets],
        'stake': [float(b.stake) for b in open_bets],
        'league': [b.league or UNKNOWN for b in open_bets],
        'side': [b.side or UNKNOWN for b in open_bets],
        'market': [market_type(b.selection) for b in open_bets],
    })

    total = float(df['stake'].sum())
    exposure_percent = total / bankroll * 100
    warnings: List[ExposureWarning] = []

    by_league = _group(df, 'league', bankroll)
    for league, bucket in by_league.items():
        if bucket.percentage > config.max_league_exposure_percent:
            warnings.append(ExposureWarning(
                type=WARNING_LEAGUE,
                severity=_severity(bucket.percentage, config.max_league_exposure_percent,
                                   config.league_danger_factor),
                message=f"{league} exposure is {bucket.percentage:.1f}% of bankroll",
                value=bucket.percentage,
                threshold=config.max_league_exposure_percent,
            ))

    # First of equal stakes wins
    top = df.loc[df['stake'].idxmax()]
    largest = LargestBet(
        bet_id=str(top['id']),
        title=top['title'],
        amount=float(top['stake']),
        percentage=float(top['stake']) / bankroll * 100,
    )
    if largest.percentage > config.max_single_bet_percent:
        warnings.append(ExposureWarning(
            type=WARNING_SINGLE_BET,
            severity=_severity(largest.percentage, config.max_single_bet_percent,
                               config.single_bet_danger_factor),
            message=f"Largest bet is {largest.percentage:.1f}% of bankroll",
            value=largest.percentage,
            threshold=config.max_single_bet_percent,
        ))

    if exposure_percent > config.max_total_exposure_percent:
        warnings.append(ExposureWarning(
            type=WARNING_TOTAL,
            severity=_severity(exposure_percent, config.max_total_exposure_percent,
                               config.total_danger_factor),
            message=f"Total exposure is {exposure_percent:.1f}% of bankroll",
            value=exposure_percent,
            threshold=config.max_total_exposure_percent,
        ))

    risk_level = _risk_level(warnings, exposure_percent, config)
    if risk_level in (RISK_HIGH, RISK_CRITICAL):
        logger.warning(f"Open-bet exposure {exposure_percent:.1f}% of bankroll, risk {risk_level}")

    return RiskExposure(
        total_exposure=total,
        exposure_percent=exposure_percent,
        open_bets_count=len(open_bets),
        by_league=by_league,
        by_side=_group(df, 'side', bankroll),
        by_market=_group(df, 'market', bankroll),
        largest_single_bet=largest,
        warnings=warnings,
        risk_level=risk_level,
    )
