"""Behavioral guardrails evaluated before a stake is accepted."""

from riskcal.guardrails.state import GuardrailStateStore, LockoutState
from riskcal.guardrails.evaluator import (
    GuardrailDecision,
    GuardrailEngine,
    GuardrailResult,
    current_loss_streak,
    evaluate_guardrails,
    latest_loss_at,
    should_block,
    todays_losses,
)
from riskcal.guardrails.exposure import RiskExposure, calculate_risk_exposure

__all__ = [
    'GuardrailStateStore',
    'LockoutState',
    'GuardrailDecision',
    'GuardrailEngine',
    'GuardrailResult',
    'current_loss_streak',
    'evaluate_guardrails',
    'latest_loss_at',
    'should_block',
    'todays_losses',
    'RiskExposure',
    'calculate_risk_exposure',
]
