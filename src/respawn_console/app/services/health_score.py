"""Health score for a session's automation.

Pure functions: a weighted average of cycle success, breaker state, AI
checker state and stuck recoveries, with a status band, a one-line summary
and recommendations for the weakest components.
"""

from respawn_console.app.models.detection import AiCheckState, AiCheckStatus
from respawn_console.app.models.metrics import AggregateMetrics, HealthComponents, HealthScore, HealthStatus
from respawn_console.app.models.respawn import CircuitBreakerState, CircuitState

WEIGHTS = {
    "cycle_success": 0.40,
    "circuit_breaker": 0.25,
    "ai_checker": 0.20,
    "stuck_recovery": 0.15,
}

# Component scores that produce a recommendation
WARN_BELOW = {
    "cycle_success": 70,
    "circuit_breaker": 50,
    "ai_checker": 50,
    "stuck_recovery": 50,
}

# Stuck recoveries at which that component bottoms out
MAX_STUCK_RECOVERIES = 5

BREAKER_SCORES = {
    CircuitState.CLOSED: 100,
    CircuitState.HALF_OPEN: 50,
    CircuitState.OPEN: 0,
}

RECOMMENDATIONS = {
    "cycle_success": "Cycle success rate is low. Check whether the update prompt still gives the agent work.",
    "circuit_breaker": "Circuit breaker is open or half-open. Review recent cycles and reset it when ready.",
    "ai_checker": "AI idle checker is failing. Check that the claude CLI is installed and logged in.",
    "stuck_recovery": "Init was not acknowledged several times. Consider a longer init monitor timeout.",
}


def cycle_success_score(aggregate: AggregateMetrics) -> int:
    if aggregate.total_cycles == 0:
        return 100
    return aggregate.success_rate


def ai_checker_score(ai_check: AiCheckState | None) -> int:
    if ai_check is None:
        return 100
    if ai_check.status == AiCheckStatus.DISABLED and ai_check.consecutive_errors > 0:
        return 30
    if ai_check.status == AiCheckStatus.COOLDOWN:
        return 70
    if ai_check.consecutive_errors > 0:
        return 50
    return 100


def stuck_recovery_score(count: int, limit: int = MAX_STUCK_RECOVERIES) -> int:
    if count >= limit:
        return 0
    return round(100 - count / limit * 100)


def calculate_health(
    aggregate: AggregateMetrics,
    breaker: CircuitBreakerState | None,
    ai_check: AiCheckState | None,
) -> HealthScore:
    components = HealthComponents(
        cycle_success=cycle_success_score(aggregate),
        circuit_breaker=BREAKER_SCORES[breaker.state] if breaker else 100,
        ai_checker=ai_checker_score(ai_check),
        stuck_recovery=stuck_recovery_score(aggregate.stuck_recoveries),
    )
    values = components.model_dump()
    score = round(sum(values[name] * weight for name, weight in WEIGHTS.items()))

    if score >= 90:
        status = HealthStatus.EXCELLENT
    elif score >= 70:
        status = HealthStatus.GOOD
    elif score >= 50:
        status = HealthStatus.DEGRADED
    else:
        status = HealthStatus.CRITICAL

    weakest, weakest_value = min(values.items(), key=lambda item: item[1])
    if status == HealthStatus.EXCELLENT:
        summary = f"Automation is healthy ({score}/100)."
    elif status == HealthStatus.GOOD:
        summary = f"Automation is running well ({score}/100). Minor issues in {weakest}."
    elif status == HealthStatus.DEGRADED:
        summary = f"Automation is degraded ({score}/100). Primary issue: {weakest} ({weakest_value}/100)."
    else:
        summary = f"Automation is in a critical state ({score}/100). Needs attention: {weakest}."

    recommendations = [RECOMMENDATIONS[name] for name, limit in WARN_BELOW.items() if values[name] < limit]
    if not recommendations:
        recommendations.append("No action needed.")

    return HealthScore(
        score=score,
        status=status,
        components=components,
        summary=summary,
        recommendations=recommendations,
    )
