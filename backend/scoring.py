"""Answer scoring: a flat reward for a correct answer plus a speed bonus."""
import math

import config


def clamp_time_left(time_left: float, round_duration: float) -> float:
    """Force a client-reported time into [0, round_duration]."""
    return max(0.0, min(float(time_left), float(round_duration)))


def calculate_score(time_left: float, round_duration: float = config.ROUND_DURATION) -> int:
    """Points for a correct answer given the seconds left on the round timer.

    100 points for being right, plus up to 100 more scaled by the fraction of
    the round still remaining. Callers clamp ``time_left`` first.
    """
    fraction = time_left / round_duration
    return config.BASE_POINTS + math.floor(config.SPEED_BONUS_POINTS * fraction)


def score_answer(correct: bool, time_left: float, round_duration: float = config.ROUND_DURATION) -> int:
    if not correct:
        return 0
    return calculate_score(clamp_time_left(time_left, round_duration), round_duration)
