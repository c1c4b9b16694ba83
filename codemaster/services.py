"""Database glue around the reward and recommendation computations."""
import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from .models import (
    db, utcnow, User, Challenge, DailyChallenge, UserSolution, ActivityLog,
    Achievement, UserAchievement,
)
from .recommendations import (
    SolvedProblem, CandidateProblem, get_recommendations, sanitize_description,
)
from .rewards import (
    SubmissionResult, Bonus, compute_reward, compute_daily_bonus,
    daily_bonus_window, active_multiplier, level_for_xp,
)

logger = logging.getLogger(__name__)

UNEXPECTED_ERROR = "An unexpected error occurred"


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _is_logged_in(user) -> bool:
    return user is not None and getattr(user, "is_authenticated", False)


def log_activity(user: User, activity_type: str, points: int = 0, meta=None, when=None):
    entry = ActivityLog(
        user_id=user.id,
        activity_type=activity_type,
        points_earned=points,
        meta=meta or {},
        created_at=when or utcnow(),
    )
    db.session.add(entry)
    return entry


def update_streak(user: User, today):
    """Extend the streak for consecutive days, keep it for same-day activity, reset otherwise."""
    if user.last_activity is None:
        user.current_streak = 1
    elif user.last_activity == today - timedelta(days=1):
        user.current_streak = (user.current_streak or 0) + 1
    elif user.last_activity == today:
        pass
    else:
        user.current_streak = 1
    user.last_activity = today
    user.longest_streak = max(user.longest_streak or 0, user.current_streak)


def add_xp(user: User, amount: int, when=None) -> bool:
    """Credit XP and move the user up the level curve. Returns True on level up."""
    user.xp = (user.xp or 0) + max(int(amount), 0)
    old_level = user.level or 1
    new_level = level_for_xp(user.xp)
    if new_level > old_level:
        user.level = new_level
        log_activity(user, "level_up", 0, {"old_level": old_level, "new_level": new_level}, when)
        return True
    return False


def is_unlocked_for(challenge: Challenge, user) -> bool:
    if not challenge.is_locked:
        return True
    if getattr(user, "is_admin", False):
        return True
    return challenge.required_level is not None and (user.level or 1) >= challenge.required_level


def todays_daily_challenge(now=None):
    today = (now or utcnow()).date()
    return DailyChallenge.query.filter_by(challenge_date=today).first()


# -----------------------------------------------------------------------------
# Achievements
# -----------------------------------------------------------------------------
def _achievement_progress(user: User, requirement_type: str) -> int:
    if requirement_type == "challenges_solved":
        return UserSolution.query.filter_by(user_id=user.id, status="completed").count()
    if requirement_type == "perfect_solves":
        return UserSolution.query.filter_by(
            user_id=user.id, status="completed", is_perfect_solve=True
        ).count()
    if requirement_type == "streak_days":
        return user.longest_streak or 0
    if requirement_type == "total_xp":
        return user.xp or 0
    return 0


def evaluate_achievements(user: User, now=None) -> list:
    """Refresh achievement progress; unlock, credit and return newly earned achievements."""
    now = now or utcnow()
    unlocked = []
    for ach in Achievement.query.order_by(Achievement.id).all():
        ua = UserAchievement.query.filter_by(user_id=user.id, achievement_id=ach.id).first()
        if ua is None:
            ua = UserAchievement(user_id=user.id, achievement_id=ach.id, progress=0)
            db.session.add(ua)
        if ua.earned_at is not None:
            continue
        progress = _achievement_progress(user, ach.requirement_type)
        ua.progress = min(progress, ach.requirement_total)
        if progress >= ach.requirement_total:
            ua.earned_at = now
            reward = ach.reward_amount or 0
            log_activity(user, "achievement_unlocked", reward, {"achievement_id": ach.id, "name": ach.name}, now)
            if ach.reward_type == "xp" and reward:
                add_xp(user, reward, now)
            unlocked.append(ach)
    return unlocked


def achievements_for(user: User) -> list:
    earned = {ua.achievement_id: ua for ua in UserAchievement.query.filter_by(user_id=user.id).all()}
    items = []
    for ach in Achievement.query.order_by(Achievement.tier, Achievement.id).all():
        ua = earned.get(ach.id)
        items.append({
            "id": ach.id,
            "name": ach.name,
            "description": ach.description,
            "icon": ach.icon,
            "category": ach.category,
            "tier": ach.tier,
            "reward": {"type": ach.reward_type, "amount": ach.reward_amount},
            "progress": ua.progress if ua else 0,
            "total": ach.requirement_total,
            "unlocked_at": ua.earned_at.isoformat() if ua and ua.earned_at else None,
        })
    return items


# -----------------------------------------------------------------------------
# Submissions
# -----------------------------------------------------------------------------
def submit_solution(user, challenge_id, *, code="", tests_passed=0, tests_total=0,
                    time_elapsed=0, hints_used=0, is_perfect_solve=False, now=None):
    if not _is_logged_in(user):
        return {"success": False, "error": "You must be logged in to submit solutions"}

    now = now or utcnow()
    try:
        challenge = db.session.get(Challenge, challenge_id)
        if challenge is None:
            return {"success": False, "error": "Challenge not found"}
        if not is_unlocked_for(challenge, user):
            return {"success": False, "error": "Challenge is locked"}

        submission = SubmissionResult(
            tests_passed=tests_passed,
            tests_total=tests_total,
            hints_used=hints_used,
            is_perfect_solve=bool(is_perfect_solve),
            base_points=challenge.points or 0,
            active_multiplier=active_multiplier(user.xp_multiplier, user.multiplier_expires_at, now),
        )
        rewards = compute_reward(submission)
        all_passed = submission.all_tests_passed

        solution = UserSolution.query.filter_by(user_id=user.id, challenge_id=challenge.id).first()
        if solution is None:
            solution = UserSolution(user_id=user.id, challenge_id=challenge.id, failed_attempts=0)
            db.session.add(solution)
        was_completed = solution.status == "completed"
        first_completion = all_passed and not was_completed

        solution.code = code
        solution.tests_passed = tests_passed
        solution.tests_total = tests_total
        solution.completion_time = time_elapsed
        solution.hints_used = max(int(hints_used), 0)
        solution.last_attempted = now
        if all_passed:
            solution.status = "completed"
            solution.passed = True
            solution.is_perfect_solve = bool(is_perfect_solve) or bool(solution.is_perfect_solve)
        else:
            solution.failed_attempts = (solution.failed_attempts or 0) + 1
            if not was_completed:
                solution.status = "failed"
                solution.passed = False

        old_level = user.level or 1
        if first_completion:
            solution.points_earned = rewards.points_earned
            solution.completed_at = now
            challenge.solved_count = (challenge.solved_count or 0) + 1

            daily = DailyChallenge.query.filter_by(challenge_id=challenge.id, challenge_date=now.date()).first()
            if daily is not None:
                rewards.add_bonus(Bonus(type="daily_challenge", name="Daily Challenge", xp=daily.bonus_points))

            user.total_points = (user.total_points or 0) + rewards.points_earned
            update_streak(user, now.date())
            log_activity(user, "challenge_completed", rewards.total_xp, {
                "challenge_id": challenge.id,
                "points_earned": rewards.points_earned,
                "hints_used": solution.hints_used,
                "is_perfect_solve": bool(is_perfect_solve),
            }, now)
            add_xp(user, rewards.total_xp, now)
            db.session.flush()

            # evaluate_achievements already credited the XP; add_bonus only folds it into the breakdown.
            for ach in evaluate_achievements(user, now):
                xp = (ach.reward_amount or 0) if ach.reward_type == "xp" else 0
                rewards.add_bonus(Bonus(type="achievement", name=ach.name, xp=xp))

        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Submit solution failed for user %s challenge %s", user.id, challenge_id)
        return {"success": False, "error": UNEXPECTED_ERROR}

    logger.info(
        "User %s submitted challenge %s: %d/%d tests, %d points, %d XP%s",
        user.id, challenge.id, tests_passed, tests_total, rewards.points_earned, rewards.total_xp,
        "" if first_completion else " (not credited)",
    )
    return {
        "success": True,
        "data": {
            "status": solution.status,
            "points_earned": rewards.points_earned,
            "xp_gained": rewards.total_xp,
            "credited": first_completion,
            "leveled_up": user.level > old_level,
            "new_level": user.level,
            "rewards": rewards.to_dict(),
        },
    }


# -----------------------------------------------------------------------------
# Daily bonus
# -----------------------------------------------------------------------------
def _bonus_claimed_today(user: User, now) -> bool:
    start, end = daily_bonus_window(now)
    return ActivityLog.query.filter(
        ActivityLog.user_id == user.id,
        ActivityLog.activity_type == "daily_bonus",
        ActivityLog.created_at >= start,
        ActivityLog.created_at < end,
    ).first() is not None


def claim_daily_bonus(user, now=None):
    if not _is_logged_in(user):
        return {"success": False, "message": "User not authenticated"}

    now = now or utcnow()
    try:
        if _bonus_claimed_today(user, now):
            return {"success": False, "message": "Daily bonus already claimed today"}

        bonus = compute_daily_bonus(user.current_streak or 0)
        add_xp(user, bonus.total_xp, now)
        update_streak(user, now.date())
        log_activity(user, "daily_bonus", bonus.total_xp, {
            "base_xp": bonus.base_xp,
            "streak_bonus": bonus.streak_bonus,
            "total_xp": bonus.total_xp,
            "streak": user.current_streak,
        }, now)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Claiming daily bonus failed for user %s", user.id)
        return {"success": False, "message": UNEXPECTED_ERROR}

    logger.info("User %s claimed daily bonus: +%d XP", user.id, bonus.total_xp)
    return {
        "success": True,
        "message": f"Daily bonus claimed! +{bonus.total_xp} XP",
        "xp_earned": bonus.total_xp,
        "streak": user.current_streak,
    }


def check_daily_bonus_eligibility(user, now=None):
    if not _is_logged_in(user):
        return {"eligible": False, "streak": 0}

    now = now or utcnow()
    last = (
        ActivityLog.query.filter_by(user_id=user.id, activity_type="daily_bonus")
        .order_by(ActivityLog.created_at.desc())
        .first()
    )
    streak = user.current_streak or 0
    return {
        "eligible": not _bonus_claimed_today(user, now),
        "last_claimed": last.created_at.isoformat() if last else None,
        "streak": streak,
        "next_bonus": compute_daily_bonus(streak).total_xp,
    }


# -----------------------------------------------------------------------------
# Recommendations
# -----------------------------------------------------------------------------
def _solved_challenges(user: User):
    return (
        Challenge.query.join(UserSolution, UserSolution.challenge_id == Challenge.id)
        .filter(UserSolution.user_id == user.id, UserSolution.status == "completed")
        .all()
    )


def fetch_solved_problems(user: User) -> list:
    return [
        SolvedProblem(
            name=c.name,
            rank=c.rank or 1,
            tags=c.get_tags(),
            description=sanitize_description(c.description),
            passed=True,
        )
        for c in _solved_challenges(user)
    ]


def fetch_candidate_problems(user: User, limit: int = 50) -> list:
    solved_ids = [c.id for c in _solved_challenges(user)]
    query = Challenge.query.filter(Challenge.is_locked.is_(False))
    if solved_ids:
        query = query.filter(~Challenge.id.in_(solved_ids))
    return [
        CandidateProblem(
            name=c.name,
            rank=c.rank,
            rank_name=c.rank_name,
            tags=c.get_tags(),
            description=sanitize_description(c.description),
        )
        for c in query.order_by(Challenge.rank.asc(), Challenge.id.asc()).limit(limit).all()
    ]


def lookup_challenge_details(names) -> dict:
    names = [n for n in names if n]
    if not names:
        return {}
    return {c.name: c.to_dict() for c in Challenge.query.filter(Challenge.name.in_(names)).all()}


def recommendation_client():
    return current_app.extensions["recommendation_client"]


def personalized_recommendations(user: User, top_n=None):
    top_n = top_n or current_app.config["RECOMMENDATION_TOP_N"]
    try:
        solved = fetch_solved_problems(user)
        candidates = fetch_candidate_problems(user, current_app.config["RECOMMENDATION_CANDIDATE_LIMIT"])
    except SQLAlchemyError:
        logger.exception("Loading recommendation inputs failed for user %s", user.id)
        return None
    logger.info("Recommendations for user %s: %d solved, %d candidates", user.id, len(solved), len(candidates))
    return get_recommendations(
        solved, candidates, top_n,
        client=recommendation_client(),
        lookup=lookup_challenge_details,
    )


def recommendation_data(user: User, limit=None):
    limit = limit or current_app.config["RECOMMENDATION_CANDIDATE_LIMIT"]
    solved = fetch_solved_problems(user)
    candidates = fetch_candidate_problems(user, limit)
    details = lookup_challenge_details([c.name for c in candidates])
    return {
        "solved_problems": [p.to_payload() for p in solved],
        "candidate_problems": [p.to_payload() for p in candidates],
        "challenge_details": list(details.values()),
    }
