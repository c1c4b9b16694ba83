from flask import Blueprint, jsonify, request, abort
from flask_login import login_required, current_user
from sqlalchemy import or_, func

from ..models import db, User, Challenge, ChallengeTag, UserSolution, ActivityLog
from ..recommendations import format_recommendation_reasons
from ..rewards import xp_progress
from .. import services

main_bp = Blueprint("main", __name__)

SUPPORTED_LANGUAGES = {"python", "javascript", "typescript", "java", "c", "cpp", "go", "rust"}
SUBMIT_ERROR_STATUS = {
    "Challenge not found": 404,
    "Challenge is locked": 403,
}


def _int_field(data, name, default=0):
    value = data.get(name, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        abort(400, description=f"{name} must be an integer")


def _bool_field(data, name):
    value = data.get(name, False)
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _solved_ids(user):
    return {
        s.challenge_id
        for s in UserSolution.query.filter_by(user_id=user.id, status="completed").all()
    }


@main_bp.route("/")
def index():
    return {"name": "CodeMaster", "status": "ok"}


# ---- Browsing
@main_bp.route("/challenges")
def challenges_list():
    query = Challenge.query
    category = request.args.get("category", "").strip()
    difficulty = request.args.get("difficulty", "").strip()
    tag = request.args.get("tag", "").strip()
    search = request.args.get("search", "").strip()

    if category and category != "all":
        query = query.filter(Challenge.category == category)
    if difficulty and difficulty != "all":
        query = query.filter(Challenge.rank_name == difficulty)
    if tag:
        query = query.filter(Challenge.tags.any(ChallengeTag.tag == tag))
    if search:
        like = f"%{search.lower()}%"
        query = query.filter(
            or_(func.lower(Challenge.name).like(like), func.lower(Challenge.description).like(like))
        )

    challenges = query.order_by(Challenge.rank.desc(), Challenge.id.asc()).all()
    solved = _solved_ids(current_user) if current_user.is_authenticated else set()
    items = []
    for ch in challenges:
        data = ch.to_dict()
        data.pop("test_cases")
        data["solved"] = ch.id in solved
        items.append(data)
    return {"challenges": items, "total": len(items)}


@main_bp.route("/challenges/<int:challenge_id>")
def challenge_detail(challenge_id):
    ch = db.session.get(Challenge, challenge_id)
    if ch is None:
        abort(404, description="Challenge not found")
    data = ch.to_dict()
    if current_user.is_authenticated:
        data["unlocked"] = services.is_unlocked_for(ch, current_user)
        data["solved"] = ch.id in _solved_ids(current_user)
    else:
        data["unlocked"] = not ch.is_locked
    return data


@main_bp.route("/daily-challenge")
def daily_challenge():
    daily = services.todays_daily_challenge()
    if daily is None:
        abort(404, description="No daily challenge today")
    data = daily.to_dict()
    data["challenge"].pop("test_cases", None)
    return data


# ---- Solving
@main_bp.post("/challenges/<int:challenge_id>/submit")
@login_required
def submit_challenge(challenge_id):
    data = request.get_json(silent=True) or {}
    result = services.submit_solution(
        current_user,
        challenge_id,
        code=data.get("code", ""),
        tests_passed=_int_field(data, "tests_passed"),
        tests_total=_int_field(data, "tests_total"),
        time_elapsed=_int_field(data, "time_elapsed"),
        hints_used=_int_field(data, "hints_used"),
        is_perfect_solve=_bool_field(data, "is_perfect_solve"),
    )
    if result["success"]:
        return result
    return jsonify(result), SUBMIT_ERROR_STATUS.get(result["error"], 500)


# ---- Daily bonus
@main_bp.get("/daily-bonus")
@login_required
def daily_bonus_status():
    return services.check_daily_bonus_eligibility(current_user)


@main_bp.post("/daily-bonus")
@login_required
def daily_bonus_claim():
    result = services.claim_daily_bonus(current_user)
    return jsonify(result), 200 if result["success"] else 409


# ---- Recommendations
@main_bp.get("/recommendations")
@login_required
def recommendations():
    top_n = request.args.get("top_n", type=int)
    result = services.personalized_recommendations(current_user, top_n)
    if result is None:
        # Unranked fallback: whatever the user has not solved yet.
        solved = _solved_ids(current_user)
        fallback = [
            ch.to_dict() for ch in Challenge.query.filter(Challenge.is_locked.is_(False))
            .order_by(Challenge.rank.desc(), Challenge.id.asc()).all()
            if ch.id not in solved
        ]
        for item in fallback:
            item.pop("test_cases")
        return {"personalized": False, "recommendations": [], "challenges": fallback}

    for rec in result["recommendations"]:
        rec["reason_text"] = format_recommendation_reasons(rec.get("reasons") or [])
    return {"personalized": True, **result}


@main_bp.get("/recommendations/data")
@login_required
def recommendations_data():
    return services.recommendation_data(current_user)


# ---- Profile & achievements
@main_bp.route("/profile", methods=["GET", "POST"])
@login_required
def profile():
    if request.method == "POST":
        data = request.get_json(silent=True) or request.form
        username = (data.get("username") or "").strip()
        language = (data.get("programming_language") or "").strip().lower()
        if username and username != current_user.username:
            if User.query.filter_by(username=username).first():
                return jsonify({"success": False, "error": "Username already taken."}), 409
            current_user.username = username
        if language:
            if language not in SUPPORTED_LANGUAGES:
                return jsonify({"success": False, "error": "Unsupported language."}), 400
            current_user.programming_language = language
        db.session.commit()

    solved = UserSolution.query.filter_by(user_id=current_user.id, status="completed")
    recent = (
        ActivityLog.query.filter_by(user_id=current_user.id)
        .order_by(ActivityLog.created_at.desc()).limit(10).all()
    )
    return {
        "success": True,
        "user": current_user.to_dict(),
        "progress": xp_progress(current_user.xp),
        "stats": {
            "challenges_solved": solved.count(),
            "perfect_solves": solved.filter_by(is_perfect_solve=True).count(),
        },
        "recent_activity": [
            {
                "activity_type": a.activity_type,
                "points_earned": a.points_earned,
                "meta": a.meta,
                "created_at": a.created_at.isoformat(),
            }
            for a in recent
        ],
    }


@main_bp.get("/achievements")
@login_required
def achievements():
    items = services.achievements_for(current_user)
    return {
        "achievements": items,
        "unlocked": sum(1 for a in items if a["unlocked_at"]),
        "total": len(items),
    }


@main_bp.route("/leaderboard")
def leaderboard():
    users = User.query.order_by(User.xp.desc(), User.current_streak.desc()).limit(50).all()
    me = current_user.id if current_user.is_authenticated else None
    return {
        "leaderboard": [
            {
                "rank": i,
                "username": u.username,
                "points": u.total_points,
                "xp": u.xp,
                "level": u.level,
                "streak": u.current_streak,
                "is_current_user": u.id == me,
            }
            for i, u in enumerate(users, 1)
        ]
    }
