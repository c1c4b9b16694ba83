import logging
import math
from collections import Counter

from flask import Blueprint, jsonify, request, abort
from flask_login import login_required, current_user
from sqlalchemy import or_, func
from sqlalchemy.exc import IntegrityError

from ..models import db, utcnow, slugify, Challenge, TestCase, DailyChallenge
from ..ranks import rank_for_difficulty, points_for_rank

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")
logger = logging.getLogger(__name__)

DEFAULT_DAILY_BONUS_POINTS = 50
EDITABLE_FIELDS = (
    "name", "category", "description", "solutions", "points", "time_limit",
    "estimated_time", "is_locked", "required_level",
)


def admin_required():
    return current_user.is_authenticated and current_user.is_admin


@admin_bp.before_request
@login_required
def require_admin():
    if not admin_required():
        abort(403, description="Admin only.")


def _get_challenge_or_404(challenge_id):
    ch = db.session.get(Challenge, challenge_id)
    if ch is None:
        abort(404, description="Challenge not found")
    return ch


def _add_test_cases(ch, test_cases, start_index=0):
    created = []
    for offset, tc in enumerate(test_cases or []):
        index = start_index + offset
        tc_row = TestCase(
            input=tc.get("input", ""),
            expected_output=tc.get("expected_output", ""),
            description=tc.get("description") or f"Test case {index + 1}",
            order_index=tc.get("order_index", index),
            is_hidden=bool(tc.get("is_hidden", False)),
        )
        ch.test_cases.append(tc_row)
        created.append(tc_row)
    return created


def _set_daily(ch, bonus_points):
    today = utcnow().date()
    daily = DailyChallenge.query.filter_by(challenge_date=today).first()
    if daily is None:
        daily = DailyChallenge(challenge_date=today)
        db.session.add(daily)
    daily.challenge = ch
    daily.bonus_points = bonus_points or DEFAULT_DAILY_BONUS_POINTS


# ---- Challenges
@admin_bp.get("/challenges")
def challenges_list():
    page = max(request.args.get("page", 1, type=int), 1)
    limit = min(max(request.args.get("limit", 20, type=int), 1), 100)
    search = request.args.get("search", "").strip()
    category = request.args.get("category", "all")
    difficulty = request.args.get("difficulty", "all")

    query = Challenge.query
    if search:
        like = f"%{search.lower()}%"
        query = query.filter(
            or_(func.lower(Challenge.name).like(like), func.lower(Challenge.description).like(like))
        )
    if category and category != "all":
        query = query.filter(Challenge.category == category)
    if difficulty and difficulty != "all":
        query = query.filter(Challenge.rank_name == difficulty)

    pagination = query.order_by(Challenge.created_at.desc(), Challenge.id.desc()).paginate(
        page=page, per_page=limit, error_out=False
    )
    return {
        "challenges": [c.to_dict(include_solutions=True, include_hidden_tests=True) for c in pagination.items],
        "total": pagination.total,
        "total_pages": math.ceil((pagination.total or 0) / limit),
        "page": page,
    }


@admin_bp.post("/challenges")
def challenge_create():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        return jsonify({"success": False, "error": "Name is required."}), 400

    rank, rank_name = rank_for_difficulty(data.get("difficulty", "easy"))
    ch = Challenge(
        name=name,
        slug=slugify(name),
        category=(data.get("category") or "algorithms").strip(),
        description=data.get("description", ""),
        solutions=data.get("solutions", ""),
        rank=rank,
        rank_name=rank_name,
        points=data.get("points") or points_for_rank(rank),
        time_limit=data.get("time_limit"),
        estimated_time=data.get("estimated_time"),
        is_locked=bool(data.get("is_locked", False)),
        required_level=data.get("required_level"),
        solved_count=0,
    )
    ch.set_tags(data.get("tags"))
    _add_test_cases(ch, data.get("test_cases"))
    db.session.add(ch)
    if data.get("is_daily_challenge"):
        _set_daily(ch, data.get("daily_bonus_points"))
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.warning("Challenge %r already exists", name)
        return jsonify({"success": False, "error": "A challenge with that name already exists."}), 409

    logger.info("Admin %s created challenge %s (%s)", current_user.id, ch.id, ch.rank_name)
    return jsonify({"success": True, "challenge_id": ch.id}), 201


@admin_bp.get("/challenges/<int:challenge_id>")
def challenge_get(challenge_id):
    ch = _get_challenge_or_404(challenge_id)
    return ch.to_dict(include_solutions=True, include_hidden_tests=True)


@admin_bp.route("/challenges/<int:challenge_id>", methods=["PATCH", "POST"])
def challenge_update(challenge_id):
    ch = _get_challenge_or_404(challenge_id)
    data = request.get_json(silent=True) or {}

    for field in EDITABLE_FIELDS:
        if field in data:
            setattr(ch, field, data[field])
    if "name" in data:
        ch.slug = slugify(ch.name)
    if data.get("difficulty"):
        ch.rank, ch.rank_name = rank_for_difficulty(data["difficulty"])
        if "points" not in data:
            ch.points = points_for_rank(ch.rank)
    if "tags" in data:
        ch.set_tags(data["tags"])
    if data.get("is_daily_challenge"):
        _set_daily(ch, data.get("daily_bonus_points"))
    ch.updated_at = utcnow()
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"success": False, "error": "A challenge with that name already exists."}), 409

    logger.info("Admin %s updated challenge %s", current_user.id, ch.id)
    return {"success": True}


@admin_bp.delete("/challenges/<int:challenge_id>")
def challenge_delete(challenge_id):
    ch = _get_challenge_or_404(challenge_id)
    db.session.delete(ch)
    db.session.commit()
    logger.info("Admin %s deleted challenge %s", current_user.id, challenge_id)
    return {"success": True}


# ---- Test cases
@admin_bp.get("/challenges/<int:challenge_id>/test-cases")
def test_cases_list(challenge_id):
    ch = _get_challenge_or_404(challenge_id)
    return {"test_cases": [tc.to_dict() for tc in ch.test_cases]}


@admin_bp.post("/challenges/<int:challenge_id>/test-cases")
def test_case_add(challenge_id):
    ch = _get_challenge_or_404(challenge_id)
    data = request.get_json(silent=True) or {}
    if "input" not in data or "expected_output" not in data:
        return jsonify({"success": False, "error": "input and expected_output are required."}), 400
    (tc,) = _add_test_cases(ch, [data], start_index=len(ch.test_cases))
    db.session.commit()
    return jsonify({"success": True, "test_case": tc.to_dict()}), 201


@admin_bp.delete("/test-cases/<int:test_case_id>")
def test_case_delete(test_case_id):
    tc = db.session.get(TestCase, test_case_id)
    if tc is None:
        abort(404, description="Test case not found")
    db.session.delete(tc)
    db.session.commit()
    return {"success": True}


# ---- Stats
@admin_bp.get("/stats")
def stats():
    challenges = Challenge.query.all()
    most_solved = Challenge.query.order_by(Challenge.solved_count.desc()).limit(5).all()
    return {
        "total_challenges": len(challenges),
        "by_difficulty": dict(Counter(c.rank_name for c in challenges)),
        "by_category": dict(Counter(c.category for c in challenges)),
        "most_solved": [{"name": c.name, "solved_count": c.solved_count} for c in most_solved],
    }
