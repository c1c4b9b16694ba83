from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from datetime import datetime, timezone
import re

db = SQLAlchemy()


def utcnow():
    """Naive UTC timestamp; every datetime column stores UTC without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def slugify(text):
    return re.sub(r"[^a-z0-9]+", "-", (text or "").lower()).strip("-")


class User(UserMixin, db.Model):
    __tablename__ = "users"
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True)
    password_hash = db.Column(db.String(256), nullable=False)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    level = db.Column(db.Integer, default=1, nullable=False)
    xp = db.Column(db.Integer, default=0, nullable=False)
    total_points = db.Column(db.Integer, default=0, nullable=False)
    current_streak = db.Column(db.Integer, default=0, nullable=False)
    longest_streak = db.Column(db.Integer, default=0, nullable=False)
    last_activity = db.Column(db.Date, nullable=True)
    xp_multiplier = db.Column(db.Float, default=1.0, nullable=False)
    multiplier_expires_at = db.Column(db.DateTime, nullable=True)
    programming_language = db.Column(db.String(40), default="python")
    created_at = db.Column(db.DateTime, default=utcnow)

    solutions = db.relationship("UserSolution", backref="user", lazy="dynamic", cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "is_admin": self.is_admin,
            "level": self.level,
            "xp": self.xp,
            "total_points": self.total_points,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
            "programming_language": self.programming_language,
        }


class Challenge(db.Model):
    __tablename__ = "challenges"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), unique=True, nullable=False)
    slug = db.Column(db.String(220), index=True)
    category = db.Column(db.String(60), default="algorithms")
    description = db.Column(db.Text, nullable=False, default="")
    rank = db.Column(db.Integer, default=8, nullable=False)
    rank_name = db.Column(db.String(20), default="8 kyu", nullable=False)
    solutions = db.Column(db.Text)
    points = db.Column(db.Integer, default=10, nullable=False)
    time_limit = db.Column(db.Integer, nullable=True)  # seconds
    estimated_time = db.Column(db.Integer, nullable=True)  # minutes
    is_locked = db.Column(db.Boolean, default=False, nullable=False)
    required_level = db.Column(db.Integer, nullable=True)
    solved_count = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    tags = db.relationship(
        "ChallengeTag", backref="challenge", cascade="all, delete-orphan", order_by="ChallengeTag.id"
    )
    test_cases = db.relationship(
        "TestCase", backref="challenge", cascade="all, delete-orphan", order_by="TestCase.order_index"
    )

    def get_tags(self):
        return [t.tag for t in self.tags]

    def set_tags(self, tags):
        cleaned = []
        for tag in tags or []:
            tag = str(tag).strip()
            if tag and tag not in cleaned:
                cleaned.append(tag)
        existing = {t.tag: t for t in self.tags}
        self.tags = [existing.get(t) or ChallengeTag(tag=t) for t in cleaned]

    def to_dict(self, include_solutions=False, include_hidden_tests=False):
        data = {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "category": self.category,
            "description": self.description,
            "rank": self.rank,
            "rank_name": self.rank_name,
            "points": self.points,
            "time_limit": self.time_limit,
            "estimated_time": self.estimated_time,
            "is_locked": self.is_locked,
            "required_level": self.required_level,
            "solved_count": self.solved_count or 0,
            "tags": self.get_tags(),
            "test_count": len(self.test_cases),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_solutions:
            data["solutions"] = self.solutions
        data["test_cases"] = [
            tc.to_dict() for tc in self.test_cases if include_hidden_tests or not tc.is_hidden
        ]
        return data


class ChallengeTag(db.Model):
    __tablename__ = "challenge_tags"
    id = db.Column(db.Integer, primary_key=True)
    challenge_id = db.Column(db.Integer, db.ForeignKey("challenges.id"), nullable=False)
    tag = db.Column(db.String(60), nullable=False, index=True)
    __table_args__ = (db.UniqueConstraint("challenge_id", "tag"),)


class TestCase(db.Model):
    __tablename__ = "test_cases"
    __test__ = False  # keep pytest from collecting the model
    id = db.Column(db.Integer, primary_key=True)
    challenge_id = db.Column(db.Integer, db.ForeignKey("challenges.id"), nullable=False)
    input = db.Column(db.Text, nullable=False, default="")
    expected_output = db.Column(db.Text, nullable=False, default="")
    description = db.Column(db.String(255), default="")
    order_index = db.Column(db.Integer, default=0, nullable=False)
    is_hidden = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "challenge_id": self.challenge_id,
            "input": self.input,
            "expected_output": self.expected_output,
            "description": self.description,
            "order_index": self.order_index,
            "is_hidden": self.is_hidden,
        }


class DailyChallenge(db.Model):
    __tablename__ = "daily_challenges"
    id = db.Column(db.Integer, primary_key=True)
    challenge_id = db.Column(db.Integer, db.ForeignKey("challenges.id"), nullable=False)
    challenge_date = db.Column(db.Date, unique=True, nullable=False)
    bonus_points = db.Column(db.Integer, default=50, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    challenge = db.relationship(
        "Challenge", backref=db.backref("daily_entries", cascade="all, delete-orphan")
    )

    def to_dict(self):
        return {
            "id": self.id,
            "challenge_id": self.challenge_id,
            "challenge_date": self.challenge_date.isoformat(),
            "bonus_points": self.bonus_points,
            "challenge": self.challenge.to_dict() if self.challenge else None,
        }


class UserSolution(db.Model):
    __tablename__ = "user_solutions"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    challenge_id = db.Column(db.Integer, db.ForeignKey("challenges.id"), nullable=False)
    code = db.Column(db.Text, default="")
    status = db.Column(db.String(20), default="failed", nullable=False)  # completed / failed
    tests_passed = db.Column(db.Integer, default=0)
    tests_total = db.Column(db.Integer, default=0)
    points_earned = db.Column(db.Integer, default=0)
    completion_time = db.Column(db.Integer, default=0)
    hints_used = db.Column(db.Integer, default=0)
    is_perfect_solve = db.Column(db.Boolean, default=False)
    passed = db.Column(db.Boolean, default=False)
    failed_attempts = db.Column(db.Integer, default=0)
    last_attempted = db.Column(db.DateTime, default=utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)

    challenge = db.relationship(
        "Challenge", backref=db.backref("user_solutions", cascade="all, delete-orphan")
    )
    __table_args__ = (db.UniqueConstraint("user_id", "challenge_id"),)


class ActivityLog(db.Model):
    __tablename__ = "user_activity_log"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    activity_type = db.Column(db.String(40), nullable=False, index=True)
    points_earned = db.Column(db.Integer, default=0)
    meta = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)


class Achievement(db.Model):
    __tablename__ = "achievements"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), unique=True, nullable=False)
    description = db.Column(db.Text, default="")
    icon = db.Column(db.String(40), default="trophy")
    category = db.Column(db.String(40), default="general")
    tier = db.Column(db.String(20), default="bronze")
    reward_type = db.Column(db.String(20), default="xp")
    reward_amount = db.Column(db.Integer, default=0)
    # challenges_solved / perfect_solves / streak_days / total_xp
    requirement_type = db.Column(db.String(40), nullable=False)
    requirement_total = db.Column(db.Integer, nullable=False, default=1)


class UserAchievement(db.Model):
    __tablename__ = "user_achievements"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    achievement_id = db.Column(db.Integer, db.ForeignKey("achievements.id"), nullable=False)
    progress = db.Column(db.Integer, default=0)
    earned_at = db.Column(db.DateTime, nullable=True)

    achievement = db.relationship("Achievement")
    __table_args__ = (db.UniqueConstraint("user_id", "achievement_id"),)
