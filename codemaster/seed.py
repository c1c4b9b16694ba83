import click
from werkzeug.security import generate_password_hash

from .models import db, slugify, User, Challenge, TestCase, Achievement
from .ranks import rank_for_difficulty, points_for_rank, rank_name

SAMPLE_CHALLENGES = [
    {
        "name": "Rock Paper Scissors",
        "category": "reference",
        "difficulty": "easy",
        "description": "Implement the classic game logic.",
        "tags": ["Logic", "Conditionals"],
        "tests": [("'rock', 'scissors'", "'Player 1 won!'"), ("'paper', 'paper'", "'Draw!'")],
    },
    {
        "name": "FizzBuzz Challenge",
        "category": "algorithms",
        "rank": 7,
        "description": "The classic interview question.",
        "tags": ["Loops", "Logic"],
        "tests": [("3", "'Fizz'"), ("15", "'FizzBuzz'")],
    },
    {
        "name": "Binary Search Tree",
        "category": "data_structures",
        "difficulty": "medium",
        "description": "Implement BST insert and lookup.",
        "tags": ["Trees", "Recursion"],
        "tests": [("[5, 3, 8], 3", "True")],
        "is_locked": True,
        "required_level": 15,
    },
]

DEFAULT_ACHIEVEMENTS = [
    ("First Steps", "Solve your first challenge.", "challenges_solved", 1, "bronze", 25),
    ("Problem Solver", "Solve 10 challenges.", "challenges_solved", 10, "silver", 100),
    ("Flawless", "Get 5 perfect solves.", "perfect_solves", 5, "gold", 150),
    ("On Fire", "Keep a 7 day streak.", "streak_days", 7, "silver", 100),
    ("XP Hoarder", "Earn 1000 XP.", "total_xp", 1000, "gold", 200),
]


def seed_data():
    # admin
    if not User.query.filter_by(username="admin").first():
        db.session.add(User(
            username="admin",
            email="admin@example.com",
            is_admin=True,
            password_hash=generate_password_hash("admin123"),
        ))
    # default challenges
    if Challenge.query.count() == 0:
        for item in SAMPLE_CHALLENGES:
            if "rank" in item:
                rank = item["rank"]
                name_of_rank = rank_name(rank)
            else:
                rank, name_of_rank = rank_for_difficulty(item["difficulty"])
            ch = Challenge(
                name=item["name"],
                slug=slugify(item["name"]),
                category=item["category"],
                description=item["description"],
                rank=rank,
                rank_name=name_of_rank,
                points=points_for_rank(rank),
                is_locked=item.get("is_locked", False),
                required_level=item.get("required_level"),
            )
            ch.set_tags(item["tags"])
            for i, (given, expected) in enumerate(item["tests"]):
                ch.test_cases.append(TestCase(input=given, expected_output=expected, order_index=i,
                                              description=f"Test case {i + 1}"))
            db.session.add(ch)
    # default achievements
    if Achievement.query.count() == 0:
        for name, desc, req_type, total, tier, reward in DEFAULT_ACHIEVEMENTS:
            db.session.add(Achievement(
                name=name, description=desc, requirement_type=req_type,
                requirement_total=total, tier=tier, reward_type="xp", reward_amount=reward,
            ))
    db.session.commit()


def register_cli(app):
    @app.cli.command("seed")
    def seed_command():
        """Load the admin account, sample challenges and achievements."""
        seed_data()
        click.echo("Seeded database.")
