"""Difficulty, rank (kyu) and default point tables."""

# Higher kyu number = easier.
DIFFICULTY_RANKS = {
    "easy": (8, "8 kyu"),
    "medium": (5, "5 kyu"),
    "hard": (2, "2 kyu"),
}

RANK_POINTS = {
    8: 10,
    7: 20,
    6: 30,
    5: 50,
    4: 80,
    3: 120,
    2: 180,
    1: 250,
}

DEFAULT_POINTS = 10


def rank_name(rank: int) -> str:
    return f"{rank} kyu"


def rank_for_difficulty(difficulty: str) -> tuple[int, str]:
    """Map 'easy' / 'medium' / 'hard' to (rank, rank_name); unknown values fall back to easy."""
    key = (difficulty or "").strip().lower()
    return DIFFICULTY_RANKS.get(key, DIFFICULTY_RANKS["easy"])


def points_for_rank(rank: int) -> int:
    return RANK_POINTS.get(rank, DEFAULT_POINTS)
