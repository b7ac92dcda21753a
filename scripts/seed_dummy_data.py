import os
import random
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path

# Configuration
DB_PATH = os.getenv("METRICS_SOURCE_DB_PATH", "data/community.db")
DAYS_BACK = 14

# Daily activity per scenario: (new users, new posts, new comments)
SCENARIOS = [
    {"name": "Quiet weekday", "users": (0, 2), "posts": (1, 4), "comments": (2, 10)},
    {"name": "Release day", "users": (3, 8), "posts": (6, 15), "comments": (20, 45)},
    {"name": "Weekend jam", "users": (1, 4), "posts": (3, 8), "comments": (10, 25)},
]


def create_tables(cursor):
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS profiles (
            id TEXT PRIMARY KEY,
            username TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
    """)
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS posts (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            title TEXT,
            created_at TEXT NOT NULL
        )
    """)
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS comments (
            id TEXT PRIMARY KEY,
            post_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            body TEXT,
            created_at TEXT NOT NULL
        )
    """)


def seed_data():
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(DB_PATH)
    cursor = conn.cursor()
    create_tables(cursor)

    print(f"Seeding community data for the last {DAYS_BACK} days...")

    user_ids = []
    post_ids = []

    for day in range(DAYS_BACK, -1, -1):
        date_str = (datetime.now() - timedelta(days=day)).strftime("%Y-%m-%d")
        scenario = random.choice(SCENARIOS)

        # 1. New users
        for i in range(random.randint(*scenario["users"]) or (1 if not user_ids else 0)):
            user_id = f"usr_{date_str}_{i}"
            cursor.execute(
                "INSERT OR IGNORE INTO profiles (id, username, created_at) VALUES (?, ?, ?)",
                (user_id, f"artist_{len(user_ids)}", f"{date_str}T09:{i % 60:02d}:00"),
            )
            user_ids.append(user_id)

        # 2. New tracks/posts
        for i in range(random.randint(*scenario["posts"])):
            post_id = f"pst_{date_str}_{i}"
            cursor.execute(
                "INSERT OR IGNORE INTO posts (id, user_id, title, created_at) VALUES (?, ?, ?, ?)",
                (
                    post_id,
                    random.choice(user_ids),
                    f"Track #{random.randint(1000, 9999)}",
                    f"{date_str}T14:{i % 60:02d}:00",
                ),
            )
            post_ids.append(post_id)

        # 3. Comments on existing posts
        if not post_ids:
            continue
        for i in range(random.randint(*scenario["comments"])):
            cursor.execute(
                "INSERT OR IGNORE INTO comments (id, post_id, user_id, body, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    f"cmt_{date_str}_{i}",
                    random.choice(post_ids),
                    random.choice(user_ids),
                    "nice mix",
                    f"{date_str}T20:{i % 60:02d}:00",
                ),
            )

    conn.commit()
    conn.close()
    print(f"Community database seeded at {DB_PATH}: {len(user_ids)} users, {len(post_ids)} posts.")


if __name__ == "__main__":
    seed_data()
