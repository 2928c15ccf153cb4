#!/usr/bin/env python3
"""
Sample Data for ContextVault Tests

Small, hand-written entries plus low-dimensional vectors chosen so that
similarities are easy to reason about in assertions.

Usage:
    python -m tests.fixtures.sample_data --output data/sample_entries.jsonl
"""

import json
import random
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List

# =============================================================================
# Sample Entries
# =============================================================================

USER_ID = "user-1"
OTHER_USER_ID = "user-2"

SAMPLE_ENTRIES = [
    {
        "id": "E1",
        "user_id": USER_ID,
        "title": "Machine learning ethics reading notes",
        "content": "Notes on fairness, accountability and transparency in machine learning systems. "
                   "Bias in training data leads to biased predictions.",
        "tags": ["ml", "ethics"],
        "source": "notes",
    },
    {
        "id": "E2",
        "user_id": USER_ID,
        "title": "Responsible AI checklist",
        "content": "Checklist for reviewing models before release: data provenance, evaluation "
                   "across groups, documentation of intended use.",
        "tags": ["ai", "ethics", "checklist"],
        "source": "notes",
    },
    {
        "id": "E3",
        "user_id": USER_ID,
        "title": "React hooks cheat sheet",
        "content": "useState for local state, useEffect for side effects, useMemo for expensive "
                   "computations. Custom hooks share logic between components.",
        "tags": ["react", "javascript"],
        "source": "bookmarks",
    },
    {
        "id": "E4",
        "user_id": USER_ID,
        "title": "Sourdough schedule",
        "content": "Feed the starter the night before. Mix at 9am, bulk ferment until doubled, "
                   "shape and proof overnight in the fridge.",
        "tags": ["cooking"],
        "source": "journal",
    },
    {
        "id": "X1",
        "user_id": OTHER_USER_ID,
        "title": "Machine learning ethics for another user",
        "content": "This entry belongs to a different user and must never show up in user-1 results.",
        "tags": ["ml", "ethics"],
        "source": "notes",
    },
]

# 4-dimensional vectors: axis 0 ~ "ethics", 1 ~ "ml", 2 ~ "frontend", 3 ~ "cooking"
SAMPLE_VECTORS = {
    "E1": [0.7, 0.7, 0.0, 0.1],
    "E2": [0.9, 0.3, 0.1, 0.0],
    "E3": [0.0, 0.1, 1.0, 0.0],
    "E4": [0.0, 0.0, 0.0, 1.0],
    "X1": [0.7, 0.7, 0.0, 0.1],
}

SAMPLE_DIMENSION = 4


def entries_for(user_id: str = USER_ID) -> List[Dict[str, Any]]:
    """Sample entries belonging to one user."""
    return [dict(e) for e in SAMPLE_ENTRIES if e["user_id"] == user_id]


def seed_repository(repo, with_vectors: bool = True, model: str = "fixture-4"):
    """
    Save every sample entry into a repository, optionally with its vector.

    Stored checksums match the entry text, so embeddings start out fresh.
    """
    from search.embeddings import prepare_entry_text
    from search.lifecycle import compute_checksum

    for entry in SAMPLE_ENTRIES:
        repo.save(dict(entry))
        if with_vectors:
            text = prepare_entry_text(entry["title"], entry["content"], entry["tags"])
            repo.save_embedding(entry["id"], SAMPLE_VECTORS[entry["id"]], compute_checksum(text), model)
    return repo


# =============================================================================
# Generator
# =============================================================================

TOPICS = {
    "ml": ["model training", "evaluation metrics", "feature engineering", "overfitting"],
    "web": ["react components", "css layout", "http caching", "form validation"],
    "ops": ["docker images", "kubernetes rollout", "log aggregation", "backups"],
}


def generate_sample_entries(count: int = 50, user_id: str = USER_ID, seed: int = 42) -> List[Dict[str, Any]]:
    """Generate random but reproducible entries for manual testing."""
    rng = random.Random(seed)
    start = datetime(2024, 1, 1)
    entries = []

    for _ in range(count):
        topic = rng.choice(sorted(TOPICS))
        subjects = rng.sample(TOPICS[topic], 2)
        entries.append({
            "id": str(uuid.UUID(int=rng.getrandbits(128))),
            "user_id": user_id,
            "title": f"Notes on {subjects[0]}",
            "content": f"Working notes about {subjects[0]} and {subjects[1]} in {topic}.",
            "tags": [topic] + [s.split()[0] for s in subjects],
            "source": rng.choice(["notes", "bookmarks", "journal"]),
            "created_at": (start + timedelta(days=rng.randint(0, 365))).isoformat(),
        })

    return entries


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Generate sample ContextVault entries")
    parser.add_argument("--output", "-o", required=True, help="Output JSONL file")
    parser.add_argument("--count", "-n", type=int, default=50, help="Number of entries")
    parser.add_argument("--user", "-u", default=USER_ID, help="User id")
    args = parser.parse_args()

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    with open(output, "w") as f:
        for entry in generate_sample_entries(args.count, args.user):
            f.write(json.dumps(entry) + "\n")

    print(f"Wrote {args.count} entries to {output}")
