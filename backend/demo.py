"""Create a demo user with a small corpus for development/testing."""

import shutil
from datetime import datetime, timedelta, timezone

from voiceforge.models import ExemplarText, Pattern, UserProfile
from voiceforge.patterns import pattern_id
from voiceforge.services import Services
from voiceforge.text import first_line

DEMO_USER = "demo"

DEMO_PROFILE = UserProfile(
    user_id=DEMO_USER,
    full_name="Sam Rivera",
    headline="Indie developer, ships small tools fast",
    about="I build developer tools on weekends and write about what breaks.",
    goals=["grow an audience of builders", "share honest build logs"],
)

DEMO_POSTS = [
    ("Our beta broke on day 2. I shipped it anyway. That's how I learned to love rollbacks.", 7.4),
    ("The demo crashed in front of 40 people. I shipped it anyway. Don't wait for perfect.", 9.1),
    ("We lost 3 weeks to a config bug. I shipped it anyway. It's still running today.", 5.6),
    ("The migration failed twice. I shipped it anyway. Can't say I regret it.", 4.2),
    ("My first API died under 100 users. I shipped it anyway. That's the whole story.", 6.8),
]

DEMO_PATTERNS = [
    ("hook", "Open with a specific failure and a number", ["The demo crashed in front of 40 people."]),
    ("format", "Three short sentences, the middle one is the refrain", ["I shipped it anyway."]),
    ("emotion", "Unapologetic about shipping imperfect work", ["Can't say I regret it."]),
]


def create_demo_data(services: Services) -> None:
    """Wipe the demo user and recreate profile, corpus and seed patterns."""
    storage = services.storage
    user_dir = storage.base_path / "users" / DEMO_USER
    if user_dir.exists():
        shutil.rmtree(user_dir)

    storage.save_profile(DEMO_PROFILE)

    now = datetime.now(timezone.utc)
    services.add_exemplars(DEMO_USER, [
        ExemplarText(
            id=f"demo-{i}",
            user_id=DEMO_USER,
            text=text,
            hook=first_line(text),
            engagement=engagement,
            posted_at=now - timedelta(days=7 * i),
        )
        for i, (text, engagement) in enumerate(DEMO_POSTS, start=1)
    ])

    for type_, description, examples in DEMO_PATTERNS:
        storage.upsert_pattern(Pattern(
            id=pattern_id(DEMO_USER, type_, description),
            user_id=DEMO_USER,
            type=type_,
            description=description,
            examples=examples,
            success_rate=50.0,
        ))
