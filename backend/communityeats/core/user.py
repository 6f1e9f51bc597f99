# communityeats/core/user.py

from typing import Dict, Iterable, Optional, Tuple

from sqlalchemy.orm import Session

from communityeats.core import clock
from communityeats.models.user import User

MAX_NAME_LENGTH = 100


def upsert_user(
    db: Session,
    uid: str,
    name: str,
    email: str,
    email_verified: bool = False,
) -> Tuple[User, bool]:
    """Create or update the user's profile. Returns (user, created)."""
    existing = db.query(User).filter(User.uid == uid).first()
    if existing:
        existing.name = name
        existing.email = email
        existing.email_verified = email_verified
        existing.updated_at = clock.now()
        user, created = existing, False
    else:
        user = User(uid=uid, name=name, email=email, email_verified=email_verified)
        db.add(user)
        created = True

    db.commit()
    return user, created


def get_user(db: Session, uid: str) -> Optional[User]:
    return db.query(User).filter(User.uid == uid).first()


def fetch_display_names(db: Session, uids: Iterable[str]) -> Dict[str, Optional[str]]:
    """Current display name per uid; None when the user has no usable name."""
    wanted = list(dict.fromkeys(uid for uid in uids if uid))
    names: Dict[str, Optional[str]] = {uid: None for uid in wanted}
    if not wanted:
        return names

    for user in db.query(User).filter(User.uid.in_(wanted)).all():
        name = (user.name or "").strip()
        names[user.uid] = name or None
    return names
