"""Participant profile model."""

from dataclasses import dataclass


@dataclass
class Profile:
    """Display data of a participant."""

    user_id: str
    display_name: str | None = None
    avatar_url: str | None = None
