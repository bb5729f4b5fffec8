"""Participant directory module."""

from .directory import IParticipantDirectory, ParticipantDirectory

__all__ = ["IParticipantDirectory", "ParticipantDirectory"]
