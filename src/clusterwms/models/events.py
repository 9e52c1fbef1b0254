"""Inbound events delivered to the controller by the event source."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .reservation import Reservation


@dataclass
class TaskJob:
    """A single-task job created by the job manager."""
    name: str
    task: Any


@dataclass
class ReservationGranted:
    reservation: Reservation


@dataclass
class ReservationExpired:
    reservation: Reservation


@dataclass
class TaskCompleted:
    job: TaskJob


@dataclass
class TaskFailed:
    job: TaskJob
    reason: str = ""


Event = ReservationGranted | ReservationExpired | TaskCompleted | TaskFailed
