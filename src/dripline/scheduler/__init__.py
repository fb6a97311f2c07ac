"""Recurring sweep that advances enrolled contacts."""

from .driver import SWEEP_JOB_ID, SchedulerDriver, SweepReport

__all__ = ["SWEEP_JOB_ID", "SchedulerDriver", "SweepReport"]
