"""Reconciliation: state machine driver, scheduler and operator facade."""

from acmesync.reconciler.controller import (
    Controller,
    InvalidOperationError,
    RequestNotFoundError,
)
from acmesync.reconciler.machine import RequestMachine, RetryPolicy, StaleRequestError
from acmesync.reconciler.scheduler import Scheduler

__all__ = [
    "Controller",
    "InvalidOperationError",
    "RequestMachine",
    "RequestNotFoundError",
    "RetryPolicy",
    "Scheduler",
    "StaleRequestError",
]
