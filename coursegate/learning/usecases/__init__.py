"""Use case layer for the Learning context.

Re-export common use cases for convenient imports in tests.
"""

from .analytics import QuizAnalyticsInput, QuizAnalyticsUseCase
from .attempts import (
    GetAttemptInput,
    GetAttemptUseCase,
    ListMyAttemptsInput,
    ListMyAttemptsUseCase,
    StartAttemptInput,
    StartAttemptUseCase,
    SubmitAttemptInput,
    SubmitAttemptUseCase,
)

__all__ = [
    "QuizAnalyticsInput",
    "QuizAnalyticsUseCase",
    "GetAttemptInput",
    "GetAttemptUseCase",
    "ListMyAttemptsInput",
    "ListMyAttemptsUseCase",
    "StartAttemptInput",
    "StartAttemptUseCase",
    "SubmitAttemptInput",
    "SubmitAttemptUseCase",
]
