from .steps import DailySteps  # noqa: F401
