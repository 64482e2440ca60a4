from questboard.services import (
    countdown,
    task_service,
)


__all__ = [
    "countdown",
    "task_service",
]
