"""API routers."""

from task_market_service.routers import applications, health, ratings, tasks, users

__all__ = ["applications", "health", "ratings", "tasks", "users"]
