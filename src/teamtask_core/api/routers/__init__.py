"""API routers for teamtask core."""

from . import auth, teams, projects, tasks, activities, realtime

__all__ = ["auth", "teams", "projects", "tasks", "activities", "realtime"]
