"""Team task management core: teams, projects, tasks, activity audit and realtime fan-out."""

__version__ = "1.0.0"
