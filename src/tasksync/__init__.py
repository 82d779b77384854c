"""Mirror a task spreadsheet into a calendar, one event per task."""

__version__ = "0.1.0"
