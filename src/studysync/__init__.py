"""StudySync - remote question-bank synchronization engine."""

__version__ = "0.1.0"
