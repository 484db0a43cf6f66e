"""StudyShelf: resilient document access and study tools for the bookstore."""

__version__ = "0.3.0"
