"""
Scrum update assistant: chat sessions and day-wise scrum update drafts.
"""

__version__ = "1.0.0"
