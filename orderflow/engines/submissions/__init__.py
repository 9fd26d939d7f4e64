"""
Submissions Engine - file versions, QC submissions, revisions and feedback.
"""

from orderflow.engines.submissions.tracker import SubmissionTracker

__all__ = ["SubmissionTracker"]
