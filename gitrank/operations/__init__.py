"""
Operations Layer

Business logic that composes database methods into multi-step workflows
with validation and business rules:
- RatingOperations: matchups and the vote rating transfer
- EndorsementOperations: endorsement toggles
"""

from .endorsement_operations import EndorsementOperations
from .rating_operations import RatingOperations

__all__ = ['EndorsementOperations', 'RatingOperations']
