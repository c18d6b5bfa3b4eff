"""
Core models for Opsdesk.
Provides BaseModel with numeric primary keys and timestamp fields.
"""
from django.db import models


class BaseModel(models.Model):
    """
    Abstract base model with timestamps.

    All models in Opsdesk should inherit from this base model to ensure
    consistent behavior across the platform. Primary keys are the project
    default auto field (numeric ids).
    """
    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when the record was created"
    )

    updated_at = models.DateTimeField(
        auto_now=True,
        db_index=True,
        help_text="Timestamp when the record was last updated"
    )

    class Meta:
        abstract = True
        ordering = ['-created_at']
