"""
Tenant models.

A Company is the tenant boundary: users, roles scoped to a tenant, audit
records and every business resource belong to exactly one company.
"""
from django.db import models
from apps.core.models import BaseModel


class CompanyManager(models.Manager):
    """Manager for Company queries."""

    def active(self):
        """Return only active companies."""
        return self.filter(is_active=True)

    def by_slug(self, slug):
        """Find company by slug."""
        return self.filter(slug=slug).first()


class Company(BaseModel):
    """
    Company model representing an isolated business account.

    Permissions, custom roles and resources are scoped to a company and must
    never be visible from another company.
    """

    name = models.CharField(
        max_length=255,
        help_text="Business name"
    )
    slug = models.SlugField(
        unique=True,
        max_length=100,
        help_text="URL-friendly identifier"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether the company account is active"
    )

    objects = CompanyManager()

    class Meta:
        db_table = 'companies'
        ordering = ['name']
        verbose_name_plural = 'companies'

    def __str__(self):
        return self.name
