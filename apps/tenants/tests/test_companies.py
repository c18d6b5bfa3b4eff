"""
Tests for the Company model.
"""
import pytest
from django.db import IntegrityError

from apps.tenants.models import Company


@pytest.mark.django_db
class TestCompany:

    def test_slug_is_unique(self, company):
        with pytest.raises(IntegrityError):
            Company.objects.create(name='Acme Works Duplicate', slug=company.slug)

    def test_active_excludes_deactivated(self, company, other_company):
        other_company.is_active = False
        other_company.save()

        assert list(Company.objects.active()) == [company]

    def test_by_slug(self, company):
        assert Company.objects.by_slug('acme-works') == company
        assert Company.objects.by_slug('missing') is None

    def test_users_are_scoped(self, company, other_company, make_user):
        mine = make_user(company)
        make_user(other_company)

        assert list(company.users.all()) == [mine]
