"""
Resource stores consulted by contextual policies.

The authorization engine never reads business entities directly. Each
resource type (tasks, attendance, orders, users) is registered with a store
that answers one narrow question: who owns a given resource and which
company it belongs to. Stores are read-only.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from django.conf import settings
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OwnershipDescriptor:
    """Company and ownership fields of one resource."""

    company_id: int
    owner_id: Optional[int]
    assignee_id: Optional[int] = None


class ResourceStore:
    """Interface implemented by every resource store."""

    def get_ownership_descriptor(self, resource_id) -> Optional[OwnershipDescriptor]:
        """Return the descriptor, or None when the resource does not exist."""
        raise NotImplementedError


class ModelResourceStore(ResourceStore):
    """
    Resource store backed by a Django model.

    Args:
        model: Model class or ``'app_label.ModelName'`` string
        company_field: Field holding the company id (may traverse relations,
            e.g. ``'user__company_id'``)
        owner_field: Field holding the creator / owner user id
        assignee_field: Optional field holding the assignee user id
    """

    def __init__(self, model, company_field='company_id', owner_field='created_by_id',
                 assignee_field=None):
        self._model = model
        self.company_field = company_field
        self.owner_field = owner_field
        self.assignee_field = assignee_field

    @property
    def model(self):
        if isinstance(self._model, str):
            from django.apps import apps
            self._model = apps.get_model(self._model)
        return self._model

    def get_ownership_descriptor(self, resource_id) -> Optional[OwnershipDescriptor]:
        fields = [self.company_field, self.owner_field]
        if self.assignee_field:
            fields.append(self.assignee_field)

        row = self.model._default_manager.filter(pk=resource_id).values_list(*fields).first()
        if row is None:
            return None
        return OwnershipDescriptor(
            company_id=row[0],
            owner_id=row[1],
            assignee_id=row[2] if self.assignee_field else None,
        )


class UserResourceStore(ModelResourceStore):
    """
    Store for user accounts.

    A user "owns" their own account. Also answers the primary-role lookup
    used by the role-compatibility predicate.
    """

    def __init__(self):
        super().__init__(model='rbac.User', company_field='company_id', owner_field='id')

    def get_user_role(self, user_id) -> Optional[str]:
        """Return the user's primary role, or None if the user does not exist."""
        return self.model._default_manager.filter(pk=user_id).values_list('role', flat=True).first()

    def get_user_company(self, user_id) -> Optional[int]:
        return self.model._default_manager.filter(pk=user_id).values_list('company_id', flat=True).first()


class ResourceStoreRegistry:
    """Maps resource type names to their stores."""

    def __init__(self, stores: Optional[Dict[str, ResourceStore]] = None):
        self._stores: Dict[str, ResourceStore] = {}
        for resource_type, store in (stores or {}).items():
            self.register(resource_type, store)

    @classmethod
    def from_settings(cls):
        """
        Build the registry from ``RBAC['RESOURCE_STORES']``.

        Values are dotted paths to a store class or to a factory returning one.
        The ``user`` store is always present.
        """
        config = getattr(settings, 'RBAC', {}).get('RESOURCE_STORES', {})
        registry = cls({'user': UserResourceStore()})
        for resource_type, path in config.items():
            registry.register(resource_type, import_string(path)())
        return registry

    def register(self, resource_type: str, store: ResourceStore) -> None:
        self._stores[resource_type] = store
        logger.debug(f"Resource store registered: {resource_type}")

    def get(self, resource_type: str) -> Optional[ResourceStore]:
        return self._stores.get(resource_type)

    @property
    def users(self) -> UserResourceStore:
        return self._stores['user']

    def __contains__(self, resource_type):
        return resource_type in self._stores
